"""Avatar helpers for members."""

import hashlib
from urllib.parse import quote

from .models import Member


def get_initials(name: str) -> str:
    """Up to two initials, e.g. "ada king lovelace" -> "AK"."""
    return "".join(word[0] for word in name.split())[:2].upper()


def gravatar_url(email: str, size: int = 200) -> str:
    """Gravatar URL for an email, falling back to the mystery-person image."""
    digest = hashlib.sha256(email.strip().lower().encode()).hexdigest()
    return f"https://www.gravatar.com/avatar/{digest}?s={size}&d=mp"


def initials_avatar_url(name: str, size: int = 200) -> str:
    """Generated avatar showing the member's initials."""
    return f"https://ui-avatars.com/api/?name={quote(name)}&size={size}"


def avatar_for(member: Member, size: int = 200) -> str:
    """The member's own avatar, else Gravatar by email, else an initials avatar."""
    if member.avatar_url:
        return member.avatar_url
    if member.email.strip():
        return gravatar_url(member.email, size)
    return initials_avatar_url(member.name, size)
