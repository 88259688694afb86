"""Interactive UI components for picking members."""

import logging
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from .models import Member

logger = logging.getLogger(__name__)


def member_label(member: Member) -> str:
    """Display label used for completion, e.g. "Ada Lovelace <ada@example.com>"."""
    return f"{member.name} <{member.email}>" if member.email else member.name


class MemberCompleter(Completer):
    """Fuzzy search completer for members."""

    def __init__(self, members: list[Member]):
        """Initialize the completer with selectable members."""
        self.members = members
        self.label_to_id = {member_label(m): m.id for m in members}

    def get_completions(self, document: Document, complete_event: Any):
        """Get fuzzy-matched completions."""
        query = document.text.lower()

        for label in self.label_to_id:
            if not query or self._fuzzy_match(query, label.lower()):
                yield Completion(
                    text=label,
                    start_position=-len(document.text),
                    display=label,
                )

    def _fuzzy_match(self, query: str, text: str) -> bool:
        """
        Fuzzy match: all characters in query must appear in order in text.

        Example:
            query="adl" matches "Ada Lovelace"
        """
        query_idx = 0
        for char in text:
            if query_idx < len(query) and char == query[query_idx]:
                query_idx += 1
        return query_idx == len(query)

    def resolve(self, text: str) -> str | None:
        """Map a typed label (or a bare member id) back to a member id."""
        if text in self.label_to_id:
            return self.label_to_id[text]
        for member in self.members:
            if text in (member.id, member.name):
                return member.id
        return None


def select_member_interactive(members: list[Member], title: str) -> str | None:
    """
    Interactive member selection with fuzzy search.

    Args:
        members: Members to choose from
        title: What the member is being chosen for, e.g. "Who paid?"

    Returns:
        Selected member id, or None to skip
    """
    if not members:
        return None

    print(f"\n👤 {title}")
    print("   Type to search, press Enter to confirm, Ctrl+C to skip\n")

    completer = MemberCompleter(members)
    session: PromptSession[str] = PromptSession(completer=completer)

    try:
        while True:
            result = session.prompt("Member: ", complete_while_typing=True).strip()

            if not result:
                return None

            member_id = completer.resolve(result)
            if member_id:
                logger.info(f"User selected member: {member_id}")
                return member_id

            print("❌ Unknown member. Please select from the list or press Tab to complete.")

    except KeyboardInterrupt:
        print("\n⏭️  Skipped")
        return None
    except EOFError:
        return None


def select_members_interactive(members: list[Member], title: str) -> list[str]:
    """Pick several members one at a time; an empty entry finishes the list."""
    chosen: list[str] = []
    remaining = list(members)

    while remaining:
        member_id = select_member_interactive(
            remaining, f"{title} ({len(chosen)} chosen, Enter to finish)"
        )
        if member_id is None:
            break
        chosen.append(member_id)
        remaining = [m for m in remaining if m.id != member_id]

    return chosen
