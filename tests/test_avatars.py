"""Tests for avatar helpers and the member picker."""

from prompt_toolkit.document import Document

from split_ledger.avatars import avatar_for, get_initials, gravatar_url
from split_ledger.models import Member
from split_ledger.ui import MemberCompleter


class TestAvatars:
    """Avatar URL selection."""

    def test_initials(self):
        assert get_initials("ada king lovelace") == "AK"
        assert get_initials("Bob") == "B"

    def test_gravatar_is_case_insensitive(self):
        assert gravatar_url("Ann@Example.com ") == gravatar_url("ann@example.com")

    def test_avatar_precedence(self):
        own = Member(id="a", name="Ann", email="ann@example.com", avatar_url="https://x/a.png")
        by_email = Member(id="b", name="Bob", email="bob@example.com")
        by_name = Member(id="c", name="Cat Stevens")

        assert avatar_for(own) == "https://x/a.png"
        assert avatar_for(by_email).startswith("https://www.gravatar.com/avatar/")
        assert avatar_for(by_name) == "https://ui-avatars.com/api/?name=Cat%20Stevens&size=200"


class TestMemberCompleter:
    """Fuzzy member completion."""

    members = [
        Member(id="m1", name="Ada Lovelace", email="ada@example.com"),
        Member(id="m2", name="Bob"),
    ]

    def test_fuzzy_completion(self):
        completer = MemberCompleter(self.members)

        completions = list(completer.get_completions(Document("adl"), None))

        assert [c.text for c in completions] == ["Ada Lovelace <ada@example.com>"]

    def test_resolve_label_id_or_name(self):
        completer = MemberCompleter(self.members)

        assert completer.resolve("Ada Lovelace <ada@example.com>") == "m1"
        assert completer.resolve("m2") == "m2"
        assert completer.resolve("Bob") == "m2"
        assert completer.resolve("Zed") is None
