"""Tests for persisted schema migrations."""

from decimal import Decimal

import pytest

from split_ledger.exceptions import SchemaVersionError
from split_ledger.migrations import DROPPED_EXPENSES_KEY, migrate, needs_migration
from split_ledger.models import CURRENT_SCHEMA_VERSION, AppState


def legacy_state(**overrides) -> dict:
    """A ledger as the 1.0.0 release stored it: float amounts, ISO timestamps."""
    state = {
        "members": [
            {"id": "a", "name": "Ann", "email": "ann@example.com"},
            {"id": "b", "name": "Bob"},
            {"id": "c", "name": "Cat", "email": None},
        ],
        "groups": [
            {
                "id": "g1",
                "name": "Lisbon",
                "type": "Trip",
                "currency": "EUR",
                "members": ["a", "b", "c"],
                "createdAt": "2024-05-01T09:00:00.000Z",
                "updatedAt": "2024-05-01T09:00:00.000Z",
            }
        ],
        "expenses": [
            {
                "id": "e1",
                "groupId": "g1",
                "description": "Dinner",
                "amount": 100,
                "paidBy": ["a"],
                "splitBetween": ["a", "b", "c"],
                "splitMode": "equal",
                "splitDetails": {"a": 33.333333, "b": 33.333333, "c": 33.333333},
                "date": "2024-05-02T20:15:00.000Z",
                "createdAt": "2024-05-02T20:15:00.000Z",
                "updatedAt": "2024-05-02T20:15:00.000Z",
            }
        ],
        "settlements": [
            {
                "id": "s1",
                "groupId": "g1",
                "fromMemberId": "b",
                "toMemberId": "a",
                "amount": 12.345,
                "date": "2024-05-03",
                "createdAt": "2024-05-03T10:00:00.000Z",
            }
        ],
        "version": "1.0.0",
    }
    state.update(overrides)
    return state


class TestNeedsMigration:
    """Detecting old schema versions."""

    def test_current_version(self):
        assert not needs_migration({"version": CURRENT_SCHEMA_VERSION})

    def test_legacy_version(self):
        assert needs_migration({"version": "1.0.0"})

    def test_missing_version_is_legacy(self):
        assert needs_migration({"members": []})


class TestMigrateLegacy:
    """1.0.0 -> 2.0.0."""

    def test_result_validates_at_current_version(self):
        state = AppState.model_validate(migrate(legacy_state()))

        assert state.version == CURRENT_SCHEMA_VERSION
        assert state.revision == 0
        assert state.groups[0].currency == "EUR"

    def test_float_shares_rounded_and_reconciled(self):
        """33.333333 x 3 becomes cents that add up to the amount again."""
        expense = migrate(legacy_state())["expenses"][0]

        assert expense["amount"] == "100.00"
        shares = {k: Decimal(v) for k, v in expense["splitDetails"].items()}
        assert sum(shares.values()) == Decimal("100.00")
        # The residual cent lands on one share only
        assert sorted(shares.values()) == [
            Decimal("33.33"),
            Decimal("33.33"),
            Decimal("33.34"),
        ]

    def test_large_mismatch_rescaled_to_amount(self):
        """Shares far off the amount keep their proportions but add up again."""
        expenses = legacy_state()["expenses"]
        expenses[0]["splitDetails"] = {"a": 50, "b": 20, "c": 30}
        expenses[0]["amount"] = 50

        expense = migrate(legacy_state(expenses=expenses))["expenses"][0]

        assert expense["splitDetails"] == {"a": "25.00", "b": "10.00", "c": "15.00"}

    def test_rescaled_thirds_sum_exactly(self):
        expenses = legacy_state()["expenses"]
        expenses[0]["splitDetails"] = {"a": 10, "b": 10, "c": 10}

        expense = migrate(legacy_state(expenses=expenses))["expenses"][0]

        shares = [Decimal(v) for v in expense["splitDetails"].values()]
        assert sum(shares) == Decimal("100.00")
        assert shares == [Decimal("33.34"), Decimal("33.33"), Decimal("33.33")]

    def test_missing_shares_split_equally(self):
        expenses = legacy_state()["expenses"]
        expenses[0]["splitDetails"] = {}
        expenses[0]["splitBetween"] = ["a", "b"]

        expense = migrate(legacy_state(expenses=expenses))["expenses"][0]

        assert expense["splitDetails"] == {"a": "50.00", "b": "50.00"}

    def test_expense_without_payer_set_aside(self):
        expenses = legacy_state()["expenses"]
        expenses[0]["paidBy"] = []

        migrated = migrate(legacy_state(expenses=expenses))

        assert migrated["expenses"] == []
        assert [e["id"] for e in migrated[DROPPED_EXPENSES_KEY]] == ["e1"]

    def test_expense_with_negative_share_set_aside(self):
        expenses = legacy_state()["expenses"]
        expenses[0]["splitDetails"] = {"a": 120, "b": -20}

        migrated = migrate(legacy_state(expenses=expenses))

        assert migrated["expenses"] == []
        assert len(migrated[DROPPED_EXPENSES_KEY]) == 1

    def test_balanced_ledger_has_nothing_set_aside(self):
        assert DROPPED_EXPENSES_KEY not in migrate(legacy_state())

    def test_settlement_amount_rounded_half_up(self):
        settlement = migrate(legacy_state())["settlements"][0]
        assert settlement["amount"] == "12.35"

    def test_timestamps_in_dates_are_trimmed(self):
        expense = migrate(legacy_state())["expenses"][0]
        assert expense["date"] == "2024-05-02"

    def test_missing_emails_default_to_empty(self):
        members = migrate(legacy_state())["members"]
        assert [m["email"] for m in members] == ["ann@example.com", "", ""]

    def test_split_between_filled_from_shares(self):
        expenses = legacy_state()["expenses"]
        del expenses[0]["splitBetween"]

        expense = migrate(legacy_state(expenses=expenses))["expenses"][0]

        assert expense["splitBetween"] == ["a", "b", "c"]

    def test_unversioned_state_is_migrated(self):
        raw = legacy_state()
        del raw["version"]

        assert migrate(raw)["version"] == CURRENT_SCHEMA_VERSION


class TestUnknownVersion:
    """Versions with no migration path."""

    def test_newer_version_rejected(self):
        with pytest.raises(SchemaVersionError) as exc_info:
            migrate({"version": "9.0.0", "members": []})

        assert exc_info.value.version == "9.0.0"

    def test_current_version_untouched(self):
        raw = {"version": CURRENT_SCHEMA_VERSION, "members": [], "revision": 4}
        assert migrate(raw) == raw
