"""Schema migrations for persisted ledger state.

Each migration takes the raw persisted dict at one version and returns it at
the next version. migrate() chains them until the current version is reached.
Migrations work on plain dicts (camelCase keys) because older layouts may not
validate against today's models.
"""

import logging
from collections.abc import Callable
from decimal import Decimal
from typing import Any

from .exceptions import SchemaVersionError
from .models import CURRENT_SCHEMA_VERSION
from .money import (
    CENT,
    allocate_cents,
    from_cents,
    quantize_amount,
    split_evenly,
    to_cents,
)

logger = logging.getLogger(__name__)

LEGACY_SCHEMA_VERSION = "1.0.0"

# Raw key holding legacy expenses that could not be migrated
DROPPED_EXPENSES_KEY = "droppedExpenses"

RawState = dict[str, Any]
Migration = Callable[[RawState], RawState]


def _migrate_1_0_0_to_2_0_0(raw: RawState) -> RawState:
    """
    Float amounts become cent-exact decimal strings; a revision counter is added.

    Split shares stored as floats (e.g. 33.333333) are rounded to cents and
    reconciled so they add up to the expense amount again. Expenses that
    cannot be balanced at all are moved to DROPPED_EXPENSES_KEY.
    """
    migrated = dict(raw)
    migrated["members"] = [
        {**member, "email": member.get("email") or ""}
        for member in raw.get("members") or []
    ]
    migrated["groups"] = list(raw.get("groups") or [])

    expenses, dropped = [], []
    for expense in raw.get("expenses") or []:
        converted = _migrate_expense(expense)
        if converted is None:
            dropped.append(expense)
        else:
            expenses.append(converted)
    migrated["expenses"] = expenses
    if dropped:
        migrated[DROPPED_EXPENSES_KEY] = dropped

    migrated["settlements"] = [
        {
            **s,
            "amount": str(quantize_amount(s.get("amount", 0))),
            "date": _date_only(s.get("date")),
        }
        for s in raw.get("settlements") or []
    ]
    migrated["revision"] = int(raw.get("revision") or 0)
    migrated["version"] = "2.0.0"
    return migrated


def _migrate_expense(expense: dict[str, Any]) -> dict[str, Any] | None:
    """Convert one legacy expense, or return None if it cannot be balanced."""
    expense_id = expense.get("id")
    amount = quantize_amount(expense.get("amount", 0))
    shares = {
        member_id: quantize_amount(share)
        for member_id, share in (expense.get("splitDetails") or {}).items()
    }
    split_between = expense.get("splitBetween") or list(shares)

    if amount <= 0 or not expense.get("paidBy"):
        logger.error(f"Expense {expense_id} has no amount or no payer; dropping it")
        return None
    if any(share < 0 for share in shares.values()):
        logger.error(f"Expense {expense_id} has negative shares; dropping it")
        return None

    share_total = sum(shares.values(), Decimal("0"))
    residual = amount - share_total
    # Float rounding can only be off by about a cent per share.
    threshold = CENT * max(len(shares), 1)

    if share_total == 0:
        if not split_between:
            logger.error(f"Expense {expense_id} has nobody to split with; dropping it")
            return None
        parts = split_evenly(amount, len(split_between))
        shares = dict(zip(split_between, parts, strict=True))
        logger.warning(f"Expense {expense_id} had no shares; split it equally")
    elif abs(residual) <= threshold:
        if residual:
            largest = max(shares, key=lambda member_id: (shares[member_id], member_id))
            shares[largest] += residual
            logger.info(
                f"Applied rounding adjustment of {residual} to {largest} "
                f"in expense {expense_id}"
            )
    else:
        members = list(shares)
        parts = allocate_cents(to_cents(amount), [shares[m] for m in members])
        shares = {m: from_cents(cents) for m, cents in zip(members, parts, strict=True)}
        logger.warning(
            f"Expense {expense_id} shares were off by {residual}; "
            f"rescaled them to add up to {amount}"
        )

    return {
        **expense,
        "amount": str(amount),
        "splitBetween": (
            split_between if set(split_between) == set(shares) else list(shares)
        ),
        "splitDetails": {member_id: str(share) for member_id, share in shares.items()},
        "date": _date_only(expense.get("date")),
    }


def _date_only(value: Any) -> Any:
    """Legacy dates may be full ISO timestamps; keep the calendar date."""
    if isinstance(value, str) and "T" in value:
        return value.split("T", 1)[0]
    return value


# from-version -> (to-version, migration)
MIGRATIONS: dict[str, tuple[str, Migration]] = {
    LEGACY_SCHEMA_VERSION: ("2.0.0", _migrate_1_0_0_to_2_0_0),
}


def needs_migration(raw: RawState) -> bool:
    """Whether the raw state is at an older schema version."""
    return raw.get("version", LEGACY_SCHEMA_VERSION) != CURRENT_SCHEMA_VERSION


def migrate(raw: RawState) -> RawState:
    """
    Bring raw persisted state up to the current schema version.

    State without a version tag is treated as the legacy 1.0.0 layout.

    Raises:
        SchemaVersionError: If the version is unknown (e.g. written by a newer
            release) and there is no migration path
    """
    version = raw.get("version") or LEGACY_SCHEMA_VERSION
    state = {**raw, "version": version}

    while version != CURRENT_SCHEMA_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            raise SchemaVersionError(version)

        target, migration = step
        logger.info(f"Migrating ledger state from {version} to {target}")
        state = migration(state)
        version = state["version"]

    return state
