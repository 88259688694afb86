"""Domain validation for ledger operations.

Each check raises ValidationError (or NotFoundError for a missing group)
before anything is handed to the storage manager, so a rejected operation
never changes the ledger.
"""

from decimal import Decimal
from typing import Any

from .balances import compute_balances, outstanding_credit, outstanding_debt
from .exceptions import NotFoundError, ValidationError
from .models import CURRENCIES, SPLIT_MODES, AppState, Group
from .money import has_cent_precision


def validate_amount(amount: Decimal, field: str = "amount"):
    """An amount must be positive with at most two decimals."""
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"must be positive, got {amount}", field)
    if not has_cent_precision(amount):
        raise ValidationError(f"must have at most two decimals, got {amount}", field)


def _require_text(value: str | None, field: str):
    if value is None or not value.strip():
        raise ValidationError("must not be empty", field)


def _require_unique(ids: list[str], field: str):
    seen = set()
    for member_id in ids:
        if member_id in seen:
            raise ValidationError(f"lists {member_id} more than once", field)
        seen.add(member_id)


def _require_in_group(group: Group, ids: list[str], field: str):
    outsiders = [member_id for member_id in ids if member_id not in group.members]
    if outsiders:
        raise ValidationError(
            f"not members of group {group.name!r}: {', '.join(outsiders)}", field
        )


def reject_nulls(fields: dict[str, Any], nullable: set[str]):
    """An update may only set None on fields that can be cleared."""
    for field, value in fields.items():
        if value is None and field not in nullable:
            raise ValidationError("cannot be cleared", field)


def require_group(state: AppState, group_id: str) -> Group:
    """Get a group or raise NotFoundError."""
    group = state.find_group(group_id)
    if group is None:
        raise NotFoundError("Group", group_id)
    return group


# ============================================================================
# Members
# ============================================================================


def validate_member_fields(fields: dict[str, Any]):
    """Check member name/email in a create payload or a partial update."""
    if "name" in fields:
        _require_text(fields["name"], "name")
    email = fields.get("email")
    if email and "@" not in email:
        raise ValidationError(f"{email!r} is not an email address", "email")


def validate_member_deletion(state: AppState, member_id: str):
    """
    A member can only be deleted once nothing refers to them.

    Deleting a member still listed in a group, an expense or a settlement
    would leave dangling ids behind, so it is refused.
    """
    groups = [g.name for g in state.groups if member_id in g.members]
    if groups:
        raise ValidationError(
            f"member still belongs to groups: {', '.join(groups)}; "
            f"remove them from those groups first"
        )

    referenced = any(
        member_id in e.paid_by
        or member_id in e.split_between
        or member_id in e.split_details
        for e in state.expenses
    ) or any(
        member_id in (s.from_member_id, s.to_member_id) for s in state.settlements
    )
    if referenced:
        raise ValidationError("member is referenced by expenses or settlements")


# ============================================================================
# Groups
# ============================================================================


def validate_group_fields(state: AppState, fields: dict[str, Any]):
    """Check group fields in a create payload or a partial update."""
    if "name" in fields:
        _require_text(fields["name"], "name")
    if "type" in fields:
        _require_text(fields["type"], "type")
    if "currency" in fields and fields["currency"] not in CURRENCIES:
        raise ValidationError(
            f"{fields['currency']!r} is not one of {', '.join(CURRENCIES)}", "currency"
        )
    if "members" in fields:
        members = fields["members"] or []
        _require_unique(members, "members")
        unknown = [m for m in members if state.find_member(m) is None]
        if unknown:
            raise ValidationError(f"unknown members: {', '.join(unknown)}", "members")


def validate_group_update(state: AppState, group_id: str, fields: dict[str, Any]):
    """Check a group update, including members being removed from the group."""
    group = require_group(state, group_id)
    validate_group_fields(state, fields)

    if fields.get("members") is None:
        return

    removed = set(group.members) - set(fields["members"])
    if not removed:
        return

    still_used = set()
    for expense in state.group_expenses(group_id):
        still_used.update(expense.paid_by, expense.split_between, expense.split_details)
    for settlement in state.group_settlements(group_id):
        still_used.update((settlement.from_member_id, settlement.to_member_id))

    blocked = sorted(removed & still_used)
    if blocked:
        raise ValidationError(
            f"cannot remove members with expenses or settlements in this group: "
            f"{', '.join(blocked)}",
            "members",
        )


# ============================================================================
# Expenses
# ============================================================================


def validate_expense_inputs(
    state: AppState,
    group_id: str,
    description: str,
    amount: Decimal,
    paid_by: list[str],
    split_between: list[str],
    split_mode: str,
) -> Group:
    """Check everything about an expense except the split itself."""
    group = require_group(state, group_id)
    _require_text(description, "description")
    validate_amount(amount)

    if split_mode not in SPLIT_MODES:
        raise ValidationError(
            f"{split_mode!r} is not one of {', '.join(SPLIT_MODES)}", "split_mode"
        )

    if not paid_by:
        raise ValidationError("at least one payer is required", "paid_by")
    _require_unique(paid_by, "paid_by")
    _require_in_group(group, paid_by, "paid_by")

    if not split_between:
        raise ValidationError("at least one member must share the expense", "split_between")
    _require_unique(split_between, "split_between")
    _require_in_group(group, split_between, "split_between")

    return group


def validate_split_details(
    amount: Decimal, split_between: list[str], split_details: dict[str, Decimal]
):
    """Shares cover exactly the split members, are non-negative and add up to amount."""
    if set(split_details) != set(split_between):
        raise ValidationError(
            "shares must be given for exactly the members sharing the expense",
            "split_details",
        )
    for member_id, share in split_details.items():
        if share < 0:
            raise ValidationError(f"share for {member_id} is negative", "split_details")

    total = sum(split_details.values(), Decimal("0"))
    if total != amount:
        raise ValidationError(
            f"shares add up to {total}, expense amount is {amount}", "split_details"
        )


# ============================================================================
# Settlements
# ============================================================================


def validate_settlement(
    state: AppState,
    group_id: str,
    from_member_id: str,
    to_member_id: str,
    amount: Decimal,
    allow_overpayment: bool = False,
    replacing_id: str | None = None,
):
    """
    Check a settlement against the group's current balances.

    Args:
        state: The ledger
        group_id: Group the settlement belongs to
        from_member_id: Member paying
        to_member_id: Member receiving
        amount: Amount transferred
        allow_overpayment: Skip the outstanding-balance check
        replacing_id: Settlement being edited; it is left out of the balances
    """
    group = require_group(state, group_id)
    validate_amount(amount)

    if from_member_id == to_member_id:
        raise ValidationError("a member cannot settle with themselves", "to_member_id")
    _require_in_group(group, [from_member_id], "from_member_id")
    _require_in_group(group, [to_member_id], "to_member_id")

    if allow_overpayment:
        return

    if replacing_id is not None:
        state = state.model_copy(
            update={"settlements": [s for s in state.settlements if s.id != replacing_id]}
        )
    balances = compute_balances(state, group_id) or {}

    debt = outstanding_debt(balances[from_member_id])
    if amount > debt:
        raise ValidationError(
            f"{from_member_id} only owes {debt} in this group", "amount"
        )
    credit = outstanding_credit(balances[to_member_id])
    if amount > credit:
        raise ValidationError(
            f"{to_member_id} is only owed {credit} in this group", "amount"
        )
