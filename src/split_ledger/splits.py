"""Split-mode calculators.

Turns the user's split choice into split_details: the exact amount each
member owes for an expense. Every calculator returns shares that sum to the
expense amount to the cent.
"""

from decimal import Decimal

from .exceptions import ValidationError
from .money import (
    allocate_cents,
    from_cents,
    has_cent_precision,
    split_evenly,
    to_cents,
)

PERCENT_TOLERANCE = Decimal("0.01")


def split_equal(amount: Decimal, split_between: list[str]) -> dict[str, Decimal]:
    """
    Divide an amount equally.

    Leftover cents go one each to the first members in split_between order,
    e.g. 100.00 between three members gives 33.34, 33.33, 33.33.
    """
    if not split_between:
        raise ValidationError("at least one member must share the expense", "split_between")

    return dict(
        zip(split_between, split_evenly(amount, len(split_between)), strict=True)
    )


def split_by_percentage(
    amount: Decimal, split_between: list[str], percentages: dict[str, Decimal]
) -> dict[str, Decimal]:
    """
    Divide an amount by percentages that add up to 100.

    Args:
        amount: The expense amount
        split_between: Members sharing the expense, in display order
        percentages: Member id -> percentage (0-100)

    Returns:
        Member id -> amount owed, summing exactly to amount

    Raises:
        ValidationError: If percentages are negative, don't cover exactly the
            split members, or don't add up to 100
    """
    _check_keys(split_between, percentages)

    for member_id, pct in percentages.items():
        if pct < 0:
            raise ValidationError(
                f"percentage for {member_id} is negative ({pct})", "split_values"
            )

    total = sum(percentages.values(), Decimal("0"))
    if abs(total - 100) > PERCENT_TOLERANCE:
        raise ValidationError(f"percentages add up to {total}, not 100", "split_values")

    weights = [percentages[member_id] for member_id in split_between]
    if sum(weights, Decimal("0")) == 0:
        raise ValidationError("percentages add up to 0", "split_values")

    parts = allocate_cents(to_cents(amount), weights)
    return {
        member_id: from_cents(cents)
        for member_id, cents in zip(split_between, parts, strict=True)
    }


def split_manual(
    amount: Decimal, split_between: list[str], amounts: dict[str, Decimal]
) -> dict[str, Decimal]:
    """
    Use amounts entered per member; they must add up to the expense exactly.

    Raises:
        ValidationError: If a share is negative or has sub-cent precision,
            the members don't match split_between, or the total is off
    """
    _check_keys(split_between, amounts)

    for member_id, share in amounts.items():
        if share < 0:
            raise ValidationError(
                f"share for {member_id} is negative ({share})", "split_values"
            )
        if not has_cent_precision(share):
            raise ValidationError(
                f"share for {member_id} has more than two decimals ({share})",
                "split_values",
            )

    total = sum(amounts.values(), Decimal("0"))
    if total != amount:
        raise ValidationError(
            f"shares add up to {total}, expense amount is {amount}", "split_values"
        )

    return {member_id: amounts[member_id] for member_id in split_between}


def compute_split_details(
    amount: Decimal,
    split_between: list[str],
    split_mode: str,
    split_values: dict[str, Decimal] | None = None,
) -> dict[str, Decimal]:
    """
    Compute split_details for an expense.

    Args:
        amount: The expense amount (positive, cent precision)
        split_between: Members sharing the expense
        split_mode: "equal", "percentage" or "manual"
        split_values: Percentages or amounts per member (ignored for "equal")

    Returns:
        Member id -> amount owed
    """
    if split_mode == "equal":
        return split_equal(amount, split_between)

    if split_values is None:
        raise ValidationError(
            f"split mode {split_mode!r} needs a value for each member", "split_values"
        )

    if split_mode == "percentage":
        return split_by_percentage(amount, split_between, split_values)
    if split_mode == "manual":
        return split_manual(amount, split_between, split_values)

    raise ValidationError(f"unknown split mode {split_mode!r}", "split_mode")


def allocate_payer_credit(amount: Decimal, paid_by: list[str]) -> dict[str, Decimal]:
    """
    Credit payers for an expense: always an equal division, whatever the split mode.

    A member listed twice in paid_by is credited for both slots.
    """
    if not paid_by:
        raise ValidationError("at least one payer is required", "paid_by")

    credit: dict[str, Decimal] = {}
    for member_id, share in zip(paid_by, split_evenly(amount, len(paid_by)), strict=True):
        credit[member_id] = credit.get(member_id, Decimal("0.00")) + share
    return credit


def _check_keys(split_between: list[str], values: dict[str, Decimal]):
    expected = set(split_between)
    given = set(values)
    if given != expected:
        missing = sorted(expected - given)
        extra = sorted(given - expected)
        details = []
        if missing:
            details.append(f"missing {', '.join(missing)}")
        if extra:
            details.append(f"not sharing the expense: {', '.join(extra)}")
        raise ValidationError("; ".join(details), "split_values")
