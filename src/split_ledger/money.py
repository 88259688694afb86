"""Exact money arithmetic for ledger amounts.

Amounts are stored as Decimal with at most two decimal places. Anything that
has to add up (balances, split shares) is done on integers: cents when an
amount is divided, milliunits when balances are accumulated.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
MILLIUNITS_PER_UNIT = 1000


def to_milliunits(amount: Decimal) -> int:
    """
    Convert Decimal currency units to integer milliunits.
    Uses ROUND_HALF_UP for consistency.

    Args:
        amount: Amount in currency units

    Returns:
        Amount in milliunits (integer)
    """
    milliunits = amount * MILLIUNITS_PER_UNIT
    return int(milliunits.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_milliunits(milliunits: int) -> Decimal:
    """Convert integer milliunits back to a Decimal with cent precision."""
    return (Decimal(milliunits) / MILLIUNITS_PER_UNIT).quantize(
        CENT, rounding=ROUND_HALF_UP
    )


def to_cents(amount: Decimal) -> int:
    """Convert a Decimal amount with at most two decimal places to cents."""
    return int((amount / CENT).to_integral_value(rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    """Convert integer cents to a Decimal amount."""
    return (Decimal(cents) * CENT).quantize(CENT)


def has_cent_precision(amount: Decimal) -> bool:
    """Return True if the amount has no more than two decimal places."""
    try:
        return amount == amount.quantize(CENT)
    except InvalidOperation:
        return False


def quantize_amount(value: float | int | str | Decimal) -> Decimal:
    """Round an arbitrary numeric value to cents (ROUND_HALF_UP)."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def allocate_cents(total_cents: int, weights: list[Decimal]) -> list[int]:
    """
    Split an integer total proportionally to weights without losing a cent.

    Largest-remainder method: every part gets the floor of its exact share,
    then the leftover cents go one each to the parts with the largest
    fractional remainder. Ties go to the earlier position.

    Args:
        total_cents: Total to distribute (non-negative)
        weights: Non-negative weights, at least one of them positive

    Returns:
        Parts in the same order as weights, summing exactly to total_cents
    """
    weight_sum = sum(weights, Decimal("0"))
    if weight_sum <= 0:
        raise ValueError("Weights must have a positive sum")

    exact = [Decimal(total_cents) * w / weight_sum for w in weights]
    parts = [int(share) for share in exact]  # floor, shares are non-negative
    leftover = total_cents - sum(parts)

    by_remainder = sorted(
        range(len(weights)), key=lambda i: (-(exact[i] - parts[i]), i)
    )
    for i in by_remainder[:leftover]:
        parts[i] += 1

    assert sum(parts) == total_cents, "Allocation failed"
    return parts


def split_evenly(amount: Decimal, count: int) -> list[Decimal]:
    """Divide an amount into count cent-exact parts; earlier parts absorb leftovers."""
    if count <= 0:
        raise ValueError("Cannot split an amount between zero parts")
    parts = allocate_cents(to_cents(amount), [Decimal("1")] * count)
    return [from_cents(p) for p in parts]
