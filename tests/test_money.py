"""Tests for exact money arithmetic."""

from decimal import Decimal

import pytest

from split_ledger.money import (
    allocate_cents,
    from_cents,
    from_milliunits,
    has_cent_precision,
    quantize_amount,
    split_evenly,
    to_cents,
    to_milliunits,
)


class TestConversions:
    """Conversions between Decimal amounts and integer units."""

    def test_to_milliunits(self):
        assert to_milliunits(Decimal("12.34")) == 12340
        assert to_milliunits(Decimal("-0.01")) == -10

    def test_from_milliunits_has_cent_precision(self):
        assert from_milliunits(12340) == Decimal("12.34")
        assert str(from_milliunits(0)) == "0.00"

    def test_cents_round_trip_examples(self):
        assert to_cents(Decimal("100.00")) == 10000
        assert from_cents(3334) == Decimal("33.34")

    def test_has_cent_precision(self):
        assert has_cent_precision(Decimal("1.10"))
        assert has_cent_precision(Decimal("5"))
        assert not has_cent_precision(Decimal("1.001"))

    def test_quantize_amount_from_float(self):
        """Legacy float values are rounded half up to cents."""
        assert quantize_amount(33.333333) == Decimal("33.33")
        assert quantize_amount(12.345) == Decimal("12.35")
        assert quantize_amount(7) == Decimal("7.00")


class TestAllocateCents:
    """Largest-remainder allocation never loses a cent."""

    def test_equal_weights_leftover_goes_to_earliest(self):
        assert allocate_cents(10000, [Decimal("1")] * 3) == [3334, 3333, 3333]

    def test_two_leftover_cents(self):
        assert allocate_cents(200, [Decimal("1")] * 3) == [67, 67, 66]

    def test_largest_remainder_wins(self):
        # exact shares: 1.5, 0.5, 1.0 -> floors 1, 0, 1 with one cent left
        parts = allocate_cents(3, [Decimal("3"), Decimal("1"), Decimal("2")])
        assert parts == [2, 0, 1]

    @pytest.mark.parametrize("total", [1, 7, 9999, 12345])
    def test_sum_is_preserved(self, total):
        weights = [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
        assert sum(allocate_cents(total, weights)) == total

    def test_zero_weights_rejected(self):
        with pytest.raises(ValueError):
            allocate_cents(100, [Decimal("0"), Decimal("0")])


class TestSplitEvenly:
    """Dividing an amount into equal parts."""

    def test_hundred_by_three(self):
        assert split_evenly(Decimal("100.00"), 3) == [
            Decimal("33.34"),
            Decimal("33.33"),
            Decimal("33.33"),
        ]

    def test_single_part(self):
        assert split_evenly(Decimal("9.99"), 1) == [Decimal("9.99")]

    def test_zero_parts_rejected(self):
        with pytest.raises(ValueError):
            split_evenly(Decimal("1.00"), 0)
