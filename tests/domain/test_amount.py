"""
Tests for the Amount value type (``tip_kernel.domain.amount``).

Invariants tested:
- Amounts are never negative; subtraction below zero raises.
- Floats are rejected; coin strings with more than 8 decimals are rejected.
- ``split(n)`` never loses or creates units.
"""

from decimal import Decimal

import pytest

from tip_kernel.domain.amount import (
    UNITS_PER_COIN,
    Amount,
    sum_amounts,
)


class TestConstruction:
    def test_zero(self):
        assert Amount.zero().sats == 0
        assert Amount.zero().is_zero

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            Amount(-1)

    def test_non_int_rejected(self):
        with pytest.raises(TypeError):
            Amount(1.5)

    def test_bool_rejected(self):
        with pytest.raises(TypeError):
            Amount(True)

    def test_immutable(self):
        a = Amount(5)
        with pytest.raises(AttributeError):
            a.sats = 6


class TestFromCoins:
    def test_whole_coins(self):
        assert Amount.from_coins(3).sats == 3 * UNITS_PER_COIN

    def test_string_fraction(self):
        assert Amount.from_coins("0.5").sats == UNITS_PER_COIN // 2

    def test_decimal(self):
        assert Amount.from_coins(Decimal("0.00000001")).sats == 1

    def test_float_rejected(self):
        with pytest.raises(ValueError, match="Floats"):
            Amount.from_coins(0.1)

    def test_too_many_decimals_rejected(self):
        with pytest.raises(ValueError, match="smallest unit"):
            Amount.from_coins("0.000000001")

    def test_garbage_rejected(self):
        with pytest.raises(ValueError):
            Amount.from_coins("ten")

    def test_nan_rejected(self):
        with pytest.raises(ValueError):
            Amount.from_coins("NaN")

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            Amount.from_coins("-1")

    def test_to_coins_round_trip(self):
        assert Amount.from_coins("12.34567891").to_coins() == Decimal("12.34567891")


class TestArithmetic:
    def test_add(self):
        assert Amount(2) + Amount(3) == Amount(5)

    def test_sub(self):
        assert Amount(5) - Amount(3) == Amount(2)

    def test_sub_below_zero_raises(self):
        with pytest.raises(ValueError):
            Amount(3) - Amount(5)

    def test_multiply_by_count(self):
        assert Amount(3) * 4 == Amount(12)
        assert 4 * Amount(3) == Amount(12)

    def test_add_int_not_supported(self):
        with pytest.raises(TypeError):
            Amount(1) + 1

    def test_ordering(self):
        assert Amount(1) < Amount(2)
        assert max(Amount(7), Amount(3)) == Amount(7)

    def test_sum_amounts(self):
        assert sum_amounts([Amount(1), Amount(2), Amount(3)]) == Amount(6)
        assert sum_amounts([]) == Amount.zero()


class TestSplit:
    def test_even_split(self):
        assert Amount(12).split(4) == (Amount(3), Amount(0))

    def test_uneven_split_keeps_remainder(self):
        share, remainder = Amount(10).split(3)
        assert share == Amount(3)
        assert remainder == Amount(1)

    def test_split_smaller_than_count(self):
        assert Amount(2).split(5) == (Amount(0), Amount(2))

    def test_split_zero_count_raises(self):
        with pytest.raises(ValueError):
            Amount(10).split(0)

    def test_checked_div(self):
        assert Amount(10).checked_div(3) == Amount(3)
        assert Amount(10).checked_div(0) is None


class TestFormatting:
    def test_format_with_ticker(self):
        assert Amount.from_coins("1.5").format("VRSC") == "1.50000000 VRSC"

    def test_str(self):
        assert str(Amount(1)) == "0.00000001"

    def test_small_amounts_never_scientific(self):
        assert Amount(3).format("VRSC") == "0.00000003 VRSC"
        assert Amount.zero().format("VRSC") == "0.00000000 VRSC"
