"""Tests for fixed-scale Money arithmetic and fee-rate validation.

All assertions compare exact Decimal values (or their 7-digit string form).
"""

from decimal import Decimal

import pytest

from feesettle.exceptions import InvalidAmount, Overflow
from feesettle.money import Money, validate_rate


class TestConstruction:
    def test_of_units_and_fraction(self) -> None:
        assert Money.of(12, "5").amount == Decimal("12.5")
        assert str(Money.of(12, "5")) == "12.5000000"

    def test_of_full_scale_fraction(self) -> None:
        assert str(Money.of(0, "0000001")) == "0.0000001"

    def test_of_without_fraction(self) -> None:
        assert str(Money.of(1000)) == "1000.0000000"

    def test_parse_string_int_and_decimal(self) -> None:
        assert Money.parse("1000.0000000") == Money.of(1000)
        assert Money.parse(1000) == Money.of(1000)
        assert Money.parse(Decimal("0.25")) == Money.of(0, "25")

    def test_zero(self) -> None:
        assert str(Money.zero()) == "0.0000000"

    def test_smallest_amounts_print_fixed_point(self) -> None:
        assert str(Money.parse("0.0000001")) == "0.0000001"
        assert str(Money.parse("0")) == "0.0000000"
        assert str(Money.parse("1000").multiply_by_rate(Decimal("0.0000"))) == "0.0000000"

    @pytest.mark.parametrize("fraction", ["12345678", "5a", "-1"])
    def test_of_rejects_bad_fraction(self, fraction: str) -> None:
        with pytest.raises(InvalidAmount):
            Money.of(1, fraction)

    def test_of_rejects_negative_units(self) -> None:
        with pytest.raises(InvalidAmount):
            Money.of(-1)

    def test_rejects_float(self) -> None:
        with pytest.raises(InvalidAmount, match="Float"):
            Money.parse(1.5)  # type: ignore[arg-type]

    @pytest.mark.parametrize("value", ["abc", "NaN", "Infinity", "-0.5"])
    def test_rejects_invalid_values(self, value: str) -> None:
        with pytest.raises(InvalidAmount):
            Money.parse(value)

    def test_rejects_more_than_seven_fractional_digits(self) -> None:
        with pytest.raises(InvalidAmount):
            Money.parse("1.00000001")

    def test_trailing_zeros_beyond_scale_are_accepted(self) -> None:
        """1.000000000 has no significant digit past the 7th place."""
        assert Money.parse("1.000000000") == Money.of(1)


class TestOverflow:
    def test_largest_representable_amount(self) -> None:
        assert str(Money.parse("9999999999999.9999999")) == "9999999999999.9999999"

    def test_twenty_one_digits_overflow(self) -> None:
        with pytest.raises(Overflow):
            Money.parse("10000000000000")

    def test_addition_overflow(self) -> None:
        with pytest.raises(Overflow):
            Money.parse("9999999999999.9999999") + Money.parse("0.0000001")


class TestArithmetic:
    def test_add_and_subtract(self) -> None:
        a = Money.parse("10.5")
        b = Money.parse("0.25")
        assert a + b == Money.parse("10.75")
        assert a - b == Money.parse("10.25")

    def test_subtract_below_zero_rejected(self) -> None:
        with pytest.raises(InvalidAmount):
            Money.parse("1") - Money.parse("2")

    def test_ordering(self) -> None:
        amounts = [Money.parse("3"), Money.parse("0.5"), Money.parse("100")]
        assert sorted(amounts) == [Money.parse("0.5"), Money.parse("3"), Money.parse("100")]
        assert Money.parse("100000") >= Money.parse("100000.0000000")

    def test_standard_fee_example(self) -> None:
        """1000 * 0.10% = 1.0000000"""
        fee = Money.parse("1000.0000000").multiply_by_rate(Decimal("0.0010"))
        assert str(fee) == "1.0000000"

    def test_half_even_rounds_tie_down_to_even(self) -> None:
        # 0.0000025 * 0.5 = 0.00000125 -> 0.0000012
        fee = Money.parse("0.0000025").multiply_by_rate(Decimal("0.5"))
        assert str(fee) == "0.0000012"

    def test_half_even_rounds_tie_up_to_even(self) -> None:
        # 0.0000035 * 0.5 = 0.00000175 -> 0.0000018
        fee = Money.parse("0.0000035").multiply_by_rate(Decimal("0.5"))
        assert str(fee) == "0.0000018"

    def test_non_tie_rounds_to_nearest(self) -> None:
        # 0.0000003 * 0.0005 = 0.00000000015 -> 0.0000000
        fee = Money.parse("0.0000003").multiply_by_rate(Decimal("0.0005"))
        assert fee == Money.zero()

    def test_fee_never_exceeds_trade(self) -> None:
        trade = Money.parse("9999999999999.9999999")
        assert trade.multiply_by_rate(Decimal("1")) == trade
        assert trade.multiply_by_rate(Decimal("0.9999")) <= trade

    def test_large_amount_is_exact(self) -> None:
        fee = Money.parse("1234567890123.4567891").multiply_by_rate(Decimal("0.0010"))
        # 1234567890.1234567891 -> half-even at 7 digits
        assert str(fee) == "1234567890.1234568"


class TestValidateRate:
    def test_quantizes_to_four_digits(self) -> None:
        assert str(validate_rate("0.001")) == "0.0010"

    @pytest.mark.parametrize("value", ["0", "1", "0.0005", Decimal("0.9999")])
    def test_accepts_bounds(self, value: str | Decimal) -> None:
        validate_rate(value)

    @pytest.mark.parametrize("value", ["-0.0001", "1.0001", "0.00001"])
    def test_rejects_out_of_range_or_too_precise(self, value: str) -> None:
        with pytest.raises(InvalidAmount):
            validate_rate(value)

    def test_multiply_rejects_invalid_rate(self) -> None:
        with pytest.raises(InvalidAmount):
            Money.parse("1").multiply_by_rate(Decimal("1.5"))
