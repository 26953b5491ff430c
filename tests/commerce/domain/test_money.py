"""Tests for fixed-point money helpers and the Money value object."""

from decimal import Decimal

import pytest
from protean.exceptions import ValidationError

from commerce.shared.money import (
    Money,
    exponent,
    format_amount,
    from_minor_units,
    quantize,
    to_decimal,
    to_minor_units,
    within_tolerance,
)


class TestToDecimal:
    def test_string_amount(self):
        assert to_decimal("12.50") == Decimal("12.50")

    def test_float_keeps_printed_value(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_rejects_bool(self):
        with pytest.raises(ValidationError):
            to_decimal(True)

    def test_rejects_garbage(self):
        with pytest.raises(ValidationError) as exc:
            to_decimal("twelve", field="unit_price")
        assert "unit_price" in exc.value.messages

    def test_rejects_infinity(self):
        with pytest.raises(ValidationError):
            to_decimal("Infinity")


class TestCurrencyPrecision:
    def test_two_decimal_currency(self):
        assert exponent("kes") == 2
        assert quantize("10.005", "KES") == Decimal("10.01")

    def test_zero_decimal_currency(self):
        assert exponent("UGX") == 0
        assert quantize("1500.5", "UGX") == Decimal("1501")

    def test_format_amount(self):
        assert format_amount(3, "NGN") == "3.00"


class TestMinorUnits:
    def test_kobo_to_naira(self):
        assert from_minor_units(150000, "NGN") == Decimal("1500.00")

    def test_zero_decimal_minor_units_are_major(self):
        assert from_minor_units(2000, "UGX") == Decimal("2000")

    def test_fractional_sub_units_rejected(self):
        with pytest.raises(ValidationError):
            from_minor_units("10.5", "NGN")

    def test_to_minor_units(self):
        assert to_minor_units(Decimal("19.99"), "USD") == 1999

    def test_round_trip_is_exact(self):
        assert from_minor_units(to_minor_units("3200.10", "KES"), "KES") == Decimal("3200.10")


class TestWithinTolerance:
    def test_exact_match_without_tolerance(self):
        assert within_tolerance(Decimal("100.00"), Decimal("100.00"))

    def test_any_difference_fails_without_tolerance(self):
        assert not within_tolerance(Decimal("100.00"), Decimal("100.01"))

    def test_absolute_tolerance(self):
        assert within_tolerance(Decimal("100.00"), Decimal("99.50"), absolute=Decimal("0.50"))
        assert not within_tolerance(Decimal("100.00"), Decimal("99.49"), absolute=Decimal("0.50"))

    def test_percentage_tolerance(self):
        assert within_tolerance(Decimal("1000"), Decimal("990"), percent=Decimal("1"))
        assert not within_tolerance(Decimal("1000"), Decimal("989"), percent=Decimal("1"))

    def test_larger_of_the_two_applies(self):
        assert within_tolerance(Decimal("1000"), Decimal("995"), absolute=Decimal("1"), percent=Decimal("0.5"))


class TestMoney:
    def test_of_normalizes_amount_and_currency(self):
        money = Money.of("12.5", "kes")
        assert money.amount == "12.50"
        assert money.currency == "KES"
        assert money.decimal() == Decimal("12.50")

    def test_negative_amount_rejected(self):
        with pytest.raises(ValidationError):
            Money(amount="-1.00", currency="USD")

    def test_currency_must_be_upper_case_letters(self):
        with pytest.raises(ValidationError):
            Money(amount="1.00", currency="us1")

    def test_equality_by_value(self):
        assert Money.of("5", "NGN") == Money.of(Decimal("5.00"), "NGN")
