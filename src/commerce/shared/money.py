"""Fixed-point money helpers and the Money value object.

Amounts are ``decimal.Decimal`` in a currency's major unit and are persisted
as decimal text. Floating point never enters a monetary calculation.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import String

from commerce.domain import commerce

ZERO = Decimal("0")

# Currencies without a minor unit in everyday use
ZERO_DECIMAL_CURRENCIES = frozenset({"UGX", "JPY", "KRW", "RWF", "XOF", "XAF"})


def exponent(currency: str) -> int:
    """Number of decimal places used by ``currency``."""
    return 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2


def to_decimal(value, field: str = "amount") -> Decimal:
    """Coerce ``value`` to Decimal, rejecting anything that is not a finite number."""
    if isinstance(value, bool):
        raise ValidationError({field: [f"Invalid amount: {value!r}"]})
    try:
        # str() first: floats keep their printed value
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValidationError({field: [f"Invalid amount: {value!r}"]}) from exc
    if not result.is_finite():
        raise ValidationError({field: [f"Invalid amount: {value!r}"]})
    return result


def quantize(value, currency: str) -> Decimal:
    """Round to the currency's precision, half-up."""
    places = Decimal(1).scaleb(-exponent(currency))
    return to_decimal(value).quantize(places, rounding=ROUND_HALF_UP)


def from_minor_units(minor, currency: str) -> Decimal:
    """Convert an amount in the smallest sub-unit (kobo, cents) to major units."""
    amount = to_decimal(minor)
    if amount != amount.to_integral_value():
        raise ValidationError({"amount": [f"Sub-unit amount must be whole: {minor!r}"]})
    return quantize(amount.scaleb(-exponent(currency)), currency)


def to_minor_units(value, currency: str) -> int:
    """Convert a major-unit amount to an integer count of sub-units."""
    return int(quantize(value, currency).scaleb(exponent(currency)))


def format_amount(value, currency: str) -> str:
    return str(quantize(value, currency))


def within_tolerance(
    expected: Decimal,
    reported: Decimal,
    absolute: Decimal = ZERO,
    percent: Decimal = ZERO,
) -> bool:
    """True when ``reported`` deviates from ``expected`` by at most the larger
    of the absolute tolerance and ``percent`` of the expected amount."""
    allowed = max(absolute, abs(expected) * percent / Decimal(100))
    return abs(expected - reported) <= allowed


@commerce.value_object
class Money:
    """A non-negative fixed-point amount in a specific currency."""

    amount: String(required=True, max_length=32)
    currency: String(required=True, min_length=3, max_length=3)

    @classmethod
    def of(cls, amount, currency: str) -> "Money":
        currency = currency.upper()
        return cls(amount=format_amount(amount, currency), currency=currency)

    @invariant.post
    def amount_must_be_non_negative_decimal(self):
        if to_decimal(self.amount) < ZERO:
            raise ValidationError({"amount": ["Amount cannot be negative"]})

    @invariant.post
    def currency_must_be_upper_case_code(self):
        if not (self.currency.isalpha() and self.currency.isupper()):
            raise ValidationError({"currency": [f"Invalid currency code: {self.currency}"]})

    def decimal(self) -> Decimal:
        return to_decimal(self.amount)
