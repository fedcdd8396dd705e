"""Fixed-point money and fee-rate arithmetic.

CRITICAL: All monetary values use Decimal. Never use float for trade amounts,
fee amounts, or rates.

Amounts carry exactly 7 fractional digits and at most 20 digits in total,
matching the ``decimal(20, 7)`` storage columns. Fee rates carry at most 4
fractional digits (``decimal(5, 4)``). Multiplying an amount by a rate rounds
half-to-even back to 7 digits so repeated fee accruals carry no bias.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Context, Decimal, InvalidOperation, localcontext

from feesettle.exceptions import InvalidAmount, Overflow

SCALE = 7
PRECISION = 20
RATE_SCALE = 4

_QUANTUM = Decimal(1).scaleb(-SCALE)  # 0.0000001
_RATE_QUANTUM = Decimal(1).scaleb(-RATE_SCALE)  # 0.0001
_LIMIT = Decimal(10) ** (PRECISION - SCALE)

# Wide enough for a 20-digit amount times a 5-digit rate without inexact results
_CONTEXT = Context(prec=40)


def _to_decimal(value: object) -> Decimal:
    if isinstance(value, float):
        raise InvalidAmount("Float values are not accepted for money; pass str or Decimal")
    if isinstance(value, bool):
        raise InvalidAmount(f"Not a decimal value: {value!r}")
    try:
        result = Decimal(value) if isinstance(value, (int, str)) else value
    except InvalidOperation as e:
        raise InvalidAmount(f"Not a decimal value: {value!r}") from e
    if not isinstance(result, Decimal) or not result.is_finite():
        raise InvalidAmount(f"Not a finite decimal value: {value!r}")
    return result


def _fractional_digits(value: Decimal) -> int:
    exponent = value.normalize().as_tuple().exponent
    assert isinstance(exponent, int)
    return max(0, -exponent)


@dataclass(frozen=True, order=True)
class Money:
    """Non-negative amount with a fixed scale of 7 fractional digits.

    Construct with ``Money.of`` (integer units plus fractional digit string)
    or ``Money.parse`` (str/int/Decimal at API and storage boundaries).
    Direct construction with a Decimal is validated the same way.
    """

    amount: Decimal

    def __post_init__(self) -> None:
        value = _to_decimal(self.amount)
        if value < 0:
            raise InvalidAmount(f"Negative amount: {value}")
        if _fractional_digits(value) > SCALE:
            raise InvalidAmount(f"Amount {value} has more than {SCALE} fractional digits")
        if value >= _LIMIT:
            raise Overflow(f"Amount {value} exceeds {PRECISION} digits")
        with localcontext(_CONTEXT):
            object.__setattr__(self, "amount", value.quantize(_QUANTUM))

    @classmethod
    def of(cls, units: int, fraction: str = "") -> Money:
        """Build an exact amount from integer units and fractional digits.

        ``Money.of(12, "5")`` is 12.5000000. The fraction may have at most
        7 digits.

        Raises:
            InvalidAmount: Negative units, non-digit or over-long fraction.
            Overflow: The amount needs more than 20 digits.
        """
        if isinstance(units, bool) or not isinstance(units, int):
            raise InvalidAmount(f"Units must be an integer, got {units!r}")
        if units < 0:
            raise InvalidAmount(f"Negative amount: {units}")
        if fraction and not fraction.isdigit():
            raise InvalidAmount(f"Fractional part must be digits, got {fraction!r}")
        if len(fraction) > SCALE:
            raise InvalidAmount(f"Fraction {fraction!r} has more than {SCALE} digits")
        return cls(Decimal(f"{units}.{fraction or '0'}"))

    @classmethod
    def parse(cls, value: str | int | Decimal) -> Money:
        """Parse a decimal string, integer, or Decimal into Money."""
        return cls(_to_decimal(value))

    @classmethod
    def zero(cls) -> Money:
        return cls(Decimal(0))

    def add(self, other: Money) -> Money:
        with localcontext(_CONTEXT):
            return Money(self.amount + other.amount)

    def subtract(self, other: Money) -> Money:
        with localcontext(_CONTEXT):
            return Money(self.amount - other.amount)

    def multiply_by_rate(self, rate: Decimal) -> Money:
        """Multiply by a fee rate, rounding half-to-even to 7 fractional digits."""
        rate = validate_rate(rate)
        with localcontext(_CONTEXT):
            product = (self.amount * rate).quantize(_QUANTUM, rounding=ROUND_HALF_EVEN)
        return Money(product)

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return self.add(other)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return self.subtract(other)

    def __str__(self) -> str:
        return format(self.amount, "f")


def validate_rate(value: str | int | Decimal) -> Decimal:
    """Validate a fee rate: a ratio in [0, 1] with at most 4 fractional digits.

    Returns the rate quantized to 4 fractional digits (0.001 -> 0.0010).

    Raises:
        InvalidAmount: The rate is negative, above 1, or too precise.
    """
    rate = _to_decimal(value)
    if rate < 0 or rate > 1:
        raise InvalidAmount(f"Fee rate {rate} outside [0, 1]")
    if _fractional_digits(rate) > RATE_SCALE:
        raise InvalidAmount(f"Fee rate {rate} has more than {RATE_SCALE} fractional digits")
    return rate.quantize(_RATE_QUANTUM)
