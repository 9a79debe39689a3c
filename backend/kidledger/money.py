"""Helpers for monetary values and percentage rates.

All money in the ledger is a :class:`~decimal.Decimal` with two fraction
digits, rounded half-up at every step.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union

from kidledger.exceptions import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

AmountLike = Union[Decimal, int, float, str]


def to_decimal(value: AmountLike) -> Decimal:
    """Convert ``value`` to a Decimal rounded to cents."""

    if isinstance(value, bool):
        raise ValidationError("Amount must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value)
        except InvalidOperation as exc:
            raise ValidationError(f"Invalid amount: {value!r}") from exc
    else:
        raise ValidationError(f"Unsupported amount type: {type(value)!r}")
    if not result.is_finite():
        raise ValidationError("Amount must be finite")
    return round2(result)


def round2(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def require_positive(amount: AmountLike, *, allow_zero: bool = False) -> Decimal:
    """Return ``amount`` as Decimal, rejecting negatives (and zero unless allowed)."""

    value = to_decimal(amount)
    if allow_zero:
        if value < ZERO:
            raise ValidationError("Amount must be zero or greater")
    elif value <= ZERO:
        raise ValidationError("Amount must be greater than zero")
    return value


def percent_to_fraction(rate: AmountLike) -> Decimal:
    """Interpret a stored percentage (0-100) as a multiplier (0-1).

    Every rate in the system is stored as a percentage, so this is the only
    place where the division by 100 happens.
    """

    value = Decimal(str(rate)) if not isinstance(rate, Decimal) else rate
    return value / Decimal(100)


def apply_rate(amount: Decimal, rate_percent: AmountLike) -> Decimal:
    """Return ``amount`` times a percentage rate, rounded to cents."""

    return round2(amount * percent_to_fraction(rate_percent))
