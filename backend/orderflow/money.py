"""
Decimal money helpers.

All monetary amounts are Decimal with two places. Rounding is half-up and is
applied at every discount step, never deferred to the end of a calculation.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # go through str so 0.1 stays 0.1
        value = repr(value)
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"invalid decimal amount: {value!r}")


def round2(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def apply_percent_discount(amount, percent) -> Decimal:
    """amount * (1 - percent/100), rounded half-up to cents."""
    amount = to_decimal(amount)
    percent = to_decimal(percent)
    return round2(amount * (1 - percent / HUNDRED))


def percent_of(amount, percent) -> Decimal:
    return round2(to_decimal(amount) * to_decimal(percent) / HUNDRED)


def money_str(value) -> str | None:
    if value is None:
        return None
    return str(round2(value))
