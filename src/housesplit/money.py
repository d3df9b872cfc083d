"""Decimal helpers for two-place currency amounts.

Amounts are only quantized at the points where a value is handed back to a
caller (a share, a charge, a presented balance). Intermediate sums keep full
Decimal precision.
"""

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Decimal | int | str) -> Decimal:
    """Coerce a value to Decimal without going through float."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        raise TypeError("Money amounts must not be floats")
    return Decimal(str(value))


def round_money(amount: Decimal) -> Decimal:
    """Round to the cent using ROUND_HALF_UP."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def floor_money(amount: Decimal) -> Decimal:
    """Round down to the cent."""
    return amount.quantize(CENT, rounding=ROUND_FLOOR)


def is_settled(amount: Decimal, epsilon: Decimal = CENT) -> bool:
    """True when the magnitude is below the settlement tolerance."""
    return abs(amount) < epsilon


def format_money(amount: Decimal, symbol: str = "RM") -> str:
    """Format an amount for display, e.g. ``RM 12.50``."""
    return f"{symbol} {round_money(amount):,.2f}"
