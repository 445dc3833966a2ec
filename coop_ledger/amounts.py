"""
Amount Handling Module

Decimal quantisation for every balance and transaction amount. Values are
kept at minor-unit precision (paise) and NEVER use float.
"""

from decimal import Decimal, ROUND_HALF_UP, getcontext
from typing import Union

# Set global decimal context for financial precision
getcontext().prec = 28

MINOR_UNIT_PLACES = 2
ZERO = Decimal('0.00')

AmountLike = Union[Decimal, int, str]


def to_amount(value: AmountLike) -> Decimal:
    """
    Convert a value to a Decimal rounded to minor-unit precision.

    Floats are rejected: they cannot represent most decimal amounts exactly.
    """
    if isinstance(value, float):
        raise TypeError("Amounts must be Decimal, int or str, not float")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(Decimal('0.1') ** MINOR_UNIT_PLACES, rounding=ROUND_HALF_UP)


def format_whole(value: Decimal) -> str:
    """Format an amount in whole units, the way the passbook prints it"""
    return f"{value.quantize(Decimal('1'), rounding=ROUND_HALF_UP):f}"


def format_rupees(value: Decimal) -> str:
    """Format for notification messages"""
    return f"₹{value:,.2f}"
