"""
PERCENTAGE PRECISION UTILITIES

Percentage shares are stored as floats in MongoDB but summed as Decimal so
that totals like 33.3 + 33.3 + 33.4 compare exactly against 100.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable, Union
import logging

logger = logging.getLogger(__name__)

FULL_ALLOCATION = Decimal('100')
QUANTIZE_PATTERN = Decimal('0.0001')


class PercentagePrecisionError(ValueError):
    """Raised when a value cannot be interpreted as a percentage"""
    pass


def to_decimal(value: Union[float, int, str, Decimal]) -> Decimal:
    """
    Convert any numeric value to Decimal.
    Floats go through str() to avoid binary representation noise.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise PercentagePrecisionError(f"Cannot convert {type(value)} to Decimal")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value)
        except InvalidOperation:
            raise PercentagePrecisionError(f"Cannot convert {value!r} to Decimal")
    raise PercentagePrecisionError(f"Cannot convert {type(value)} to Decimal")


def sum_percentages(values: Iterable[Union[float, int, str, Decimal]]) -> Decimal:
    """Add percentages without float drift"""
    total = Decimal('0')
    for value in values:
        total += to_decimal(value)
    return total


def to_float(value: Decimal) -> float:
    """Convert a Decimal total back to float for JSON responses"""
    return float(to_decimal(value).quantize(QUANTIZE_PATTERN, rounding=ROUND_HALF_UP))
