"""
Amount conversion between human-readable decimals and the asset's smallest
unit. Smallest-unit amounts travel as decimal strings, never floats, and the
conversion is pure integer arithmetic so precision is unbounded.
"""

import re

from .errors import ValidationError

DEFAULT_DECIMALS = 6

_HUMAN_PATTERN = re.compile(r"^[0-9]+(\.[0-9]+)?$")
_UNITS_PATTERN = re.compile(r"^[0-9]+$")


def to_smallest_unit(amount: str, decimals: int = DEFAULT_DECIMALS, field: str = "amount") -> str:
    """
    Convert "100.50" to "100500000" for a 6-decimal asset.

    Raises:
        ValidationError: non-numeric input, exponents, signs, or more
            fractional digits than the asset supports
    """
    if not isinstance(amount, str):
        raise ValidationError(field, "must be a decimal string")
    amount = amount.strip()
    if not _HUMAN_PATTERN.match(amount):
        raise ValidationError(field, "must be a non-negative decimal number")

    whole, _, fraction = amount.partition(".")
    fraction = fraction.rstrip("0")
    if len(fraction) > decimals:
        raise ValidationError(field, f"supports at most {decimals} decimal places")

    units = int(whole) * 10 ** decimals
    if fraction:
        units += int(fraction.ljust(decimals, "0"))
    return str(units)


def from_smallest_unit(units: str, decimals: int = DEFAULT_DECIMALS) -> str:
    """
    Convert "100500000" back to "100.5" for a 6-decimal asset.

    Trailing fractional zeros are dropped; whole numbers render without a
    decimal point.
    """
    if not isinstance(units, str) or not _UNITS_PATTERN.match(units):
        raise ValidationError("amount", "must be an integer string in smallest units")
    whole, fraction = divmod(int(units), 10 ** decimals)
    if decimals == 0 or fraction == 0:
        return str(whole)
    return f"{whole}." + str(fraction).rjust(decimals, "0").rstrip("0")


def is_positive_units(units: str) -> bool:
    return isinstance(units, str) and bool(_UNITS_PATTERN.match(units)) and int(units) > 0
