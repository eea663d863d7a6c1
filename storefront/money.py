"""Conversions between stored decimal amounts and the processor's minor units.

Prices are kept as :class:`~decimal.Decimal` in memory and as ``Decimal128`` in
MongoDB. The payment processor speaks integer cents, so every crossing of that
boundary goes through one of the helpers below.
"""
from decimal import Decimal, ROUND_HALF_UP

from bson.decimal128 import Decimal128

CENT = Decimal("0.01")
MINOR_UNITS = 100


def to_minor_units(amount) -> int:
    """Convert a decimal amount to integer minor units (10.005 -> 1001)."""
    scaled = Decimal(str(amount)) * MINOR_UNITS
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(int(amount)) / MINOR_UNITS).quantize(CENT)


def to_decimal128(amount) -> Decimal128:
    return Decimal128(Decimal(str(amount)))


def to_decimal(value) -> Decimal:
    """Read back an amount stored as Decimal128 (or a legacy float/str)."""
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
