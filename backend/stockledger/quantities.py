# Overview: Fixed-point stock quantities and their database column type.

"""
Quantities are decimals with QUANTITY_SCALE fractional digits.

Storage follows the same rule as money elsewhere in the app: the
authoritative value is an integer (ten-thousandths of a unit), so SUM() in
the database is exact and nothing ever passes through a float.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from sqlalchemy import BigInteger
from sqlalchemy.types import TypeDecorator

from .errors import InvalidQuantity


QUANTITY_SCALE = 4
QUANTUM = Decimal(1).scaleb(-QUANTITY_SCALE)
_FACTOR = 10 ** QUANTITY_SCALE
ZERO = Decimal("0").quantize(QUANTUM)
# Largest magnitude a signed 64-bit column holds once scaled.
MAX_STORED = 2 ** 63 - 1


def to_quantity(value) -> Decimal:
    """
    Coerce int / str / Decimal to a quantized Decimal.

    Floats are refused outright (they cannot represent most decimal
    quantities), as are values with more than QUANTITY_SCALE fractional digits.
    """
    if value is None or isinstance(value, bool):
        raise InvalidQuantity(f"invalid quantity: {value!r}")
    if isinstance(value, float):
        raise InvalidQuantity("quantity must be a decimal string or integer, not a float")

    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, int):
        d = Decimal(value)
    elif isinstance(value, str):
        try:
            d = Decimal(value.strip())
        except InvalidOperation:
            raise InvalidQuantity(f"invalid quantity: {value!r}")
    else:
        raise InvalidQuantity(f"invalid quantity: {value!r}")

    if not d.is_finite():
        raise InvalidQuantity(f"invalid quantity: {value!r}")

    try:
        q = d.quantize(QUANTUM)
    except InvalidOperation:
        raise InvalidQuantity(f"quantity out of range: {value!r}")
    if q != d:
        raise InvalidQuantity(f"quantity {value} has more than {QUANTITY_SCALE} decimal places")
    if abs(q) * _FACTOR > MAX_STORED:
        raise InvalidQuantity(f"quantity out of range: {value!r}")
    return q


def quantity_to_str(value: Decimal | None) -> str | None:
    """Render without trailing zeros: Decimal('20.5000') -> '20.5'."""
    if value is None:
        return None
    normalized = value.normalize()
    if normalized == 0:
        return "0"
    return format(normalized, "f")


class Quantity(TypeDecorator):
    """Decimal in Python, BIGINT ten-thousandths in the database."""

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return int(to_quantity(value) * _FACTOR)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return (Decimal(int(value)) / _FACTOR).quantize(QUANTUM)
