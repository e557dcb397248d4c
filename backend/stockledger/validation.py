from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from flask import request

from .errors import InvalidQuantity, ValidationError
from .quantities import to_quantity
from .time_utils import parse_iso_date, parse_iso_datetime


def get_json_body() -> dict:
    """Return the request JSON object, or raise ValidationError."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    return data


def parse_int(value: Any, field: str, *, required: bool = True, minimum: int | None = None) -> int | None:
    """
    Strict integer coercion.

    Rejects floats, booleans, decimals in strings and scientific notation.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return result


def parse_quantity(value: Any, field: str, *, required: bool = True) -> Decimal | None:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    try:
        return to_quantity(value)
    except InvalidQuantity as e:
        raise InvalidQuantity(f"{field}: {e.message}")


def parse_datetime_field(value: Any, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def parse_date_field(value: Any, field: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 date (YYYY-MM-DD)")
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date (YYYY-MM-DD)")


def parse_serials(value: Any, field: str) -> list[str] | None:
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(s, str) and s.strip() for s in value):
        raise ValidationError(f"{field} must be a list of non-empty strings")
    return [s.strip() for s in value]
