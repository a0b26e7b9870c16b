from __future__ import annotations

from typing import Any, Iterable

from .errors import ValidationError
from .time_utils import parse_iso_date, parse_iso_datetime


# Largest amount accepted for a single money field (whole currency units)
MAX_AMOUNT = 999_999_999_999


def _coerce_int(field: str, value: Any) -> int:
    """
    Strict integer coercion.

    Rejects bools, floats with a fractional part, scientific notation and
    blank strings so that "12.5" never silently becomes 12.
    """
    if value is None:
        raise ValidationError(f"{field} is required", {"field": field})

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", {"field": field})

    if isinstance(value, int):
        return value

    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{field} must be an integer, not a decimal", {"field": field})
        return int(value)

    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} is required", {"field": field})
        if "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer", {"field": field})
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", {"field": field})

    raise ValidationError(f"{field} must be an integer", {"field": field})


def positive_int(field: str, value: Any) -> int:
    n = _coerce_int(field, value)
    if n <= 0:
        raise ValidationError(f"{field} must be positive", {"field": field, "value": n})
    if n > MAX_AMOUNT:
        raise ValidationError(f"{field} is too large", {"field": field, "value": n})
    return n


def non_negative_int(field: str, value: Any) -> int:
    n = _coerce_int(field, value)
    if n < 0:
        raise ValidationError(f"{field} cannot be negative", {"field": field, "value": n})
    if n > MAX_AMOUNT:
        raise ValidationError(f"{field} is too large", {"field": field, "value": n})
    return n


def positive_float(field: str, value: Any) -> float:
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required", {"field": field})
    try:
        f = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", {"field": field})
    if not f > 0:
        raise ValidationError(f"{field} must be positive", {"field": field, "value": f})
    return f


def required_text(field: str, value: Any, max_length: int = 255) -> str:
    if value is None:
        raise ValidationError(f"{field} is required", {"field": field})
    s = str(value).strip()
    if not s:
        raise ValidationError(f"{field} is required", {"field": field})
    if len(s) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters", {"field": field})
    return s


def optional_text(field: str, value: Any, max_length: int = 255) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    if len(s) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters", {"field": field})
    return s


def choice(field: str, value: Any, allowed: Iterable[str]) -> str:
    allowed = list(allowed)
    if value not in allowed:
        raise ValidationError(
            f"Invalid {field}: {value}. Must be one of {allowed}",
            {"field": field, "allowed": allowed},
        )
    return value


def optional_date(field: str, value: Any):
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date", {"field": field})


def optional_datetime(field: str, value: Any):
    if value is None or hasattr(value, "hour"):
        return value
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime", {"field": field})
