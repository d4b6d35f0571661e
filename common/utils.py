import datetime
import decimal
import math
import uuid


def to_json_compatible(value):
    if isinstance(value, dict):
        return {key: to_json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_compatible(item) for item in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (datetime.date, datetime.datetime, datetime.time)):
        return value.isoformat()
    return value


def to_decimal(value, default=None):
    """Parse user input as a Decimal, returning `default` for blanks and junk."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, decimal.Decimal):
        return value if value.is_finite() else default
    if isinstance(value, float):
        value = repr(value)
    try:
        parsed = decimal.Decimal(str(value).strip())
    except (decimal.InvalidOperation, ValueError):
        return default
    return parsed if parsed.is_finite() else default


def to_number(value):
    """Like `to_decimal` but yields a float for geometry maths, or None."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value) if math.isfinite(value) else None
    parsed = to_decimal(value)
    return None if parsed is None else float(parsed)


def to_bool(value, default=False):
    """Read a JSON or form flag; only true, "true" and "1" count as set."""
    if value is None:
        return default
    return value is True or str(value).strip().lower() in {"true", "1"}
