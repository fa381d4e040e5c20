"""Value coercion and comparison rules shared by the evaluator and executor.

Numbers: bools are never numbers; ints and floats pass through; a string
converts only when the whole (stripped) string parses as an int or a finite
float. Everything else is non-numeric.

NULL: comparisons involving ``None`` are unknown (``None``).
"""

from __future__ import annotations

import json
import math
from typing import Any

from form_query.errors import QueryError


def to_number(value: Any) -> int | float | None:
    """Return *value* as an int or float, or None when it is not numeric."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def to_text(value: Any) -> str:
    """Render a value as text; NULL becomes the empty string."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def to_bool(value: Any) -> bool | None:
    """Truth value of a condition result; None stays unknown."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "t", "yes", "1"):
            return True
        if lowered in ("false", "f", "no", "0", ""):
            return False
        number = to_number(value)
        return bool(number) if number is not None else True
    if isinstance(value, (int, float)):
        return value != 0
    return bool(value)


def values_equal(left: Any, right: Any) -> bool | None:
    if left is None or right is None:
        return None
    a, b = to_number(left), to_number(right)
    if a is not None and b is not None:
        return a == b
    return left == right


def compare(left: Any, right: Any) -> int | None:
    """Three-way compare, or None when either side is NULL or they are unordered."""
    if left is None or right is None:
        return None
    a, b = to_number(left), to_number(right)
    if a is None or b is None:
        if isinstance(left, str) and isinstance(right, str):
            a, b = left, right
        elif isinstance(left, bool) and isinstance(right, bool):
            a, b = int(left), int(right)
        else:
            return 0 if left == right else None
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def sort_key(value: Any) -> tuple:
    """Total-order key for ORDER BY; NULL sorts after everything else."""
    if value is None:
        return (1, 0, 0)
    number = to_number(value)
    if number is not None:
        return (0, 0, number)
    if isinstance(value, str):
        return (0, 1, value)
    if isinstance(value, bool):
        return (0, 2, int(value))
    return (0, 3, json.dumps(value, sort_keys=True, default=str))


def coerce_declared(value: Any, type_name: str) -> Any:
    """Coerce a DECLARE initializer to the declared type."""
    if value is None:
        return None
    upper = type_name.upper()
    if upper in ("INT", "INTEGER", "BIGINT", "SMALLINT", "FLOAT", "DECIMAL", "NUMERIC", "REAL"):
        number = int(value) if isinstance(value, bool) else to_number(value)
        if number is None:
            raise QueryError(f"Cannot convert {value!r} to {upper}")
        if upper in ("INT", "INTEGER", "BIGINT", "SMALLINT"):
            return int(number)
        return float(number)
    if upper in ("BOOLEAN", "BOOL", "BIT"):
        return bool(to_bool(value))
    return to_text(value)
