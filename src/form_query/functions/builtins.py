"""Built-in scalar functions.

Every function receives already-evaluated arguments. NULL in gives NULL out,
except for CONCAT (NULL is the empty string) and the NULL-handling functions
COALESCE, NULLIF, IFNULL and IF.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable

from form_query.coercion import to_bool, to_number, to_text, values_equal
from form_query.errors import QueryError


@dataclass
class BuiltinFunction:
    name: str
    func: Callable[..., Any]
    min_args: int
    max_args: int | None  # None for variadic


BUILTINS: dict[str, BuiltinFunction] = {}


def builtin(name: str, min_args: int, max_args: int | None = None, variadic: bool = False) -> Callable:
    """Register a function under *name*; max_args defaults to min_args."""

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        upper = None if variadic else (min_args if max_args is None else max_args)
        BUILTINS[name] = BuiltinFunction(name, func, min_args, upper)
        return func

    return decorator


def alias(name: str, target: str) -> None:
    fn = BUILTINS[target]
    BUILTINS[name] = BuiltinFunction(name, fn.func, fn.min_args, fn.max_args)


def is_builtin(name: str) -> bool:
    return name.upper() in BUILTINS


def call_builtin(name: str, args: list[Any]) -> Any:
    """Call a built-in by name after checking its argument count."""
    fn = BUILTINS.get(name.upper())
    if fn is None:
        raise QueryError(f"Unknown function: {name}")
    if len(args) < fn.min_args or (fn.max_args is not None and len(args) > fn.max_args):
        if fn.max_args == fn.min_args:
            expected = str(fn.min_args)
        elif fn.max_args is None:
            expected = f"at least {fn.min_args}"
        else:
            expected = f"{fn.min_args} to {fn.max_args}"
        raise QueryError(f"{fn.name}() takes {expected} argument(s), got {len(args)}")
    return fn.func(*args)


def _number(value: Any, fname: str) -> int | float:
    number = to_number(value)
    if number is None:
        raise QueryError(f"{fname}() expects a number, got {value!r}")
    return number


def _integer(value: Any, fname: str) -> int:
    return int(_number(value, fname))


# --- String functions ---


@builtin("UPPER", 1)
def _upper(value: Any) -> str | None:
    return None if value is None else to_text(value).upper()


@builtin("LOWER", 1)
def _lower(value: Any) -> str | None:
    return None if value is None else to_text(value).lower()


@builtin("CONCAT", 1, variadic=True)
def _concat(*values: Any) -> str:
    return "".join(to_text(v) for v in values)


@builtin("TRIM", 1)
def _trim(value: Any) -> str | None:
    return None if value is None else to_text(value).strip()


@builtin("LTRIM", 1)
def _ltrim(value: Any) -> str | None:
    return None if value is None else to_text(value).lstrip()


@builtin("RTRIM", 1)
def _rtrim(value: Any) -> str | None:
    return None if value is None else to_text(value).rstrip()


@builtin("LENGTH", 1)
def _length(value: Any) -> int | None:
    return None if value is None else len(to_text(value))


@builtin("LEFT", 2)
def _left(value: Any, n: Any) -> str | None:
    if value is None or n is None:
        return None
    return to_text(value)[:max(0, _integer(n, "LEFT"))]


@builtin("RIGHT", 2)
def _right(value: Any, n: Any) -> str | None:
    if value is None or n is None:
        return None
    text = to_text(value)
    count = max(0, _integer(n, "RIGHT"))
    return text[len(text) - count:] if count else ""


@builtin("SUBSTRING", 2, 3)
def _substring(value: Any, start: Any, length: Any = None) -> str | None:
    """1-based start; an omitted length runs to the end of the string."""
    if value is None or start is None:
        return None
    text = to_text(value)
    begin = max(0, _integer(start, "SUBSTRING") - 1)
    if length is None:
        return text[begin:]
    return text[begin:begin + max(0, _integer(length, "SUBSTRING"))]


@builtin("REPLACE", 3)
def _replace(value: Any, old: Any, new: Any) -> str | None:
    if value is None:
        return None
    old_text = to_text(old)
    if not old_text:
        return to_text(value)
    return to_text(value).replace(old_text, to_text(new))


# --- Conditional functions ---


@builtin("COALESCE", 1, variadic=True)
def _coalesce(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


@builtin("NULLIF", 2)
def _nullif(value: Any, other: Any) -> Any:
    return None if values_equal(value, other) else value


@builtin("IFNULL", 2)
def _ifnull(value: Any, default: Any) -> Any:
    return default if value is None else value


@builtin("IF", 3)
def _if(condition: Any, when_true: Any, when_false: Any) -> Any:
    return when_true if to_bool(condition) is True else when_false


# --- Math functions ---


@builtin("ROUND", 1, 2)
def _round(value: Any, decimals: Any = 0) -> int | float | None:
    """Round half away from zero."""
    if value is None:
        return None
    number = _number(value, "ROUND")
    places = _integer(decimals, "ROUND") if decimals is not None else 0
    factor = 10 ** places
    rounded = math.floor(abs(number) * factor + 0.5) / factor
    rounded = math.copysign(rounded, number)
    return int(rounded) if places <= 0 else rounded


@builtin("CEIL", 1)
def _ceil(value: Any) -> int | None:
    return None if value is None else math.ceil(_number(value, "CEIL"))


alias("CEILING", "CEIL")


@builtin("FLOOR", 1)
def _floor(value: Any) -> int | None:
    return None if value is None else math.floor(_number(value, "FLOOR"))


@builtin("ABS", 1)
def _abs(value: Any) -> int | float | None:
    return None if value is None else abs(_number(value, "ABS"))


@builtin("MOD", 2)
def _mod(value: Any, divisor: Any) -> int | float | None:
    """Remainder with the sign of the dividend."""
    if value is None or divisor is None:
        return None
    a, b = _number(value, "MOD"), _number(divisor, "MOD")
    if b == 0:
        raise QueryError("Division by zero")
    result = math.fmod(a, b)
    return int(result) if isinstance(a, int) and isinstance(b, int) else result


@builtin("POWER", 2)
def _power(base: Any, exponent: Any) -> int | float | None:
    if base is None or exponent is None:
        return None
    try:
        result = _number(base, "POWER") ** _number(exponent, "POWER")
    except (OverflowError, ZeroDivisionError) as e:
        raise QueryError(f"POWER(): {e}") from e
    if isinstance(result, complex):
        raise QueryError("POWER(): fractional power of a negative number")
    return result


@builtin("SQRT", 1)
def _sqrt(value: Any) -> float | None:
    if value is None:
        return None
    number = _number(value, "SQRT")
    if number < 0:
        raise QueryError(f"SQRT() of a negative number: {number}")
    return math.sqrt(number)


@builtin("RAND", 0)
def _rand() -> float:
    return random.random()


# --- Date functions ---


def parse_datetime(value: Any, fname: str) -> datetime:
    """Parse an ISO-8601 date or timestamp; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = to_text(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise QueryError(f"{fname}() expects a date, got {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _now() -> datetime:
    return datetime.now(timezone.utc)


@builtin("NOW", 0)
def _now_text() -> str:
    return _now().isoformat()


alias("CURRENT_TIMESTAMP", "NOW")


@builtin("CURRENT_DATE", 0)
def _current_date() -> str:
    return _now().date().isoformat()


alias("CURDATE", "CURRENT_DATE")


@builtin("CURRENT_TIME", 0)
def _current_time() -> str:
    return _now().strftime("%H:%M:%S")


alias("CURTIME", "CURRENT_TIME")


def _date_part(attribute: str) -> Callable[[Any], int | None]:
    def part(value: Any) -> int | None:
        if value is None:
            return None
        return getattr(parse_datetime(value, attribute.upper()), attribute)

    return part


for _part in ("year", "month", "day", "hour", "minute", "second"):
    builtin(_part.upper(), 1)(_date_part(_part))


@builtin("DATEDIFF", 2)
def _datediff(first: Any, second: Any) -> int | None:
    """Whole days between two dates, rounded up, regardless of order."""
    if first is None or second is None:
        return None
    delta = parse_datetime(first, "DATEDIFF") - parse_datetime(second, "DATEDIFF")
    return math.ceil(abs(delta.total_seconds()) / 86400)


_DATE_UNITS = ("DAY", "MONTH", "YEAR", "HOUR", "MINUTE", "SECOND")


@builtin("DATE_ADD", 3)
def _date_add(value: Any, interval: Any, unit: Any) -> str | None:
    if value is None or interval is None:
        return None
    moment = parse_datetime(value, "DATE_ADD")
    amount = _integer(interval, "DATE_ADD")
    unit_name = to_text(unit).upper()
    if unit_name not in _DATE_UNITS:
        raise QueryError(f"DATE_ADD() unit must be one of {', '.join(_DATE_UNITS)}")
    if unit_name in ("YEAR", "MONTH"):
        months = moment.month - 1 + amount * (12 if unit_name == "YEAR" else 1)
        year = moment.year + months // 12
        month = months % 12 + 1
        # Clamp the day to the last day of the target month
        day = moment.day
        while True:
            try:
                moment = moment.replace(year=year, month=month, day=day)
                break
            except ValueError:
                day -= 1
    else:
        moment += timedelta(**{unit_name.lower() + "s": amount})
    return moment.isoformat()


@builtin("DATE_SUB", 3)
def _date_sub(value: Any, interval: Any, unit: Any) -> str | None:
    if interval is None:
        return None
    return _date_add(value, -_integer(interval, "DATE_SUB"), unit)
