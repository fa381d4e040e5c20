"""Expression evaluation against one record or one group of records."""

from __future__ import annotations

import json
import math
import re
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any, Union

from form_query.coercion import compare, to_bool, to_number, to_text, values_equal
from form_query.errors import QueryError, UnresolvedReference
from form_query.functions.builtins import call_builtin, is_builtin, parse_datetime
from form_query.models import FieldDefinition, SubmissionRecord
from form_query.parsing.nodes import (
    AggregateCall,
    Between,
    BinaryOp,
    CaseExpr,
    Cast,
    ColumnRef,
    FieldRef,
    FunctionCall,
    InList,
    InSubquery,
    IsNull,
    JsonAccess,
    Like,
    Literal,
    Subquery,
    SystemColumn,
    UnaryOp,
    Variable,
)

if TYPE_CHECKING:
    from form_query.control_flow import LoopContext
    from form_query.functions.registry import UserFunctionRegistry

# A submission or a system-table row; None outside any query
Record = Union[SubmissionRecord, Mapping[str, Any], None]

_COMPARISONS = ("=", "!=", "<", "<=", ">", ">=")
_ARITHMETIC = ("+", "-", "*", "/", "%")
_WEIGHT_FUNCTIONS = ("WEIGHTED_VALUE", "FIELD_WEIGHTAGE")


def like_to_regex(pattern: str, case_insensitive: bool = False) -> re.Pattern[str]:
    """Translate a LIKE pattern (``%`` any run, ``_`` one char) to a regex."""
    parts = []
    for ch in pattern:
        if ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    flags = re.DOTALL | (re.IGNORECASE if case_insensitive else 0)
    return re.compile("".join(parts), flags)


def aggregate(function: str, values: list[Any], star: bool = False) -> Any:
    """Fold per-record values with COUNT, SUM, AVG, MIN or MAX.

    COUNT(*) counts rows and COUNT(x) non-null values. SUM and AVG skip
    NULLs and count non-numeric values as 0. MIN and MAX skip both. An empty
    SUM is 0; an empty AVG, MIN or MAX is NULL.
    """
    function = function.upper()
    if function == "COUNT":
        if star:
            return len(values)
        return sum(1 for v in values if v is not None)

    present = [v for v in values if v is not None]
    if function in ("SUM", "AVG"):
        numbers = [to_number(v) or 0 for v in present]
        total = sum(numbers)
        if function == "SUM":
            return total
        return total / len(numbers) if numbers else None
    if function in ("MIN", "MAX"):
        numbers = [n for n in (to_number(v) for v in present) if n is not None]
        if not numbers:
            return None
        return min(numbers) if function == "MIN" else max(numbers)
    raise QueryError(f"Unknown aggregate function: {function}")


def _tidy(number: int | float) -> int | float:
    """Collapse an integral float produced from two ints back to int."""
    if isinstance(number, float) and number.is_integer() and math.isfinite(number):
        return int(number)
    return number


class ExpressionEvaluator:
    """Evaluates parsed expressions.

    *fields* are the target form's field definitions (labels resolve bare
    column names, weightage feeds WEIGHTED_VALUE); *functions* is the user
    function registry; *variables* the LoopContext of the running script.
    """

    def __init__(
        self,
        fields: Iterable[FieldDefinition] | Mapping[str, FieldDefinition] = (),
        functions: UserFunctionRegistry | None = None,
        variables: LoopContext | None = None,
    ) -> None:
        if isinstance(fields, Mapping):
            fields = fields.values()
        self.fields: dict[str, FieldDefinition] = {f.id.lower(): f for f in fields}
        self.labels: dict[str, str] = {f.label.lower(): f.id.lower() for f in self.fields.values()}
        self.functions = functions
        self.variables = variables

    # --- Public entry points ---

    def evaluate(self, expr: Any, record: Record = None) -> Any:
        return self._eval(expr, record, None, None)

    def evaluate_condition(self, expr: Any, record: Record = None) -> bool:
        """True only when the condition is strictly true; unknown does not hold."""
        return to_bool(self._eval(expr, record, None, None)) is True

    def evaluate_group(
        self,
        expr: Any,
        records: list[Record],
        aliases: Mapping[str, Any] | None = None,
    ) -> Any:
        """Evaluate over a group: aggregates fold all rows, the rest read the first."""
        first = records[0] if records else None
        return self._eval(expr, first, records, aliases)

    def resolve_field(self, name: str) -> str | None:
        """Field id for a field id or (case-insensitive) label."""
        lowered = name.lower()
        if lowered in self.fields:
            return lowered
        return self.labels.get(lowered)

    # --- Dispatch ---

    def _eval(self, expr: Any, record: Record, group: list[Record] | None, aliases: Mapping[str, Any] | None) -> Any:
        if isinstance(expr, Literal):
            return expr.value
        if isinstance(expr, FieldRef):
            return self._read_field(expr.field_id, record)
        if isinstance(expr, SystemColumn):
            return self._read_system_column(expr, record)
        if isinstance(expr, ColumnRef):
            return self._read_column(expr.name, record, aliases)
        if isinstance(expr, Variable):
            if self.variables is None:
                raise UnresolvedReference(f"Variable @{expr.name} is not defined")
            return self.variables.get(expr.name)
        if isinstance(expr, AggregateCall):
            return self._eval_aggregate(expr, group)
        if isinstance(expr, UnaryOp):
            return self._eval_unary(expr, record, group, aliases)
        if isinstance(expr, BinaryOp):
            return self._eval_binary(expr, record, group, aliases)
        if isinstance(expr, IsNull):
            is_null = self._eval(expr.operand, record, group, aliases) is None
            return not is_null if expr.negated else is_null
        if isinstance(expr, InList):
            return self._eval_in(expr, record, group, aliases)
        if isinstance(expr, Between):
            return self._eval_between(expr, record, group, aliases)
        if isinstance(expr, Like):
            return self._eval_like(expr, record, group, aliases)
        if isinstance(expr, FunctionCall):
            return self._eval_function(expr, record, group, aliases)
        if isinstance(expr, CaseExpr):
            return self._eval_case(expr, record, group, aliases)
        if isinstance(expr, Cast):
            return self._cast(self._eval(expr.operand, record, group, aliases), expr.type_name)
        if isinstance(expr, JsonAccess):
            return self._eval_json(expr, record, group, aliases)
        if isinstance(expr, (Subquery, InSubquery)):
            raise QueryError("Subquery must be resolved before evaluation")
        raise QueryError(f"Cannot evaluate {type(expr).__name__}")

    # --- References ---

    def _read_field(self, field_id: str, record: Record) -> Any:
        if record is None:
            return None
        data = record.data if isinstance(record, SubmissionRecord) else record
        if field_id in data:
            return data[field_id]
        for key, value in data.items():
            if isinstance(key, str) and key.lower() == field_id:
                return value
        return None

    def _read_system_column(self, column: SystemColumn, record: Record) -> Any:
        if record is None:
            return None
        if isinstance(record, SubmissionRecord):
            return getattr(record, column.attribute)
        if column.name in record:
            return record[column.name]
        return record.get(column.attribute)

    def _read_column(self, name: str, record: Record, aliases: Mapping[str, Any] | None) -> Any:
        if aliases:
            for alias, value in aliases.items():
                if alias.lower() == name.lower():
                    return value
        if isinstance(record, Mapping):
            if name in record:
                return record[name]
            for key, value in record.items():
                if key.lower() == name.lower():
                    return value
            return None
        field_id = self.resolve_field(name)
        if field_id is not None:
            return self._read_field(field_id, record)
        raise UnresolvedReference(f"Unknown column '{name}'")

    # --- Operators ---

    def _eval_aggregate(self, expr: AggregateCall, group: list[Record] | None) -> Any:
        if group is None:
            raise QueryError(f"Aggregate {expr.function}() is not allowed here")
        if expr.star:
            return aggregate(expr.function, list(group), star=True)
        values = [self._eval(expr.argument, r, None, None) for r in group]
        return aggregate(expr.function, values)

    def _eval_unary(self, expr: UnaryOp, record: Record, group: Any, aliases: Any) -> Any:
        value = self._eval(expr.operand, record, group, aliases)
        if expr.op == "not":
            truth = to_bool(value)
            return None if truth is None else not truth
        if value is None:
            return None
        number = to_number(value)
        if number is None:
            raise QueryError(f"Cannot negate non-numeric value: {value!r}")
        return -number

    def _eval_binary(self, expr: BinaryOp, record: Record, group: Any, aliases: Any) -> Any:
        op = expr.op
        if op in ("and", "or"):
            return self._eval_logical(expr, record, group, aliases)

        left = self._eval(expr.left, record, group, aliases)
        right = self._eval(expr.right, record, group, aliases)

        if op == "||":
            return to_text(left) + to_text(right)
        if op in _COMPARISONS:
            return self._compare(op, left, right)
        if op in _ARITHMETIC:
            return self._arithmetic(op, left, right)
        raise QueryError(f"Unknown operator: {op}")

    def _eval_logical(self, expr: BinaryOp, record: Record, group: Any, aliases: Any) -> bool | None:
        left = to_bool(self._eval(expr.left, record, group, aliases))
        if expr.op == "and":
            if left is False:
                return False
            right = to_bool(self._eval(expr.right, record, group, aliases))
            if right is False:
                return False
            return None if left is None or right is None else True
        if left is True:
            return True
        right = to_bool(self._eval(expr.right, record, group, aliases))
        if right is True:
            return True
        return None if left is None or right is None else False

    def _compare(self, op: str, left: Any, right: Any) -> bool | None:
        if left is None or right is None:
            return None
        if op in ("=", "!="):
            # A multi-row subquery result compares by membership
            if isinstance(right, list) and not isinstance(left, list):
                equal = any(values_equal(left, v) for v in right)
            elif isinstance(left, list) and not isinstance(right, list):
                equal = any(values_equal(v, right) for v in left)
            else:
                equal = values_equal(left, right)
            return equal if op == "=" else not equal
        result = compare(left, right)
        if result is None:
            return None
        if op == "<":
            return result < 0
        if op == "<=":
            return result <= 0
        if op == ">":
            return result > 0
        return result >= 0

    def _arithmetic(self, op: str, left: Any, right: Any) -> Any:
        if left is None or right is None:
            return None
        a, b = to_number(left), to_number(right)
        if a is None or b is None:
            raise QueryError(f"Cannot apply '{op}' to non-numeric values: {left!r}, {right!r}")
        if op == "+":
            return a + b
        if op == "-":
            return a - b
        if op == "*":
            return a * b
        if b == 0:
            raise QueryError("Division by zero")
        if op == "/":
            result = a / b
            return _tidy(result) if isinstance(a, int) and isinstance(b, int) else result
        result = math.fmod(a, b)
        return int(result) if isinstance(a, int) and isinstance(b, int) else result

    def _eval_in(self, expr: InList, record: Record, group: Any, aliases: Any) -> bool | None:
        value = self._eval(expr.operand, record, group, aliases)
        if value is None:
            return None
        candidates: list[Any] = []
        for item in expr.items:
            evaluated = self._eval(item, record, group, aliases)
            if isinstance(evaluated, list):
                candidates.extend(evaluated)
            else:
                candidates.append(evaluated)
        saw_null = False
        for candidate in candidates:
            if candidate is None:
                saw_null = True
            elif values_equal(value, candidate):
                return not expr.negated
        if saw_null:
            return None
        return expr.negated

    def _eval_between(self, expr: Between, record: Record, group: Any, aliases: Any) -> bool | None:
        value = self._eval(expr.operand, record, group, aliases)
        low = self._eval(expr.low, record, group, aliases)
        high = self._eval(expr.high, record, group, aliases)
        above = self._compare(">=", value, low)
        below = self._compare("<=", value, high)
        if above is False or below is False:
            inside: bool | None = False
        elif above is None or below is None:
            inside = None
        else:
            inside = True
        if inside is None:
            return None
        return not inside if expr.negated else inside

    def _eval_like(self, expr: Like, record: Record, group: Any, aliases: Any) -> bool | None:
        value = self._eval(expr.operand, record, group, aliases)
        pattern = self._eval(expr.pattern, record, group, aliases)
        if value is None or pattern is None:
            return None
        matched = like_to_regex(to_text(pattern), expr.case_insensitive).fullmatch(to_text(value)) is not None
        return not matched if expr.negated else matched

    def _eval_case(self, expr: CaseExpr, record: Record, group: Any, aliases: Any) -> Any:
        if expr.operand is not None:
            operand = self._eval(expr.operand, record, group, aliases)
            for when in expr.whens:
                if values_equal(operand, self._eval(when.condition, record, group, aliases)) is True:
                    return self._eval(when.result, record, group, aliases)
        else:
            for when in expr.whens:
                if to_bool(self._eval(when.condition, record, group, aliases)) is True:
                    return self._eval(when.result, record, group, aliases)
        if expr.default is not None:
            return self._eval(expr.default, record, group, aliases)
        return None

    # --- Functions ---

    def _eval_function(self, expr: FunctionCall, record: Record, group: Any, aliases: Any) -> Any:
        if expr.name in _WEIGHT_FUNCTIONS:
            return self._eval_weight(expr, record)

        args = [self._eval(a, record, group, aliases) for a in expr.args]
        if is_builtin(expr.name):
            return call_builtin(expr.name, args)
        if self.functions is not None and self.functions.has(expr.name):
            return self.functions.call(expr.name, args)
        raise UnresolvedReference(f"Function {expr.name} is not defined")

    def _eval_weight(self, expr: FunctionCall, record: Record) -> Any:
        if len(expr.args) != 1 or not isinstance(expr.args[0], FieldRef):
            raise QueryError(f"{expr.name}() takes a single FIELD('<uuid>') argument")
        field_id = expr.args[0].field_id
        definition = self.fields.get(field_id)
        weightage = definition.weightage if definition is not None else 1
        if expr.name == "FIELD_WEIGHTAGE":
            return weightage
        value = self._read_field(field_id, record)
        if value is None:
            return None
        return (to_number(value) or 0) * weightage

    # --- JSON ---

    def _cast(self, value: Any, type_name: str) -> Any:
        if value is None:
            return None
        if type_name in ("json", "jsonb"):
            if isinstance(value, str):
                try:
                    return json.loads(value)
                except json.JSONDecodeError as e:
                    raise QueryError(f"Invalid JSON value: {e}") from e
            return value
        if type_name in ("text", "varchar", "string"):
            return to_text(value)
        if type_name in ("numeric", "decimal", "float", "real", "double"):
            number = to_number(value)
            if number is None:
                raise QueryError(f"Cannot cast {value!r} to {type_name}")
            return number if type_name == "numeric" else float(number)
        if type_name in ("int", "integer", "bigint", "smallint"):
            number = to_number(value)
            if number is None:
                raise QueryError(f"Cannot cast {value!r} to {type_name}")
            return int(number)
        if type_name in ("bool", "boolean"):
            return to_bool(value)
        if type_name == "date":
            return parse_datetime(value, "CAST").date().isoformat()
        raise QueryError(f"Unknown cast type: {type_name}")

    def _eval_json(self, expr: JsonAccess, record: Record, group: Any, aliases: Any) -> Any:
        base = self._eval(expr.operand, record, group, aliases)
        key = self._eval(expr.key, record, group, aliases)
        if isinstance(base, str):
            try:
                base = json.loads(base)
            except json.JSONDecodeError:
                return None

        element = None
        if isinstance(base, Mapping):
            element = base.get(to_text(key))
        elif isinstance(base, list):
            index = to_number(key)
            if isinstance(index, int) and -len(base) <= index < len(base):
                element = base[index]

        if expr.as_text and element is not None:
            return json.dumps(element) if isinstance(element, (dict, list)) else to_text(element)
        return element
