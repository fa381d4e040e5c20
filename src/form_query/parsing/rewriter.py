"""Canonical forms for field access and aggregates.

The grammar actions call into this module so that every way of naming a field
(``FIELD('id')``, ``VALUE_OF('id')``, a bare UUID, ``"uuid"``) ends up as the
same :class:`FieldRef`, system columns as :class:`SystemColumn`, and aggregate
wrappers as :class:`AggregateCall` holding the unevaluated reference.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from form_query.errors import InvalidConstruct
from form_query.identifiers import is_uuid
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
)

# Column name -> SubmissionRecord attribute
SYSTEM_COLUMNS: dict[str, str] = {
    "submission_id": "id",
    "submission_ref_id": "stable_ref",
    "submitted_by": "submitted_by",
    "submitted_at": "submitted_at",
    "form_id": "form_id",
}

AGGREGATE_FUNCTIONS: frozenset[str] = frozenset({"COUNT", "SUM", "AVG", "MIN", "MAX"})

FIELD_ACCESSORS: frozenset[str] = frozenset({"FIELD", "VALUE_OF"})


def field_ref(field_id: str) -> FieldRef:
    """Build a FieldRef, rejecting ids that are not UUID-shaped."""
    if not is_uuid(field_id):
        raise InvalidConstruct(f"Invalid field id '{field_id}': expected a UUID")
    return FieldRef(field_id=field_id.lower())


def identifier(name: str) -> SystemColumn | ColumnRef:
    """Map a bare identifier to a system column or a by-name column reference."""
    attribute = SYSTEM_COLUMNS.get(name.lower())
    if attribute is not None:
        return SystemColumn(name=name.lower(), attribute=attribute)
    return ColumnRef(name=name)


def quoted(text: str) -> FieldRef | ColumnRef:
    """A double-quoted name is a field id when UUID-shaped, else a column name."""
    if is_uuid(text):
        return FieldRef(field_id=text.lower())
    return identifier(text) if text.lower() in SYSTEM_COLUMNS else ColumnRef(name=text)


def function_call(name: str, args: list[Any]) -> Any:
    """Rewrite FIELD/VALUE_OF and aggregate wrappers; leave other calls alone."""
    upper = name.upper()

    if upper in FIELD_ACCESSORS:
        if len(args) != 1:
            raise InvalidConstruct(f"{upper}() takes exactly one field id")
        arg = args[0]
        if isinstance(arg, FieldRef):
            return arg
        if isinstance(arg, Literal) and isinstance(arg.value, str):
            return field_ref(arg.value)
        if isinstance(arg, ColumnRef):
            return field_ref(arg.name)
        raise InvalidConstruct(f"{upper}() takes a quoted field id")

    if upper in AGGREGATE_FUNCTIONS:
        if len(args) != 1:
            raise InvalidConstruct(f"{upper}() takes exactly one argument")
        if contains_aggregate(args[0]):
            raise InvalidConstruct(f"Nested aggregate in {upper}()")
        return AggregateCall(function=upper, argument=args[0])

    return FunctionCall(name=upper, args=args)


def star_call(name: str) -> AggregateCall:
    """``NAME(*)``; only COUNT accepts a star."""
    if name.upper() != "COUNT":
        raise InvalidConstruct(f"{name.upper()}(*) is not supported, only COUNT(*)")
    return AggregateCall(function="COUNT", star=True)


def children(node: Any) -> list[Any]:
    """Direct sub-expressions of *node*, not descending into subqueries."""
    if isinstance(node, UnaryOp):
        return [node.operand]
    if isinstance(node, BinaryOp):
        return [node.left, node.right]
    if isinstance(node, (IsNull, InSubquery, Cast)):
        return [node.operand]
    if isinstance(node, InList):
        return [node.operand, *node.items]
    if isinstance(node, Between):
        return [node.operand, node.low, node.high]
    if isinstance(node, Like):
        return [node.operand, node.pattern]
    if isinstance(node, FunctionCall):
        return list(node.args)
    if isinstance(node, AggregateCall):
        return [] if node.argument is None else [node.argument]
    if isinstance(node, CaseExpr):
        result = [] if node.operand is None else [node.operand]
        for when in node.whens:
            result.extend((when.condition, when.result))
        if node.default is not None:
            result.append(node.default)
        return result
    if isinstance(node, JsonAccess):
        return [node.operand, node.key]
    return []


def walk(node: Any) -> Iterator[Any]:
    """Yield *node* and every sub-expression, depth first."""
    stack = [node]
    while stack:
        current = stack.pop()
        if current is None:
            continue
        yield current
        stack.extend(reversed(children(current)))


def contains_aggregate(expr: Any) -> bool:
    return any(isinstance(n, AggregateCall) for n in walk(expr))


def contains_subquery(expr: Any) -> bool:
    return any(isinstance(n, (Subquery, InSubquery)) for n in walk(expr))


def field_refs(expr: Any) -> list[str]:
    """Field ids read by *expr*, in order of appearance, without duplicates."""
    seen: list[str] = []
    for node in walk(expr):
        if isinstance(node, FieldRef) and node.field_id not in seen:
            seen.append(node.field_id)
    return seen
