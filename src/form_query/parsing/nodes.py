"""AST node types produced by the FQL parser."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


# --- Expressions ---


@dataclass
class Literal:
    """A constant: string, number, boolean or NULL."""

    value: Any


@dataclass
class Variable:
    """A reference to a declared ``@variable``."""

    name: str


@dataclass
class FieldRef:
    """Read one field from the current record's data map."""

    field_id: str


@dataclass
class SystemColumn:
    """A fixed record attribute such as ``submitted_by``."""

    name: str  # Name as written in the statement
    attribute: str  # SubmissionRecord attribute it reads


@dataclass
class ColumnRef:
    """A bare name: a field label, a select alias or a system-table column."""

    name: str


@dataclass
class UnaryOp:
    """Unary minus or logical NOT."""

    op: str  # "-", "not"
    operand: Expr


@dataclass
class BinaryOp:
    """Arithmetic, concatenation, comparison or boolean connective."""

    op: str  # + - * / % || = != < <= > >= and or
    left: Expr
    right: Expr


@dataclass
class IsNull:
    operand: Expr
    negated: bool = False


@dataclass
class InList:
    operand: Expr
    items: list[Expr]
    negated: bool = False


@dataclass
class InSubquery:
    operand: Expr
    query: SelectQuery
    negated: bool = False


@dataclass
class Between:
    operand: Expr
    low: Expr
    high: Expr
    negated: bool = False


@dataclass
class Like:
    operand: Expr
    pattern: Expr
    negated: bool = False
    case_insensitive: bool = False


@dataclass
class FunctionCall:
    """A scalar function call, built-in or user-defined."""

    name: str  # Upper-cased
    args: list[Expr] = field(default_factory=list)


@dataclass
class AggregateCall:
    """COUNT/SUM/AVG/MIN/MAX over the rows of a group.

    The argument stays an unevaluated expression since it is read once per
    row of the group.
    """

    function: str  # Upper-cased
    argument: Expr | None = None
    star: bool = False  # COUNT(*)


@dataclass
class WhenClause:
    condition: Expr
    result: Expr


@dataclass
class CaseExpr:
    """``CASE [operand] WHEN ... THEN ... [ELSE ...] END``."""

    whens: list[WhenClause]
    operand: Expr | None = None  # Set for the simple CASE form
    default: Expr | None = None


@dataclass
class Cast:
    """``expr::type``."""

    operand: Expr
    type_name: str  # Lower-cased


@dataclass
class JsonAccess:
    """``expr -> key`` (element) or ``expr ->> key`` (element as text)."""

    operand: Expr
    key: Expr
    as_text: bool = False


@dataclass
class Subquery:
    """A parenthesised SELECT used as a value."""

    query: SelectQuery


Expr = Union[
    Literal, Variable, FieldRef, SystemColumn, ColumnRef, UnaryOp, BinaryOp,
    IsNull, InList, InSubquery, Between, Like, FunctionCall, AggregateCall,
    CaseExpr, Cast, JsonAccess, Subquery,
]


# --- Queries ---


@dataclass
class SelectItem:
    """One projected column of a SELECT."""

    expression: Expr
    alias: str | None = None

    @property
    def is_aggregate(self) -> bool:
        from form_query.parsing.rewriter import contains_aggregate

        return contains_aggregate(self.expression)

    @property
    def aggregate_function(self) -> str | None:
        """Function name when the item is a bare aggregate call."""
        if isinstance(self.expression, AggregateCall):
            return self.expression.function
        return None

    @property
    def field_ref(self) -> FieldRef | None:
        """The field the item reads directly, through an aggregate or JSON path."""
        expr = self.expression
        if isinstance(expr, AggregateCall):
            expr = expr.argument
        while isinstance(expr, (JsonAccess, Cast)):
            expr = expr.operand
        return expr if isinstance(expr, FieldRef) else None

    @property
    def json_path(self) -> list[Any] | None:
        """Keys of a ``->``/``->>`` chain, outermost last, when the item is one."""
        path: list[Any] = []
        expr = self.expression
        while isinstance(expr, (JsonAccess, Cast)):
            if isinstance(expr, JsonAccess):
                key = expr.key.value if isinstance(expr.key, Literal) else expr.key
                path.insert(0, key)
            expr = expr.operand
        return path or None


@dataclass
class OrderItem:
    expression: Expr
    descending: bool = False


@dataclass
class SelectQuery:
    """A SELECT against a form's submissions or a system table."""

    source: str  # Form UUID or system table name
    items: list[SelectItem] = field(default_factory=list)
    star: bool = False
    distinct: bool = False
    where: Expr | None = None
    group_by: list[Expr] = field(default_factory=list)
    having: Expr | None = None
    order_by: list[OrderItem] = field(default_factory=list)
    limit: int | None = None
    offset: int = 0

    @property
    def is_system_table(self) -> bool:
        from form_query.identifiers import SYSTEM_TABLES

        return self.source.lower() in SYSTEM_TABLES


@dataclass
class UpdateFormQuery:
    """``UPDATE FORM '<uuid>' SET FIELD('<uuid>') = value WHERE cond``."""

    form_id: str
    field_id: str
    value: Expr
    where: Expr
    value_kind: str = "expression"  # subquery, expression, field_copy, literal


@dataclass
class InsertQuery:
    """``INSERT INTO FORM '<uuid>' (cols) VALUES (...)`` or ``... SELECT``."""

    form_id: str
    columns: list[Expr]  # FieldRef or ColumnRef (a label)
    rows: list[list[Expr]] = field(default_factory=list)
    select: SelectQuery | None = None


# --- Procedural statements ---


@dataclass
class DeclareStatement:
    name: str
    type_name: str  # Upper-cased, without (n) / (p, s)
    initializer: Expr | None = None


@dataclass
class SetStatement:
    name: str
    value: Expr


@dataclass
class ConditionalBranch:
    condition: Expr
    body: list[Any] = field(default_factory=list)


@dataclass
class IfStatement:
    """IF with any number of ELSE IF branches and an optional ELSE."""

    branches: list[ConditionalBranch]
    else_body: list[Any] | None = None


@dataclass
class WhileStatement:
    condition: Expr
    body: list[Any] = field(default_factory=list)


@dataclass
class ReturnStatement:
    value: Expr


@dataclass
class FunctionParameter:
    name: str
    type_name: str


@dataclass
class CreateFunctionStatement:
    """``CREATE FUNCTION name(@p TYPE, ...) RETURNS TYPE AS BEGIN ... END``."""

    name: str  # Upper-cased
    parameters: list[FunctionParameter]
    return_type: str
    body: list[Any]
    source: str = ""  # Body text between BEGIN and END


ParsedStatement = Union[
    SelectQuery, UpdateFormQuery, InsertQuery, DeclareStatement, SetStatement,
    IfStatement, WhileStatement, CreateFunctionStatement,
]


def format_expression(expr: Any) -> str:
    """Render an expression back to FQL text, used for default column names."""
    if isinstance(expr, Literal):
        if expr.value is None:
            return "NULL"
        if isinstance(expr.value, bool):
            return "TRUE" if expr.value else "FALSE"
        if isinstance(expr.value, str):
            return "'" + expr.value.replace("'", "''") + "'"
        return str(expr.value)
    if isinstance(expr, Variable):
        return f"@{expr.name}"
    if isinstance(expr, FieldRef):
        return expr.field_id
    if isinstance(expr, (SystemColumn, ColumnRef)):
        return expr.name
    if isinstance(expr, UnaryOp):
        if expr.op == "not":
            return f"NOT {format_expression(expr.operand)}"
        return f"-{format_expression(expr.operand)}"
    if isinstance(expr, BinaryOp):
        op = expr.op.upper() if expr.op in ("and", "or") else expr.op
        return f"{format_expression(expr.left)} {op} {format_expression(expr.right)}"
    if isinstance(expr, IsNull):
        return f"{format_expression(expr.operand)} IS {'NOT ' if expr.negated else ''}NULL"
    if isinstance(expr, InList):
        items = ", ".join(format_expression(i) for i in expr.items)
        return f"{format_expression(expr.operand)} {'NOT ' if expr.negated else ''}IN ({items})"
    if isinstance(expr, InSubquery):
        return f"{format_expression(expr.operand)} {'NOT ' if expr.negated else ''}IN (SELECT ...)"
    if isinstance(expr, Between):
        return (
            f"{format_expression(expr.operand)} {'NOT ' if expr.negated else ''}BETWEEN "
            f"{format_expression(expr.low)} AND {format_expression(expr.high)}"
        )
    if isinstance(expr, Like):
        keyword = "ILIKE" if expr.case_insensitive else "LIKE"
        return (
            f"{format_expression(expr.operand)} {'NOT ' if expr.negated else ''}{keyword} "
            f"{format_expression(expr.pattern)}"
        )
    if isinstance(expr, FunctionCall):
        return f"{expr.name}({', '.join(format_expression(a) for a in expr.args)})"
    if isinstance(expr, AggregateCall):
        inner = "*" if expr.star else format_expression(expr.argument)
        return f"{expr.function}({inner})"
    if isinstance(expr, CaseExpr):
        parts = ["CASE"]
        if expr.operand is not None:
            parts.append(format_expression(expr.operand))
        for when in expr.whens:
            parts.append(f"WHEN {format_expression(when.condition)} THEN {format_expression(when.result)}")
        if expr.default is not None:
            parts.append(f"ELSE {format_expression(expr.default)}")
        parts.append("END")
        return " ".join(parts)
    if isinstance(expr, Cast):
        return f"{format_expression(expr.operand)}::{expr.type_name}"
    if isinstance(expr, JsonAccess):
        arrow = "->>" if expr.as_text else "->"
        return f"{format_expression(expr.operand)}{arrow}{format_expression(expr.key)}"
    if isinstance(expr, Subquery):
        return "(SELECT ...)"
    return str(expr)
