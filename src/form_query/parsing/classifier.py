"""Statement classification by leading keywords."""

from __future__ import annotations

import re
from enum import Enum

from form_query.errors import UnsupportedStatement
from form_query.identifiers import SYSTEM_TABLES, strip_quotes


class StatementKind(Enum):
    CREATE_FUNCTION = "create_function"
    DECLARE = "declare"
    SET = "set"
    IF = "if"
    WHILE = "while"
    UPDATE_FORM = "update_form"
    INSERT = "insert"
    FORM_SUBMISSION_QUERY = "form_submission_query"
    SYSTEM_TABLE_QUERY = "system_table_query"


EXPECTED_SHAPES: dict[StatementKind, str] = {
    StatementKind.CREATE_FUNCTION: (
        "CREATE FUNCTION name(@param TYPE, ...) RETURNS TYPE AS BEGIN ... RETURN expr END"
    ),
    StatementKind.DECLARE: "DECLARE @name TYPE [= expr]",
    StatementKind.SET: "SET @name = expr",
    StatementKind.IF: "IF cond BEGIN ... END [ELSE IF cond BEGIN ... END] [ELSE BEGIN ... END]",
    StatementKind.WHILE: "WHILE cond BEGIN ... END",
    StatementKind.UPDATE_FORM: (
        "UPDATE FORM 'form_uuid' SET FIELD('field_uuid') = value WHERE condition"
    ),
    StatementKind.INSERT: (
        "INSERT [INTO] [FORM] 'form_uuid' (columns) VALUES (values) | SELECT ..."
    ),
    StatementKind.FORM_SUBMISSION_QUERY: (
        'SELECT ... FROM "form_uuid" [WHERE ...] [GROUP BY ...] [HAVING ...] '
        "[ORDER BY ...] [LIMIT n] [OFFSET n]"
    ),
    StatementKind.SYSTEM_TABLE_QUERY: (
        "SELECT ... FROM users|groups|forms|form_fields|projects [WHERE ...]"
    ),
}

# Checked in order; the first match wins
_LEADING_PATTERNS: list[tuple[re.Pattern[str], StatementKind]] = [
    (re.compile(r"^CREATE\s+FUNCTION\b", re.IGNORECASE), StatementKind.CREATE_FUNCTION),
    (re.compile(r"^DECLARE\b", re.IGNORECASE), StatementKind.DECLARE),
    (re.compile(r"^SET\b", re.IGNORECASE), StatementKind.SET),
    (re.compile(r"^IF\b", re.IGNORECASE), StatementKind.IF),
    (re.compile(r"^WHILE\b", re.IGNORECASE), StatementKind.WHILE),
    (re.compile(r"^UPDATE\s+FORM\b", re.IGNORECASE), StatementKind.UPDATE_FORM),
    (re.compile(r"^INSERT\b", re.IGNORECASE), StatementKind.INSERT),
]

_SELECT_RE = re.compile(r"^SELECT\b", re.IGNORECASE)
_FROM_RE = re.compile(r"\bFROM\s+(\"[^\"]*\"|'[^']*'|`[^`]*`|[\w-]+)", re.IGNORECASE)
_COMMENT_RE = re.compile(r"--[^\n]*")


def classify(text: str) -> StatementKind:
    """Return the kind of statement *text* is, judged by its leading keywords.

    Raises UnsupportedStatement when nothing matches.
    """
    stmt = _COMMENT_RE.sub("", text).strip().rstrip(";").strip()

    for pattern, kind in _LEADING_PATTERNS:
        if pattern.match(stmt):
            return kind

    if _SELECT_RE.match(stmt):
        # Top-level FROM: skip anything inside parentheses
        m = _FROM_RE.search(_mask_parens(stmt))
        if m and strip_quotes(m.group(1)).lower() in SYSTEM_TABLES:
            return StatementKind.SYSTEM_TABLE_QUERY
        return StatementKind.FORM_SUBMISSION_QUERY

    allowed = "\n  ".join(EXPECTED_SHAPES[k] for k in StatementKind if k is not StatementKind.SYSTEM_TABLE_QUERY)
    raise UnsupportedStatement(f"Unsupported statement. Expected one of:\n  {allowed}")


def _mask_parens(text: str) -> str:
    """Blank out parenthesised text so nested FROM clauses are not matched."""
    out = []
    depth = 0
    for ch in text:
        if ch == "(":
            depth += 1
        if depth:
            out.append(" ")
        else:
            out.append(ch)
        if ch == ")" and depth:
            depth -= 1
    return "".join(out)
