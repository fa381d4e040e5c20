"""Identifier and literal helpers shared by the parser, executor and REPL."""

from __future__ import annotations

import re

from form_query.errors import QuerySyntaxError

_UUID_RE = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)

# System resources that can appear as a FROM target instead of a form id
SYSTEM_TABLES: frozenset[str] = frozenset({
    "users",
    "groups",
    "forms",
    "form_fields",
    "projects",
})

_QUOTES = ("'", '"', "`")


def is_uuid(text: object) -> bool:
    """Return True if *text* is a UUID-shaped string (8-4-4-4-12 hex)."""
    return isinstance(text, str) and bool(_UUID_RE.match(text))


def require_uuid(text: str, what: str = "identifier") -> str:
    """Return *text* unchanged or raise if it is not UUID-shaped."""
    if not is_uuid(text):
        raise QuerySyntaxError(f"Invalid {what}: expected a UUID, got {text!r}")
    return text


def strip_quotes(text: str) -> str:
    """Remove one pair of matching quotes and un-double embedded quotes."""
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in _QUOTES:
        quote = text[0]
        return text[1:-1].replace(quote * 2, quote)
    return text


def split_top_level(text: str, sep: str = ",") -> list[str]:
    """Split *text* on *sep* where it is not nested in parentheses or quotes.

    Empty trailing pieces are dropped; surrounding whitespace is stripped.
    """
    parts: list[str] = []
    current: list[str] = []
    depth = 0
    quote: str | None = None

    for ch in text:
        if quote:
            current.append(ch)
            if ch == quote:
                quote = None
            continue
        if ch in _QUOTES:
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
        elif ch == sep and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)

    tail = "".join(current).strip()
    if tail:
        parts.append(tail)
    return parts


_WORD_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def split_statements(content: str) -> list[str]:
    """Split a script into top-level statements on semicolons.

    Semicolons inside quotes, parentheses, or BEGIN/END and CASE/END blocks
    do not end a statement. A top-level BEGIN/END block also ends its
    statement unless ELSE follows, so IF and WHILE statements may follow one
    another without a semicolon. Lines starting with ``--`` are dropped.
    """
    lines = [line for line in content.split("\n") if not line.strip().startswith("--")]
    content = "\n".join(lines)

    statements: list[str] = []
    current: list[str] = []
    paren_depth = 0
    blocks: list[str] = []
    block_closed = False
    quote: str | None = None
    i = 0

    while i < len(content):
        ch = content[i]

        if quote:
            current.append(ch)
            if ch == quote:
                quote = None
            i += 1
            continue

        if ch in _QUOTES:
            quote = ch
            current.append(ch)
            i += 1
            continue

        if ch.isalpha() or ch == "_":
            m = _WORD_RE.match(content, i)
            word = m.group(0)
            # Words glued to '@' are variable names, not keywords
            if not (i > 0 and content[i - 1] == "@"):
                upper = word.upper()
                if block_closed and upper != "ELSE":
                    stmt = "".join(current).strip()
                    if stmt:
                        statements.append(stmt)
                    current = []
                block_closed = False
                if upper in ("BEGIN", "CASE"):
                    blocks.append(upper)
                elif upper == "END" and blocks:
                    closed = blocks.pop()
                    block_closed = closed == "BEGIN" and not blocks and paren_depth == 0
            current.append(word)
            i = m.end()
            continue

        if not ch.isspace():
            block_closed = False

        if ch == "(":
            paren_depth += 1
        elif ch == ")":
            paren_depth = max(0, paren_depth - 1)
        elif ch == ";" and paren_depth == 0 and not blocks:
            stmt = "".join(current).strip()
            if stmt:
                statements.append(stmt)
            current = []
            i += 1
            continue

        current.append(ch)
        i += 1

    stmt = "".join(current).strip()
    if stmt:
        statements.append(stmt)
    return statements
