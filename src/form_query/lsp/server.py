"""FQL language server built on pygls."""

from __future__ import annotations

import re

from lsprotocol import types
from pygls.lsp.server import LanguageServer

from form_query.functions.builtins import BUILTINS
from form_query.identifiers import SYSTEM_TABLES, split_statements
from form_query.parsing.parser import QueryParser
from form_query.parsing.rewriter import AGGREGATE_FUNCTIONS, SYSTEM_COLUMNS

# ---------------------------------------------------------------------------
# Static data
# ---------------------------------------------------------------------------

KEYWORDS: dict[str, str] = {
    "select": "Projection clause — chooses which values to return",
    "distinct": "Drop duplicate result rows",
    "from": "Source clause — a form UUID or a system table",
    "where": "Filter clause — keeps rows whose condition is true",
    "group": "Group rows by one or more expressions",
    "by": "Used with 'group by' and 'order by'",
    "having": "Filter groups after aggregation",
    "order": "Sort the result rows",
    "asc": "Ascending sort order (NULLs last)",
    "desc": "Descending sort order (NULLs first)",
    "limit": "Return at most N rows",
    "offset": "Skip the first N rows",
    "as": "Name a result column, or start a function body",
    "and": "Logical AND (three-valued)",
    "or": "Logical OR (three-valued)",
    "not": "Logical negation",
    "in": "Membership in a list or subquery",
    "is": "Used with 'is null' and 'is not null'",
    "null": "Absence-of-value literal",
    "like": "Pattern match with % and _ wildcards",
    "ilike": "Case-insensitive LIKE",
    "between": "Inclusive range test",
    "case": "Conditional expression (CASE WHEN ... THEN ... END)",
    "when": "Branch of a CASE expression",
    "then": "Result of a CASE branch",
    "else": "Fallback of CASE or IF",
    "end": "Closes CASE or a BEGIN block",
    "true": "Boolean true literal",
    "false": "Boolean false literal",
    "update": "Write a value into one field of matching submissions",
    "form": "Used with 'update form' and 'insert into form'",
    "set": "Assign a variable, or the field written by UPDATE",
    "insert": "Create new submissions from VALUES or a SELECT",
    "into": "Used with 'insert into'",
    "values": "Row tuples for INSERT",
    "declare": "Declare a typed script variable",
    "if": "Run a block when a condition holds",
    "while": "Repeat a block while a condition holds (at most 1000 passes)",
    "begin": "Open a statement block",
    "create": "Used with 'create function'",
    "function": "Define a user function",
    "returns": "Return type of a user function",
    "return": "Leave a user function with a value",
}

AGGREGATES: dict[str, str] = {
    "count": "Count rows (COUNT(*)) or non-NULL values",
    "sum": "Sum of numeric values (0 for no rows)",
    "avg": "Arithmetic mean of numeric values",
    "min": "Smallest numeric value",
    "max": "Largest numeric value",
}

FIELD_FUNCTIONS: dict[str, str] = {
    "field": "Reference a field by UUID: FIELD('<uuid>')",
    "value_of": "Reference a field by UUID: VALUE_OF('<uuid>')",
    "weighted_value": "Field value multiplied by the field's weightage",
    "field_weightage": "Weightage configured on a field (default 1)",
}

SYSTEM_COLUMN_DOCS: dict[str, str] = {
    "submission_id": "Submission primary key",
    "submission_ref_id": "Stable, human-readable submission reference",
    "submitted_by": "User who made the submission",
    "submitted_at": "Submission timestamp",
    "form_id": "Form the submission belongs to",
}

# Regex to extract position from QueryParser error messages
_POSITION_RE = re.compile(r"(?:at position|\(position) (\d+)")

# Regexes to find user-defined names in source
_VARIABLE_RE = re.compile(r"\bDECLARE\s+@(\w+)", re.IGNORECASE)
_FUNCTION_RE = re.compile(r"\bCREATE\s+FUNCTION\s+(\w+)", re.IGNORECASE)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def lexpos_to_position(source: str, lexpos: int) -> types.Position:
    """Convert a character offset into an LSP ``Position(line, character)``."""
    line = source.count("\n", 0, lexpos)
    last_nl = source.rfind("\n", 0, lexpos)
    character = lexpos if last_nl == -1 else lexpos - last_nl - 1
    return types.Position(line=line, character=character)


def _extract_position_from_error(message: str) -> int | None:
    """Return the integer position embedded in a SyntaxError message, or None."""
    m = _POSITION_RE.search(message)
    return int(m.group(1)) if m else None


def _statements_with_offsets(source: str) -> list[tuple[int, str]]:
    """Split *source* into statements paired with their offset in *source*."""
    # Blank comment lines instead of dropping them so offsets stay valid
    blanked = "\n".join(
        " " * len(line) if line.strip().startswith("--") else line
        for line in source.split("\n")
    )
    result = []
    cursor = 0
    for statement in split_statements(blanked):
        offset = blanked.find(statement, cursor)
        if offset == -1:
            offset = cursor
        result.append((offset, statement))
        cursor = offset + len(statement)
    return result


def _find_variables(source: str) -> list[str]:
    """Return declared variable names found in *source*."""
    return list(dict.fromkeys(m.group(1) for m in _VARIABLE_RE.finditer(source)))


def _find_functions(source: str) -> list[str]:
    """Return user function names defined in *source*."""
    return list(dict.fromkeys(m.group(1).upper() for m in _FUNCTION_RE.finditer(source)))


def _word_at_position(line_text: str, character: int) -> str:
    """Return the contiguous identifier-like word surrounding *character*."""
    if character < 0 or character >= len(line_text):
        return ""
    ch = line_text[character]
    if not (ch.isalnum() or ch == "_"):
        return ""
    # Scan left
    left = character
    while left > 0 and (line_text[left - 1].isalnum() or line_text[left - 1] == "_"):
        left -= 1
    # Scan right
    right = character
    while right < len(line_text) and (line_text[right].isalnum() or line_text[right] == "_"):
        right += 1
    return line_text[left:right]


def diagnose(source: str, parser: QueryParser | None = None) -> list[types.Diagnostic]:
    """Parse every statement of *source* and return one diagnostic per failure."""
    parser = parser or _parser
    diagnostics: list[types.Diagnostic] = []
    for offset, statement in _statements_with_offsets(source):
        try:
            parser.parse(statement)
        except SyntaxError as exc:
            msg = str(exc)
            pos_int = _extract_position_from_error(msg)
            start = lexpos_to_position(source, offset + (pos_int or 0))
            end = types.Position(line=start.line, character=start.character + 1)
            diagnostics.append(
                types.Diagnostic(
                    range=types.Range(start=start, end=end),
                    severity=types.DiagnosticSeverity.Error,
                    source="fql",
                    message=msg,
                )
            )
    return diagnostics


def describe_word(word: str, source: str = "") -> str | None:
    """Markdown hover text for *word*, or None when it is not a known name."""
    lower = word.lower()
    if lower in KEYWORDS:
        return f"**{lower}** — {KEYWORDS[lower]}"
    if lower in AGGREGATES:
        return f"**{lower.upper()}()** — {AGGREGATES[lower]}"
    if lower in FIELD_FUNCTIONS:
        return f"**{lower.upper()}()** — {FIELD_FUNCTIONS[lower]}"
    if lower.upper() in BUILTINS:
        fn = BUILTINS[lower.upper()]
        if fn.max_args is None:
            arity = f"{fn.min_args}+ arguments"
        elif fn.min_args == fn.max_args:
            arity = f"{fn.min_args} argument{'s' if fn.min_args != 1 else ''}"
        else:
            arity = f"{fn.min_args}–{fn.max_args} arguments"
        return f"**{fn.name}()** — built-in function ({arity})"
    if lower in SYSTEM_COLUMN_DOCS:
        return f"**{lower}** — {SYSTEM_COLUMN_DOCS[lower]}"
    if lower in SYSTEM_TABLES:
        return f"**{lower}** — system table"
    if lower.upper() in _find_functions(source):
        return f"**{lower.upper()}()** — user-defined function"
    return None


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

server = LanguageServer("fql-language-server", "0.1.0")
_parser = QueryParser()


@server.feature(types.TEXT_DOCUMENT_DID_OPEN)
def did_open(params: types.DidOpenTextDocumentParams) -> None:
    _validate_document(params.text_document.uri)


@server.feature(types.TEXT_DOCUMENT_DID_CHANGE)
def did_change(params: types.DidChangeTextDocumentParams) -> None:
    _validate_document(params.text_document.uri)


def _validate_document(uri: str) -> None:
    doc = server.workspace.get_text_document(uri)
    server.text_document_publish_diagnostics(
        types.PublishDiagnosticsParams(uri=uri, diagnostics=diagnose(doc.source))
    )


@server.feature(
    types.TEXT_DOCUMENT_COMPLETION,
    types.CompletionOptions(trigger_characters=["@", " "]),
)
def completions(params: types.CompletionParams) -> types.CompletionList:
    doc = server.workspace.get_text_document(params.text_document.uri)
    line_text = doc.lines[params.position.line] if params.position.line < len(doc.lines) else ""
    prefix = line_text[: params.position.character]

    items: list[types.CompletionItem] = []

    if prefix.endswith("@"):
        # Offer the variables declared in the document
        for name in _find_variables(doc.source):
            items.append(
                types.CompletionItem(
                    label=name,
                    kind=types.CompletionItemKind.Variable,
                    detail="Declared variable",
                )
            )
    elif prefix.rstrip().lower().endswith("from"):
        for name in sorted(SYSTEM_TABLES):
            items.append(
                types.CompletionItem(
                    label=name,
                    kind=types.CompletionItemKind.Class,
                    detail="System table",
                )
            )
    else:
        for name, desc in KEYWORDS.items():
            items.append(
                types.CompletionItem(
                    label=name.upper(),
                    kind=types.CompletionItemKind.Keyword,
                    detail=desc,
                )
            )
        for name in sorted({*BUILTINS, *AGGREGATE_FUNCTIONS, *(n.upper() for n in FIELD_FUNCTIONS)}):
            items.append(
                types.CompletionItem(
                    label=name,
                    kind=types.CompletionItemKind.Function,
                    detail="Function",
                )
            )
        for name in _find_functions(doc.source):
            items.append(
                types.CompletionItem(
                    label=name,
                    kind=types.CompletionItemKind.Function,
                    detail="User-defined function",
                )
            )
        for name in SYSTEM_COLUMNS:
            items.append(
                types.CompletionItem(
                    label=name,
                    kind=types.CompletionItemKind.Field,
                    detail=SYSTEM_COLUMN_DOCS.get(name, "System column"),
                )
            )

    return types.CompletionList(is_incomplete=False, items=items)


@server.feature(types.TEXT_DOCUMENT_HOVER)
def hover(params: types.HoverParams) -> types.Hover | None:
    doc = server.workspace.get_text_document(params.text_document.uri)
    if params.position.line >= len(doc.lines):
        return None
    line_text = doc.lines[params.position.line]
    word = _word_at_position(line_text, params.position.character)
    if not word:
        return None

    content = describe_word(word, doc.source)
    if content is None:
        return None
    return types.Hover(
        contents=types.MarkupContent(
            kind=types.MarkupKind.Markdown,
            value=content,
        )
    )


def main() -> None:
    server.start_io()


if __name__ == "__main__":
    main()
