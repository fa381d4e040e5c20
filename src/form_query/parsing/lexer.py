"""Lexer for the FQL (Form Query Language) dialect."""

import ply.lex as lex

from form_query.errors import QuerySyntaxError


class QueryLexer:
    """Lexer for tokenizing FQL statements."""

    # Reserved keywords
    reserved = {
        "select": "SELECT",
        "distinct": "DISTINCT",
        "from": "FROM",
        "where": "WHERE",
        "group": "GROUP",
        "by": "BY",
        "having": "HAVING",
        "order": "ORDER",
        "asc": "ASC",
        "desc": "DESC",
        "limit": "LIMIT",
        "offset": "OFFSET",
        "as": "AS",
        "and": "AND",
        "or": "OR",
        "not": "NOT",
        "in": "IN",
        "is": "IS",
        "null": "NULL",
        "like": "LIKE",
        "ilike": "ILIKE",
        "between": "BETWEEN",
        "case": "CASE",
        "when": "WHEN",
        "then": "THEN",
        "else": "ELSE",
        "end": "END",
        "true": "TRUE",
        "false": "FALSE",
        "update": "UPDATE",
        "form": "FORM",
        "set": "SET",
        "insert": "INSERT",
        "into": "INTO",
        "values": "VALUES",
        "declare": "DECLARE",
        "if": "IF",
        "while": "WHILE",
        "begin": "BEGIN",
        "create": "CREATE",
        "function": "FUNCTION",
        "returns": "RETURNS",
        "return": "RETURN",
    }

    # Token list
    tokens = [
        "VARIABLE",
        "UUID",
        "IDENTIFIER",
        "INTEGER",
        "FLOAT",
        "STRING",
        "QUOTED",
        "STAR",
        "COMMA",
        "LPAREN",
        "RPAREN",
        "EQ",
        "NEQ",
        "LT",
        "LTE",
        "GT",
        "GTE",
        "SEMICOLON",
        "PLUS",
        "MINUS",
        "SLASH",
        "PERCENT",
        "CONCAT",
        "CAST",
        "ARROW",
        "DARROW",
    ] + list(reserved.values())

    # Simple tokens; PLY sorts string-defined tokens longest-first
    t_STAR = r"\*"
    t_COMMA = r","
    t_LPAREN = r"\("
    t_RPAREN = r"\)"
    t_EQ = r"="
    t_NEQ = r"!=|<>"
    t_LTE = r"<="
    t_LT = r"<"
    t_GTE = r">="
    t_GT = r">"
    t_SEMICOLON = r";"
    t_PLUS = r"\+"
    t_MINUS = r"-"
    t_SLASH = r"/"
    t_PERCENT = r"%"
    t_CONCAT = r"\|\|"
    t_CAST = r"::"
    t_DARROW = r"->>"
    t_ARROW = r"->"

    # Newlines are ignored; semicolons separate statements
    t_ignore = " \t\r"

    def __init__(self) -> None:
        self.lexer: lex.Lexer = None  # type: ignore

    # Function rules are tried in definition order, before the string rules.

    def t_COMMENT(self, t: lex.LexToken) -> None:
        r"--[^\n]*"
        pass  # Ignore comments

    def t_VARIABLE(self, t: lex.LexToken) -> lex.LexToken:
        r"@[a-zA-Z_][a-zA-Z0-9_]*"
        t.value = t.value[1:]  # Strip the @ prefix, store just the name
        return t

    def t_UUID(self, t: lex.LexToken) -> lex.LexToken:
        r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}(?![0-9a-zA-Z_])"
        return t

    def t_FLOAT(self, t: lex.LexToken) -> lex.LexToken:
        r"\d+\.\d+"
        t.value = float(t.value)
        return t

    def t_INTEGER(self, t: lex.LexToken) -> lex.LexToken:
        r"\d+"
        t.value = int(t.value)
        return t

    def t_STRING(self, t: lex.LexToken) -> lex.LexToken:
        r"'([^']|'')*'"
        # Strip quotes; a doubled quote stands for one
        t.value = t.value[1:-1].replace("''", "'")
        return t

    def t_QUOTED(self, t: lex.LexToken) -> lex.LexToken:
        r'"([^"]|"")*"'
        t.value = t.value[1:-1].replace('""', '"')
        return t

    def t_BACKTICK_IDENTIFIER(self, t: lex.LexToken) -> lex.LexToken:
        r"`[^`]+`"
        # Backticks always produce IDENTIFIER, bypassing keyword lookup
        t.value = t.value[1:-1]
        t.type = "IDENTIFIER"
        return t

    def t_IDENTIFIER(self, t: lex.LexToken) -> lex.LexToken:
        r"[a-zA-Z_][a-zA-Z0-9_]*"
        # Check if it's a reserved word (case-insensitive)
        t.type = self.reserved.get(t.value.lower(), "IDENTIFIER")
        return t

    def t_NEWLINE(self, t: lex.LexToken) -> None:
        r"\n+"
        t.lexer.lineno += len(t.value)

    def t_error(self, t: lex.LexToken) -> None:
        raise QuerySyntaxError(f"Illegal character '{t.value[0]}' at position {t.lexpos}")

    # --- Lexer methods ---

    def build(self, **kwargs) -> None:  # type: ignore
        """Build the lexer."""
        self.lexer = lex.lex(module=self, **kwargs)

    def input(self, data: str) -> None:
        """Set the input string to tokenize."""
        self.lexer.input(data)

    def token(self) -> lex.LexToken | None:
        """Return the next token."""
        return self.lexer.token()

    def tokenize(self, data: str) -> list[lex.LexToken]:
        """Tokenize the input and return all tokens."""
        self.input(data)
        tokens = []
        while True:
            tok = self.token()
            if tok is None:
                break
            tokens.append(tok)
        return tokens


# Module-level set of reserved keywords (lowercase) for use by other modules
RESERVED_KEYWORDS: frozenset[str] = frozenset(QueryLexer.reserved.keys())
