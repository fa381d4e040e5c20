"""Tests for the FQL lexer."""

import pytest

from form_query.errors import QuerySyntaxError
from form_query.parsing.lexer import RESERVED_KEYWORDS, QueryLexer


@pytest.fixture
def lexer() -> QueryLexer:
    lexer = QueryLexer()
    lexer.build()
    return lexer


def token_types(lexer: QueryLexer, text: str) -> list[str]:
    return [t.type for t in lexer.tokenize(text)]


class TestQueryLexer:
    """Tests for tokenizing FQL statements."""

    def test_tokenize_select(self, lexer):
        """Test tokenizing a simple select."""
        assert token_types(lexer, "SELECT Score FROM 'x'") == ["SELECT", "IDENTIFIER", "FROM", "STRING"]

    def test_keywords_are_case_insensitive(self, lexer):
        """Test that keywords match in any case."""
        assert token_types(lexer, "select Distinct fRoM") == ["SELECT", "DISTINCT", "FROM"]

    def test_variable_strips_at(self, lexer):
        """Test that variables drop their @ prefix."""
        tokens = lexer.tokenize("@total")
        assert tokens[0].type == "VARIABLE"
        assert tokens[0].value == "total"

    def test_uuid_token(self, lexer):
        """Test that a bare UUID is a single token."""
        tokens = lexer.tokenize("12345678-abcd-4000-8000-0000000000ff")
        assert [t.type for t in tokens] == ["UUID"]

    def test_numbers(self, lexer):
        """Test integer and float literals."""
        tokens = lexer.tokenize("42 3.5")
        assert [(t.type, t.value) for t in tokens] == [("INTEGER", 42), ("FLOAT", 3.5)]

    def test_string_with_doubled_quote(self, lexer):
        """Test that '' inside a string stands for one quote."""
        tokens = lexer.tokenize("'it''s'")
        assert tokens[0].type == "STRING"
        assert tokens[0].value == "it's"

    def test_double_quoted_name(self, lexer):
        """Test that double quotes produce a QUOTED token without the quotes."""
        tokens = lexer.tokenize('"Total Score"')
        assert tokens[0].type == "QUOTED"
        assert tokens[0].value == "Total Score"

    def test_backtick_bypasses_keywords(self, lexer):
        """Test that a backticked keyword is an identifier."""
        tokens = lexer.tokenize("`select`")
        assert tokens[0].type == "IDENTIFIER"
        assert tokens[0].value == "select"

    def test_operators(self, lexer):
        """Test multi-character operators."""
        types = token_types(lexer, "a <> b != c <= d >= e || f :: g ->> h -> i")
        assert types == [
            "IDENTIFIER", "NEQ", "IDENTIFIER", "NEQ", "IDENTIFIER", "LTE", "IDENTIFIER",
            "GTE", "IDENTIFIER", "CONCAT", "IDENTIFIER", "CAST", "IDENTIFIER",
            "DARROW", "IDENTIFIER", "ARROW", "IDENTIFIER",
        ]

    def test_comment_is_skipped(self, lexer):
        """Test that -- comments produce no tokens."""
        assert token_types(lexer, "SELECT -- trailing words\n1") == ["SELECT", "INTEGER"]

    def test_illegal_character(self, lexer):
        """Test that an unknown character raises with its position."""
        with pytest.raises(QuerySyntaxError, match=r"Illegal character '\$' at position 7"):
            lexer.tokenize("SELECT $")

    def test_reserved_keywords_set(self):
        """Test the exported keyword set."""
        assert "select" in RESERVED_KEYWORDS
        assert "while" in RESERVED_KEYWORDS
        assert "score" not in RESERVED_KEYWORDS
