"""Tests for identifier helpers and statement splitting."""

import pytest

from form_query.errors import QuerySyntaxError
from form_query.identifiers import is_uuid, require_uuid, split_statements, split_top_level, strip_quotes


class TestUuid:
    """Tests for UUID recognition."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("aaaaaaaa-0000-4000-8000-000000000001", True),
            ("AAAAAAAA-0000-4000-8000-00000000000F", True),
            ("aaaaaaaa-0000-4000-8000-00000000001", False),
            ("not-a-uuid", False),
            (42, False),
        ],
    )
    def test_is_uuid(self, text, expected):
        """Test the 8-4-4-4-12 hex shape."""
        assert is_uuid(text) is expected

    def test_require_uuid(self):
        """Test require_uuid passes UUIDs through and rejects the rest."""
        assert require_uuid("aaaaaaaa-0000-4000-8000-000000000001") == "aaaaaaaa-0000-4000-8000-000000000001"
        with pytest.raises(QuerySyntaxError, match="Invalid form id"):
            require_uuid("abc", "form id")


class TestQuoting:
    """Tests for quote stripping and top-level splitting."""

    def test_strip_quotes(self):
        """Test one pair of matching quotes is removed."""
        assert strip_quotes("'it''s'") == "it's"
        assert strip_quotes('"Score"') == "Score"
        assert strip_quotes("`x`") == "x"
        assert strip_quotes("'unbalanced\"") == "'unbalanced\""

    def test_split_top_level(self):
        """Test commas inside parentheses or quotes do not split."""
        assert split_top_level("a, f(b, c), 'd,e'") == ["a", "f(b, c)", "'d,e'"]
        assert split_top_level("a,") == ["a"]


class TestSplitStatements:
    """Tests for splitting scripts into statements."""

    def test_simple(self):
        """Test top-level semicolons end statements."""
        assert split_statements("SELECT 1; SELECT 2;") == ["SELECT 1", "SELECT 2"]

    def test_semicolons_in_quotes(self):
        """Test semicolons inside string literals are kept."""
        assert split_statements("SET @x = 'a;b'; SET @y = 1") == ["SET @x = 'a;b'", "SET @y = 1"]

    def test_blocks_stay_whole(self):
        """Test BEGIN ... END blocks are one statement."""
        script = "DECLARE @i INT = 0; WHILE @i < 3 BEGIN SET @i = @i + 1; SET @i = @i END; SELECT 1"
        assert split_statements(script) == [
            "DECLARE @i INT = 0",
            "WHILE @i < 3 BEGIN SET @i = @i + 1; SET @i = @i END",
            "SELECT 1",
        ]

    def test_blocks_without_semicolons(self):
        """Test a closing END ends a top-level IF or WHILE unless ELSE follows."""
        script = (
            "WHILE @n < 3 BEGIN SET @n = @n + 1 END "
            "IF @n = 3 BEGIN SET @a = 1 END ELSE BEGIN SET @a = 2 END "
            "SELECT CASE WHEN 1 = 1 THEN 1 END AS x FROM users"
        )
        assert split_statements(script) == [
            "WHILE @n < 3 BEGIN SET @n = @n + 1 END",
            "IF @n = 3 BEGIN SET @a = 1 END ELSE BEGIN SET @a = 2 END",
            "SELECT CASE WHEN 1 = 1 THEN 1 END AS x FROM users",
        ]

    def test_variable_named_like_keyword(self):
        """Test @end is a variable, not a block terminator."""
        script = "IF @x > 1 BEGIN SET @end = 1; SET @y = 2 END; SELECT 1"
        assert len(split_statements(script)) == 2

    def test_comment_lines_dropped(self):
        """Test lines starting with -- are ignored."""
        assert split_statements("-- header; with a semicolon\nSELECT 1;\n  -- trailing") == ["SELECT 1"]
