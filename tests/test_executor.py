"""Tests for executing FQL statements against an in-memory store."""

import pytest

from conftest import BONUS, FORM, NAME, OTHER_FORM, SCORE, TEAM, UNKNOWN_FIELD
from form_query.config import Settings
from form_query.control_flow import LoopContext
from form_query.datasource import InMemoryDataSource
from form_query.errors import PersistenceFailure
from form_query.executor import (
    BlockResult,
    FunctionResult,
    InsertResult,
    QueryExecutor,
    UpdateResult,
    VariableResult,
)


def data_of(source: InMemoryDataSource, field_id: str) -> list:
    return [r.data.get(field_id) for r in source.records if r.form_id == FORM]


class TestSelectAggregates:
    """Tests for aggregate projections."""

    async def test_aggregates_over_no_rows(self, executor):
        """Test COUNT and SUM give 0 and AVG gives NULL for an empty form."""
        assert (await executor.run(f"SELECT COUNT(*) FROM '{OTHER_FORM}'")).rows == [[0]]
        assert (await executor.run(f"SELECT SUM(\"{SCORE}\") FROM '{OTHER_FORM}'")).rows == [[0]]
        assert (await executor.run(f"SELECT AVG(\"{SCORE}\") FROM '{OTHER_FORM}'")).rows == [[None]]

    async def test_sum_with_where(self, executor):
        """Test the WHERE filter is applied before aggregating."""
        result = await executor.run(f"SELECT SUM(\"{SCORE}\") FROM '{FORM}' WHERE \"{SCORE}\" > 5")
        assert result.ok
        assert result.rows == [[40]]
        assert result.columns == [f"SUM({SCORE})"]

    async def test_aggregates_together(self, executor):
        """Test several aggregates in one row."""
        result = await executor.run(
            f"SELECT COUNT(*), MIN(Score), MAX(Score), AVG(Score) FROM '{FORM}'"
        )
        assert result.rows == [[3, 5, 25, 15]]

    async def test_group_by(self, executor):
        """Test grouping by a label-referenced field."""
        result = await executor.run(
            f"SELECT Team, COUNT(*), SUM(Score) FROM '{FORM}' GROUP BY Team ORDER BY Team"
        )
        assert result.columns[0] == "Team"
        assert result.rows == [["blue", 1, 15], ["red", 2, 30]]

    async def test_having(self, executor):
        """Test HAVING filters groups."""
        result = await executor.run(
            f"SELECT Team, COUNT(*) FROM '{FORM}' GROUP BY Team HAVING COUNT(*) > 1"
        )
        assert result.rows == [["red", 2]]

    async def test_having_uses_alias(self, executor):
        """Test HAVING may refer to a projected alias."""
        result = await executor.run(
            f"SELECT Team, SUM(Score) AS total FROM '{FORM}' GROUP BY Team HAVING total < 20"
        )
        assert result.columns == ["Team", "total"]
        assert result.rows == [["blue", 15]]


class TestSelectRows:
    """Tests for row-level SELECT features."""

    async def test_star_columns(self, executor):
        """Test * expands to the system columns then the form's fields."""
        result = await executor.run(f"SELECT * FROM '{FORM}'")
        assert result.columns == [
            "submission_id",
            "submission_ref_id",
            "submitted_by",
            "submitted_at",
            "Score",
            "Name",
            "Team",
            "Bonus",
        ]
        assert len(result.rows) == 3
        assert [row[1] for row in result.rows] == ["SUB-000001", "SUB-000002", "SUB-000003"]
        assert [row[7] for row in result.rows] == [None, None, None]

    async def test_order_by_desc(self, executor):
        """Test ORDER BY a label, descending."""
        result = await executor.run(f"SELECT Name FROM '{FORM}' ORDER BY Score DESC")
        assert result.rows == [["cy"], ["bob"], ["ann"]]

    async def test_order_by_ordinal(self, executor):
        """Test ORDER BY a column position."""
        result = await executor.run(f"SELECT Name, Score FROM '{FORM}' ORDER BY 2 DESC")
        assert [row[0] for row in result.rows] == ["cy", "bob", "ann"]

    async def test_order_by_position_out_of_range(self, executor):
        """Test an ordinal past the last column is an error."""
        result = await executor.run(f"SELECT Name FROM '{FORM}' ORDER BY 3")
        assert result.errors == ["ORDER BY position 3 is out of range"]

    async def test_multiple_sort_keys(self, executor):
        """Test later keys break ties of earlier ones."""
        result = await executor.run(f"SELECT Name FROM '{FORM}' ORDER BY Team, Score DESC")
        assert result.rows == [["bob"], ["cy"], ["ann"]]

    async def test_limit_offset(self, executor):
        """Test OFFSET is applied before LIMIT."""
        result = await executor.run(f"SELECT Name FROM '{FORM}' ORDER BY Score LIMIT 1 OFFSET 1")
        assert result.rows == [["bob"]]
        result = await executor.run(f"SELECT Name FROM '{FORM}' ORDER BY Score OFFSET 2")
        assert result.rows == [["cy"]]

    async def test_nulls_sort_last_ascending(self, executor, scored):
        """Test NULL sorts after values ascending and before them descending."""
        scored.add_submission(FORM, {NAME: "dee"})
        result = await executor.run(f"SELECT Name FROM '{FORM}' ORDER BY Score")
        assert [row[0] for row in result.rows] == ["ann", "bob", "cy", "dee"]
        result = await executor.run(f"SELECT Name FROM '{FORM}' ORDER BY Score DESC")
        assert [row[0] for row in result.rows] == ["dee", "cy", "bob", "ann"]

    async def test_null_comparison_filters_out(self, executor, scored):
        """Test a comparison with a missing value does not match either way."""
        scored.add_submission(FORM, {NAME: "dee"})
        above = await executor.run(f"SELECT Name FROM '{FORM}' WHERE Score > 10")
        below = await executor.run(f"SELECT Name FROM '{FORM}' WHERE NOT Score > 10")
        assert ["dee"] not in above.rows
        assert ["dee"] not in below.rows
        missing = await executor.run(f"SELECT Name FROM '{FORM}' WHERE Score IS NULL")
        assert missing.rows == [["dee"]]

    async def test_case_expression(self, executor, scored):
        """Test a searched CASE with an ELSE."""
        scored.add_submission(FORM, {NAME: "dee"})
        result = await executor.run(
            f"SELECT Name, CASE WHEN Score >= 15 THEN 'Pass' WHEN Score < 15 THEN 'Fail' "
            f"ELSE 'Missing' END AS outcome FROM '{FORM}'"
        )
        assert result.columns == ["Name", "outcome"]
        assert result.rows == [["ann", "Fail"], ["bob", "Pass"], ["cy", "Pass"], ["dee", "Missing"]]

    async def test_distinct(self, executor):
        """Test DISTINCT drops duplicate rows."""
        result = await executor.run(f"SELECT DISTINCT Team FROM '{FORM}' ORDER BY Team")
        assert result.rows == [["blue"], ["red"]]

    async def test_distinct_keeps_first_occurrence(self, source):
        """Test DISTINCT keeps the first of each duplicate row, in order."""
        for score, name in [(1, "a"), (1, "a"), (2, "b")]:
            source.add_submission(FORM, {SCORE: score, NAME: name})
        executor = QueryExecutor(source, settings=Settings())
        result = await executor.run(f"SELECT DISTINCT Score, Name FROM '{FORM}'")
        assert result.rows == [[1, "a"], [2, "b"]]

    async def test_weighted_value(self, executor):
        """Test WEIGHTED_VALUE multiplies by the field's weightage."""
        result = await executor.run(
            f"SELECT Name, WEIGHTED_VALUE(FIELD('{SCORE}')), FIELD_WEIGHTAGE(FIELD('{SCORE}')) "
            f"FROM '{FORM}' ORDER BY 2"
        )
        assert result.rows == [["ann", 10, 2], ["bob", 30, 2], ["cy", 50, 2]]

    async def test_like_and_in(self, executor):
        """Test LIKE and IN filters."""
        result = await executor.run(f"SELECT Name FROM '{FORM}' WHERE Name LIKE 'b%' OR Name IN ('cy')")
        assert result.rows == [["bob"], ["cy"]]

    async def test_system_columns(self, executor):
        """Test filtering on a system column."""
        result = await executor.run(f"SELECT Name FROM '{FORM}' WHERE submitted_by = 'u2'")
        assert result.rows == [["bob"]]


class TestSubqueries:
    """Tests for scalar and IN subqueries."""

    async def test_scalar_subquery(self, executor):
        """Test a scalar subquery in WHERE."""
        result = await executor.run(
            f"SELECT Name FROM '{FORM}' WHERE Score > (SELECT AVG(Score) FROM '{FORM}')"
        )
        assert result.rows == [["cy"]]

    async def test_in_subquery(self, executor):
        """Test IN (SELECT ...) uses the subquery's first column."""
        result = await executor.run(
            f"SELECT Name FROM '{FORM}' WHERE Team IN (SELECT Team FROM '{FORM}' WHERE Score > 20) "
            "ORDER BY Name"
        )
        assert result.rows == [["ann"], ["cy"]]

    async def test_empty_scalar_subquery_is_null(self, executor):
        """Test a subquery with no rows compares as NULL."""
        result = await executor.run(
            f"SELECT Name FROM '{FORM}' WHERE Score = (SELECT Score FROM '{FORM}' WHERE Score > 100)"
        )
        assert result.rows == []


class TestSystemTables:
    """Tests for queries over system tables."""

    async def test_users(self, executor):
        """Test SELECT * over users lists every key, NULL where a row lacks one."""
        result = await executor.run("SELECT * FROM users")
        assert result.errors == []
        assert result.columns == ["id", "first_name", "last_name", "email", "display_name"]
        assert result.rows == [
            ["u1", "Ada", "Lovelace", "ada@example.com", None],
            ["u2", None, None, "grace@example.com", "Grace"],
        ]

    async def test_optional_column(self, executor):
        """Test a column carried by only some rows reads as NULL elsewhere."""
        result = await executor.run("SELECT id, display_name FROM users WHERE display_name IS NULL")
        assert result.rows == [["u1", None]]

    async def test_unknown_column(self, executor):
        """Test a column no row carries is rejected."""
        result = await executor.run("SELECT nickname FROM users")
        assert result.errors == ["Unknown column 'nickname' in users"]
        assert result.rows == []

    async def test_filter_and_order(self, executor):
        """Test WHERE and ORDER BY over a system table."""
        result = await executor.run("SELECT name FROM forms ORDER BY name")
        assert result.rows == [["Empty"], ["Scores"]]
        result = await executor.run("SELECT id FROM users WHERE email LIKE 'ada%'")
        assert result.rows == [["u1"]]

    async def test_form_fields(self, executor):
        """Test the form_fields table."""
        result = await executor.run("SELECT COUNT(*) FROM form_fields")
        assert result.rows == [[4]]


class TestReferenceErrors:
    """Tests for unknown fields and columns."""

    async def test_unknown_field(self, executor):
        """Test an unknown field id is reported before any row is read."""
        result = await executor.run(f"SELECT \"{UNKNOWN_FIELD}\" FROM '{FORM}'")
        assert result.errors == [f"Unknown field {UNKNOWN_FIELD} on form {FORM}"]
        assert result.rows == []

    async def test_unknown_column(self, executor):
        """Test an unknown label is reported."""
        result = await executor.run(f"SELECT Nope FROM '{FORM}'")
        assert result.errors == [f"Unknown column 'Nope' on form {FORM}"]

    async def test_unsupported_statement(self, executor):
        """Test statements outside FQL are rejected with the expected shapes."""
        result = await executor.run("DROP TABLE things")
        assert not result.ok
        assert result.errors[0].startswith("Unsupported statement")

    async def test_syntax_error(self, executor):
        """Test a malformed SELECT is reported as a syntax error."""
        result = await executor.run(f"SELECT FROM '{FORM}'")
        assert "Syntax error" in result.errors[0]

    @pytest.mark.parametrize(
        "text, message",
        [
            (f"SELECT FIELD('not-a-uuid') FROM '{FORM}'", "Invalid field id 'not-a-uuid'"),
            (f"SELECT SUM(COUNT(*)) FROM '{FORM}'", "Nested aggregate in SUM()"),
            (f"SELECT AVG(*) FROM '{FORM}'", "AVG(*) is not supported"),
            ("SELECT * FROM secrets", "FROM expects a form UUID or a system table"),
            (f"UPDATE FORM 'nope' SET FIELD('{BONUS}') = 1 WHERE TRUE", "Invalid form id 'nope'"),
            (f"INSERT INTO FORM '{FORM}' (Name, Team) VALUES ('a')", "VALUES row has 1"),
            ("CREATE FUNCTION f(@a INT, @a INT) RETURNS INT AS BEGIN RETURN @a END", "Duplicate parameter"),
        ],
    )
    async def test_rejected_constructs_become_errors(self, executor, scored, text, message):
        """Test constructs rejected while parsing come back as result errors."""
        result = await executor.run(text)
        assert not result.ok
        assert message in result.errors[0]
        assert "Expected:" in result.errors[0]
        assert scored.persist_calls == 0


class TestUpdate:
    """Tests for UPDATE FORM."""

    async def test_field_copy(self, executor, scored):
        """Test copying one field into another on every record."""
        result = await executor.run(
            f"UPDATE FORM '{FORM}' SET FIELD('{BONUS}') = FIELD('{SCORE}') WHERE TRUE"
        )
        assert isinstance(result, UpdateResult)
        assert result.updated_count == 3
        assert result.failed_count == 0
        assert result.rows == [["Updated 3 row(s)", 3, 0]]
        assert scored.persist_calls == 3
        assert data_of(scored, BONUS) == [5, 15, 25]

    async def test_literal_with_where(self, executor, scored):
        """Test a literal written only to matching records."""
        result = await executor.run(
            f"UPDATE FORM '{FORM}' SET \"{NAME}\" = 'zed' WHERE \"{SCORE}\" = 5"
        )
        assert result.updated_count == 1
        assert data_of(scored, NAME) == ["zed", "bob", "cy"]

    async def test_expression_value(self, executor, scored):
        """Test an expression computed per record."""
        await executor.run(f"UPDATE FORM '{FORM}' SET FIELD('{BONUS}') = Score * 2 WHERE Team = 'red'")
        assert data_of(scored, BONUS) == [10, None, 50]

    async def test_subquery_value(self, executor, scored):
        """Test a scalar subquery as the written value."""
        await executor.run(
            f"UPDATE FORM '{FORM}' SET FIELD('{BONUS}') = (SELECT MAX(Score) FROM '{FORM}') WHERE TRUE"
        )
        assert data_of(scored, BONUS) == [25, 25, 25]

    async def test_no_matches(self, executor, scored):
        """Test an UPDATE that matches nothing persists nothing."""
        result = await executor.run(f"UPDATE FORM '{FORM}' SET FIELD('{BONUS}') = 1 WHERE Score > 100")
        assert result.updated_count == 0
        assert result.message == "Updated 0 row(s)"
        assert scored.persist_calls == 0

    async def test_unknown_field(self, executor, scored):
        """Test writing an unknown field is rejected."""
        result = await executor.run(f"UPDATE FORM '{FORM}' SET FIELD('{UNKNOWN_FIELD}') = 1 WHERE TRUE")
        assert result.errors == [f"Unknown field {UNKNOWN_FIELD} on form {FORM}"]
        assert scored.persist_calls == 0

    async def test_partial_failure(self, scored):
        """Test one failed persist does not stop the others."""

        class FlakySource(InMemoryDataSource):
            async def persist_record(self, record):
                if record.data.get(NAME) == "bob":
                    raise PersistenceFailure("disk full")
                return await super().persist_record(record)

        flaky = FlakySource.from_dict(scored.to_dict())
        executor = QueryExecutor(flaky, settings=Settings())
        result = await executor.run(f"UPDATE FORM '{FORM}' SET FIELD('{BONUS}') = 1 WHERE TRUE")
        assert result.updated_count == 2
        assert result.failed_count == 1
        assert result.message == "Updated 2 row(s), 1 failed"
        assert result.errors == ["Submission SUB-000002: disk full"]
        assert [r.data.get(BONUS) for r in flaky.records] == [1, None, 1]

    async def test_value_failure_skips_only_that_record(self, executor, scored):
        """Test a record whose new value cannot be computed is counted as failed."""
        scored.add_submission(FORM, {SCORE: "abc", NAME: "dee", TEAM: "blue"})
        result = await executor.run(f"UPDATE FORM '{FORM}' SET FIELD('{BONUS}') = Score * 2 WHERE TRUE")
        assert result.updated_count == 3
        assert result.failed_count == 1
        assert result.message == "Updated 3 row(s), 1 failed"
        assert result.errors == ["Submission SUB-000004: Cannot apply '*' to non-numeric values: 'abc', 2"]
        assert data_of(scored, BONUS) == [10, 30, 50, None]
        assert scored.persist_calls == 3


class TestInsert:
    """Tests for INSERT INTO FORM."""

    async def test_insert_by_label(self, executor, scored):
        """Test VALUES rows with columns named by label."""
        result = await executor.run(
            f"INSERT INTO FORM '{FORM}' (\"Name\", Score) VALUES ('dee', 40), ('eve', 20 + 30)"
        )
        assert isinstance(result, InsertResult)
        assert result.inserted_count == 2
        assert len(result.inserted_ids) == 2
        assert data_of(scored, NAME)[-2:] == ["dee", "eve"]
        assert data_of(scored, SCORE)[-2:] == [40, 50]

    async def test_insert_by_field(self, executor, scored):
        """Test a FIELD() column."""
        result = await executor.run(f"INSERT INTO FORM '{FORM}' (FIELD('{TEAM}')) VALUES ('green')")
        assert result.rows == [["Inserted 1 row(s)", 1, 0]]
        assert scored.records[-1].data == {TEAM: "green"}
        assert scored.records[-1].stable_ref == "SUB-000004"

    async def test_insert_select(self, executor, scored):
        """Test INSERT ... SELECT copies rows to another form."""
        result = await executor.run(
            f"INSERT INTO FORM '{OTHER_FORM}' (\"{NAME}\") SELECT Name FROM '{FORM}' WHERE Score > 10"
        )
        assert result.inserted_count == 2
        copied = [r.data for r in scored.records if r.form_id == OTHER_FORM]
        assert copied == [{NAME: "bob"}, {NAME: "cy"}]

    async def test_insert_select_column_count(self, executor):
        """Test the SELECT must return one column per insert column."""
        result = await executor.run(
            f"INSERT INTO FORM '{FORM}' (Name) SELECT Name, Score FROM '{FORM}'"
        )
        assert result.errors == ["INSERT has 1 column(s) but the SELECT returns 2"]

    async def test_unknown_column(self, executor, scored):
        """Test an unknown column label is rejected."""
        result = await executor.run(f"INSERT INTO FORM '{FORM}' (Nope) VALUES (1)")
        assert result.errors == [f"Unknown column 'Nope' on form {FORM}"]
        assert scored.persist_calls == 0

    async def test_duplicate_column(self, executor):
        """Test a column listed twice is rejected."""
        result = await executor.run(f"INSERT INTO FORM '{FORM}' (Name, \"{NAME}\") VALUES (1, 2)")
        assert result.errors == [f"Column listed more than once: {NAME}"]


class TestProcedural:
    """Tests for variables, IF, WHILE and functions through the executor."""

    async def test_declare_and_use_in_where(self, executor):
        """Test a declared variable used as a filter value."""
        results = await executor.run_script(
            f"DECLARE @min INT = 10; SELECT Name FROM '{FORM}' WHERE Score > @min ORDER BY Name"
        )
        assert isinstance(results[0], VariableResult)
        assert results[0].rows == [["@min", 10]]
        assert results[1].rows == [["bob"], ["cy"]]

    async def test_declare_from_subquery(self, executor):
        """Test a DECLARE initialised by a subquery."""
        ctx = LoopContext()
        result = await executor.run(f"DECLARE @total INT = (SELECT SUM(Score) FROM '{FORM}')", ctx)
        assert result.value == 45
        assert ctx.get("total") == 45

    async def test_set(self, executor):
        """Test SET updates the shared context."""
        ctx = LoopContext()
        await executor.run_script("DECLARE @x INT = 1; SET @x = @x + 41", ctx)
        assert ctx.get("x") == 42

    async def test_script_stops_at_error(self, executor):
        """Test a failing statement ends the script."""
        results = await executor.run_script("DECLARE @x INT = 1; SET @y = 2; SET @x = 3")
        assert len(results) == 2
        assert results[-1].errors == ["Variable @y is not defined"]

    async def test_if_else_if_else(self, executor):
        """Test the branch that runs depends on the data."""
        script = (
            f"DECLARE @n INT = (SELECT COUNT(*) FROM '{FORM}'); "
            "DECLARE @size VARCHAR(10); "
            "IF @n > 5 BEGIN SET @size = 'big' END "
            "ELSE IF @n > 2 BEGIN SET @size = 'medium' END "
            "ELSE BEGIN SET @size = 'small' END"
        )
        ctx = LoopContext()
        results = await executor.run_script(script, ctx)
        assert isinstance(results[-1], BlockResult)
        assert ctx.get("size") == "medium"
        assert ["@size", "medium"] in results[-1].rows

    async def test_while(self, executor):
        """Test a loop reports its pass count."""
        ctx = LoopContext()
        results = await executor.run_script(
            "DECLARE @i INT = 0; WHILE @i < 5 BEGIN SET @i = @i + 1 END", ctx
        )
        assert results[-1].iterations == 5
        assert len(results[-1].results) == 5
        assert ctx.get("i") == 5

    async def test_blocks_follow_without_semicolon(self, executor):
        """Test IF may follow a WHILE block directly in a script."""
        ctx = LoopContext()
        results = await executor.run_script(
            "DECLARE @n INT = 0; DECLARE @done INT = 0; "
            "WHILE @n < 3 BEGIN SET @n = @n + 1 END "
            "IF @n = 3 BEGIN SET @done = 1 END; "
            "SELECT @n FROM users LIMIT 1",
            ctx,
        )
        assert [r.errors for r in results] == [[], [], [], [], []]
        assert ctx.get("done") == 1
        assert results[-1].rows == [[3]]

    async def test_while_limit(self, executor):
        """Test a runaway loop stops with the limit error."""
        ctx = LoopContext()
        results = await executor.run_script(
            "DECLARE @i INT = 0; WHILE @i < 5000 BEGIN SET @i = @i + 1 END", ctx
        )
        assert results[-1].errors == ["Loop exceeded maximum iterations (1000)"]
        assert ctx.get("i") == 1000

    async def test_while_rechecks_subquery(self, executor, scored):
        """Test a loop condition with a subquery sees each pass's writes."""
        results = await executor.run_script(
            f"WHILE (SELECT COUNT(*) FROM '{FORM}') < 6 BEGIN "
            f"INSERT INTO FORM '{FORM}' (Name) VALUES ('filler') END"
        )
        assert results[-1].iterations == 3
        assert len([r for r in scored.records if r.form_id == FORM]) == 6

    async def test_create_and_call_function(self, executor):
        """Test a user function is callable in a later SELECT."""
        created = await executor.run(
            "CREATE FUNCTION boost(@s INT) RETURNS INT AS BEGIN RETURN @s * 10 END"
        )
        assert isinstance(created, FunctionResult)
        assert created.message == "Function BOOST created"
        result = await executor.run(f"SELECT boost(Score) FROM '{FORM}' ORDER BY 1")
        assert result.rows == [[50], [150], [250]]

    async def test_dropped_function(self, executor):
        """Test calling a dropped function fails."""
        await executor.run("CREATE FUNCTION boost(@s INT) RETURNS INT AS BEGIN RETURN @s * 10 END")
        assert executor.functions.drop("boost")
        result = await executor.run(f"SELECT boost(Score) FROM '{FORM}'")
        assert result.errors == ["Function BOOST is not defined"]


@pytest.mark.parametrize(
    "resolve, expected",
    [
        (True, {"users": ["Ada Lovelace"], "groups": ["Reviewers"]}),
        (False, {"users": ["u1"], "groups": ["g1"]}),
    ],
)
async def test_label_resolution_setting(scored, resolve, expected):
    """Test access payloads are renamed only when resolution is enabled."""
    scored.add_field(FORM, "bbbbbbbb-0000-4000-8000-000000000005", "Access")
    scored.add_submission(FORM, {"bbbbbbbb-0000-4000-8000-000000000005": {"users": ["u1"], "groups": ["g1"]}})
    executor = QueryExecutor(scored, settings=Settings(resolve_labels=resolve))
    result = await executor.run(f"SELECT Access FROM '{FORM}' WHERE Access IS NOT NULL")
    assert result.rows == [[expected]]
