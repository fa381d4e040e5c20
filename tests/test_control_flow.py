"""Tests for variables and IF/WHILE control flow."""

import pytest

from form_query.control_flow import MAX_ITERATIONS, ControlFlowEngine, LoopContext
from form_query.errors import IterationLimitExceeded, QueryError, UnresolvedReference
from form_query.evaluator import ExpressionEvaluator
from form_query.parsing.nodes import DeclareStatement
from form_query.parsing.parser import QueryParser


@pytest.fixture(scope="module")
def parser() -> QueryParser:
    return QueryParser()


@pytest.fixture
def engine() -> ControlFlowEngine:
    return ControlFlowEngine(lambda ctx: ExpressionEvaluator(variables=ctx))


def run_block(engine: ControlFlowEngine):
    """A block runner that only understands DECLARE and SET."""

    def run(body, ctx):
        for stmt in body:
            if isinstance(stmt, DeclareStatement):
                engine.declare(stmt, ctx)
            else:
                engine.assign(stmt, ctx)
        return body

    return run


class TestLoopContext:
    """Tests for the variable scope."""

    def test_names_are_case_insensitive(self):
        """Test that variable names ignore case and the @ prefix."""
        ctx = LoopContext({"@Total": 1})
        assert ctx.has("total")
        assert ctx.get("TOTAL") == 1
        ctx.set("Total", 2)
        assert ctx.variables == {"total": 2}

    def test_missing_variable(self):
        """Test reading an undeclared variable raises."""
        with pytest.raises(UnresolvedReference, match="Variable @x is not defined"):
            LoopContext().get("x")

    def test_default_limit(self):
        """Test the default iteration ceiling."""
        assert LoopContext().max_iterations == MAX_ITERATIONS == 1000


class TestDeclareAndSet:
    """Tests for DECLARE and SET."""

    def test_declare_coerces(self, parser, engine):
        """Test DECLARE coerces the initializer to its type."""
        ctx = LoopContext()
        assert engine.declare(parser.parse("DECLARE @n INT = '7'"), ctx) == 7
        assert engine.declare(parser.parse("DECLARE @s VARCHAR(10) = 12"), ctx) == "12"
        assert engine.declare(parser.parse("DECLARE @none INT"), ctx) is None
        assert ctx.variables == {"n": 7, "s": "12", "none": None}

    def test_declare_bad_value(self, parser, engine):
        """Test DECLARE rejects values its type cannot hold."""
        with pytest.raises(QueryError, match="Cannot convert"):
            engine.declare(parser.parse("DECLARE @n INT = 'abc'"), LoopContext())

    def test_set_requires_declare(self, parser, engine):
        """Test SET of an undeclared variable raises."""
        with pytest.raises(UnresolvedReference, match="@y"):
            engine.assign(parser.parse("SET @y = 1"), LoopContext())

    def test_set_evaluates(self, parser, engine):
        """Test SET stores the evaluated value."""
        ctx = LoopContext({"i": 1})
        engine.assign(parser.parse("SET @i = @i * 10 + 2"), ctx)
        assert ctx.get("i") == 12


class TestIf:
    """Tests for IF branch selection."""

    def test_branches(self, parser, engine):
        """Test the first holding branch runs, else the ELSE body."""
        stmt = parser.parse(
            "IF @x > 10 BEGIN SET @r = 'big' END "
            "ELSE IF @x > 5 BEGIN SET @r = 'mid' END "
            "ELSE BEGIN SET @r = 'small' END"
        )
        for x, expected in [(20, "big"), (7, "mid"), (1, "small")]:
            ctx = LoopContext({"x": x, "r": None})
            engine.run_if(stmt, ctx, run_block(engine))
            assert ctx.get("r") == expected

    def test_null_condition_does_not_hold(self, parser, engine):
        """Test that an unknown condition falls through."""
        stmt = parser.parse("IF @x > 10 BEGIN SET @r = 1 END")
        ctx = LoopContext({"x": None, "r": 0})
        assert engine.run_if(stmt, ctx, run_block(engine)) == []
        assert ctx.get("r") == 0


class TestWhile:
    """Tests for WHILE loops."""

    def test_loop_runs_until_false(self, parser, engine):
        """Test the condition is re-checked before each pass."""
        stmt = parser.parse("WHILE @i < 5 BEGIN SET @i = @i + 1 END")
        ctx = LoopContext({"i": 0})
        engine.run_while(stmt, ctx, run_block(engine))
        assert ctx.get("i") == 5
        assert ctx.current_iteration == 5

    def test_false_condition_never_runs(self, parser, engine):
        """Test a loop whose condition starts false."""
        stmt = parser.parse("WHILE @i > 0 BEGIN SET @i = @i - 1 END")
        ctx = LoopContext({"i": 0})
        assert engine.run_while(stmt, ctx, run_block(engine)) == []

    def test_iteration_limit(self, parser, engine):
        """Test a runaway loop stops with its state after exactly the limit."""
        stmt = parser.parse("WHILE 1 = 1 BEGIN SET @i = @i + 1 END")
        ctx = LoopContext({"i": 0})
        with pytest.raises(IterationLimitExceeded, match=r"maximum iterations \(1000\)"):
            engine.run_while(stmt, ctx, run_block(engine))
        assert ctx.get("i") == 1000

    def test_custom_limit(self, parser, engine):
        """Test the ceiling comes from the context."""
        stmt = parser.parse("WHILE @i < 100 BEGIN SET @i = @i + 1 END")
        ctx = LoopContext({"i": 0}, max_iterations=10)
        with pytest.raises(IterationLimitExceeded):
            engine.run_while(stmt, ctx, run_block(engine))
        assert ctx.get("i") == 10
