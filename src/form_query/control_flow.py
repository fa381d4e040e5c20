"""Variables and IF/WHILE control flow for procedural FQL statements."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from form_query.coercion import coerce_declared
from form_query.errors import IterationLimitExceeded, UnresolvedReference
from form_query.parsing.nodes import (
    DeclareStatement,
    IfStatement,
    SetStatement,
    WhileStatement,
)

if TYPE_CHECKING:
    from form_query.evaluator import ExpressionEvaluator

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 1000


@dataclass
class LoopContext:
    """Variable scope threaded through a script or a function call.

    Variable names are case-insensitive and stored without the ``@``.
    """

    variables: dict[str, Any] = field(default_factory=dict)
    max_iterations: int = MAX_ITERATIONS
    current_iteration: int = 0

    def __post_init__(self) -> None:
        self.variables = {name.lstrip("@").lower(): value for name, value in self.variables.items()}

    def has(self, name: str) -> bool:
        return name.lower() in self.variables

    def get(self, name: str) -> Any:
        try:
            return self.variables[name.lower()]
        except KeyError:
            raise UnresolvedReference(f"Variable @{name} is not defined") from None

    def set(self, name: str, value: Any) -> None:
        self.variables[name.lower()] = value


BlockRunner = Callable[[list[Any], LoopContext], list[Any]]


class ControlFlowEngine:
    """Runs DECLARE, SET, IF and WHILE against a LoopContext.

    *evaluator_factory* builds an expression evaluator that sees the
    context's variables; the engine never touches records itself.
    """

    def __init__(self, evaluator_factory: Callable[[LoopContext], ExpressionEvaluator]) -> None:
        self.evaluator_factory = evaluator_factory

    def evaluate(self, expr: Any, ctx: LoopContext) -> Any:
        return self.evaluator_factory(ctx).evaluate(expr, None)

    def holds(self, condition: Any, ctx: LoopContext) -> bool:
        """True only when the condition is strictly true (NULL does not hold)."""
        return self.evaluator_factory(ctx).evaluate_condition(condition, None)

    def declare(self, stmt: DeclareStatement, ctx: LoopContext) -> Any:
        value = None
        if stmt.initializer is not None:
            value = coerce_declared(self.evaluate(stmt.initializer, ctx), stmt.type_name)
        ctx.set(stmt.name, value)
        return value

    def assign(self, stmt: SetStatement, ctx: LoopContext) -> Any:
        if not ctx.has(stmt.name):
            raise UnresolvedReference(f"Variable @{stmt.name} is not defined")
        value = self.evaluate(stmt.value, ctx)
        ctx.set(stmt.name, value)
        return value

    def select_branch(self, stmt: IfStatement, ctx: LoopContext) -> list[Any] | None:
        """Body of the first branch whose condition holds, else the ELSE body."""
        for branch in stmt.branches:
            if self.holds(branch.condition, ctx):
                return branch.body
        return stmt.else_body

    def iterations(
        self,
        stmt: WhileStatement,
        ctx: LoopContext,
        holds: Callable[[], bool] | None = None,
    ) -> Iterator[list[Any]]:
        """Yield the loop body once per pass while the condition holds.

        The condition is re-checked before every pass. Starting a pass past
        ``ctx.max_iterations`` raises IterationLimitExceeded, so the
        variables reflect exactly ``max_iterations`` completed passes.
        """
        if holds is None:
            holds = lambda: self.holds(stmt.condition, ctx)  # noqa: E731
        passes = 0
        ctx.current_iteration = 0
        while holds():
            if passes >= ctx.max_iterations:
                logger.warning("WHILE loop stopped after %d iterations", passes)
                raise IterationLimitExceeded(ctx.max_iterations)
            yield stmt.body
            passes += 1
            ctx.current_iteration = passes

    def run_if(self, stmt: IfStatement, ctx: LoopContext, run_block: BlockRunner) -> list[Any]:
        body = self.select_branch(stmt, ctx)
        if body is None:
            return []
        return run_block(body, ctx)

    def run_while(self, stmt: WhileStatement, ctx: LoopContext, run_block: BlockRunner) -> list[Any]:
        results: list[Any] = []
        for body in self.iterations(stmt, ctx):
            results.extend(run_block(body, ctx))
        return results
