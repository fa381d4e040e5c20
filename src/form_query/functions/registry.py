"""User-defined functions created with CREATE FUNCTION."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from form_query.coercion import coerce_declared
from form_query.control_flow import ControlFlowEngine, LoopContext
from form_query.errors import ArityMismatch, QueryError, UnresolvedReference
from form_query.evaluator import ExpressionEvaluator
from form_query.parsing.nodes import (
    CreateFunctionStatement,
    DeclareStatement,
    IfStatement,
    ReturnStatement,
    SetStatement,
    WhileStatement,
)
from form_query.parsing.parser import QueryParser

logger = logging.getLogger(__name__)

MAX_CALL_DEPTH = 32

_BODY_STATEMENTS = (DeclareStatement, SetStatement, IfStatement, WhileStatement, ReturnStatement)


@dataclass
class UserFunction:
    """A compiled user function."""

    name: str
    parameters: list[str]
    parameter_types: list[str]
    return_type: str
    body: str
    implementation: Callable[..., Any]

    @property
    def signature(self) -> str:
        params = ", ".join(f"@{n} {t}" for n, t in zip(self.parameters, self.parameter_types))
        return f"{self.name}({params}) RETURNS {self.return_type}"


def _check_body(statements: list[Any], name: str) -> None:
    for stmt in statements:
        if not isinstance(stmt, _BODY_STATEMENTS):
            raise QueryError(
                f"Function {name}: only DECLARE, SET, IF, WHILE and RETURN are allowed "
                f"in a function body, got {type(stmt).__name__}"
            )
        if isinstance(stmt, IfStatement):
            for branch in stmt.branches:
                _check_body(branch.body, name)
            if stmt.else_body:
                _check_body(stmt.else_body, name)
        elif isinstance(stmt, WhileStatement):
            _check_body(stmt.body, name)


class UserFunctionRegistry:
    """Named user functions, looked up case-insensitively."""

    def __init__(self) -> None:
        self._functions: dict[str, UserFunction] = {}
        self._depth = 0
        self._parser: QueryParser | None = None

    def create(self, stmt: CreateFunctionStatement) -> UserFunction:
        """Compile *stmt* and register it, replacing any function of the same name."""
        name = stmt.name.upper()
        _check_body(stmt.body, name)

        statements = stmt.body[:-1]
        returned = stmt.body[-1].value
        params = [p.name for p in stmt.parameters]
        types = [p.type_name for p in stmt.parameters]

        def implementation(*args: Any) -> Any:
            ctx = LoopContext()
            for param, type_name, value in zip(params, types, args):
                ctx.set(param, coerce_declared(value, type_name))
            engine = ControlFlowEngine(self._evaluator)
            self._run_block(engine, statements, ctx)
            return coerce_declared(engine.evaluate(returned, ctx), stmt.return_type)

        function = UserFunction(
            name=name,
            parameters=params,
            parameter_types=types,
            return_type=stmt.return_type,
            body=stmt.source,
            implementation=implementation,
        )
        if name in self._functions:
            logger.info("Redefining function %s", name)
        self._functions[name] = function
        return function

    def create_from_text(self, text: str) -> UserFunction:
        if self._parser is None:
            self._parser = QueryParser()
        stmt = self._parser.parse(text)
        if not isinstance(stmt, CreateFunctionStatement):
            raise QueryError("Expected a CREATE FUNCTION statement")
        return self.create(stmt)

    def call(self, name: str, args: list[Any]) -> Any:
        function = self._functions.get(name.upper())
        if function is None:
            raise UnresolvedReference(f"Function {name.upper()} is not defined")
        if len(args) != len(function.parameters):
            raise ArityMismatch(function.name, len(function.parameters), len(args))
        if self._depth >= MAX_CALL_DEPTH:
            raise QueryError(f"Function call depth exceeded ({MAX_CALL_DEPTH}) in {function.name}")
        self._depth += 1
        try:
            return function.implementation(*args)
        finally:
            self._depth -= 1

    def has(self, name: str) -> bool:
        return name.upper() in self._functions

    def get(self, name: str) -> UserFunction | None:
        return self._functions.get(name.upper())

    def drop(self, name: str) -> bool:
        return self._functions.pop(name.upper(), None) is not None

    def clear(self) -> None:
        self._functions.clear()

    def list_functions(self) -> list[UserFunction]:
        return [self._functions[n] for n in sorted(self._functions)]

    def _evaluator(self, ctx: LoopContext) -> ExpressionEvaluator:
        return ExpressionEvaluator(fields=[], functions=self, variables=ctx)

    def _run_block(self, engine: ControlFlowEngine, statements: list[Any], ctx: LoopContext) -> list[Any]:
        for stmt in statements:
            if isinstance(stmt, DeclareStatement):
                engine.declare(stmt, ctx)
            elif isinstance(stmt, SetStatement):
                engine.assign(stmt, ctx)
            elif isinstance(stmt, IfStatement):
                engine.run_if(stmt, ctx, lambda body, c: self._run_block(engine, body, c))
            elif isinstance(stmt, WhileStatement):
                engine.run_while(stmt, ctx, lambda body, c: self._run_block(engine, body, c))
        return []
