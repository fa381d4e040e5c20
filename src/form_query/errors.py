"""Exceptions raised while parsing and executing FQL statements."""

from __future__ import annotations


class QuerySyntaxError(SyntaxError):
    """A statement does not match the FQL grammar."""


class UnsupportedStatement(QuerySyntaxError):
    """The leading keywords match none of the supported statement forms."""


class InvalidConstruct(ValueError):
    """A grammar action rejected a construct that parsed but is not valid FQL.

    Raised from grammar actions, where yacc swallows SyntaxError.
    QueryParser.parse re-raises it as QuerySyntaxError.
    """


class QueryError(RuntimeError):
    """Base class for failures raised while executing a parsed statement."""


class UnresolvedReference(QueryError):
    """A field, column, variable or function could not be found."""


class ArityMismatch(QueryError):
    """A user-defined function was called with the wrong number of arguments."""

    def __init__(self, name: str, expected: int, got: int) -> None:
        super().__init__(f"Function {name} expects {expected} argument(s), got {got}")
        self.name = name
        self.expected = expected
        self.got = got


class IterationLimitExceeded(QueryError):
    """A WHILE loop ran past its iteration ceiling."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"Loop exceeded maximum iterations ({limit})")
        self.limit = limit


class PersistenceFailure(QueryError):
    """The data source failed to fetch or persist records."""
