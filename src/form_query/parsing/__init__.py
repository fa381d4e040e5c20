"""Parsing module for the FQL statement language."""

from form_query.parsing.classifier import EXPECTED_SHAPES, StatementKind, classify
from form_query.parsing.lexer import QueryLexer
from form_query.parsing.nodes import (
    CreateFunctionStatement,
    DeclareStatement,
    IfStatement,
    InsertQuery,
    SelectItem,
    SelectQuery,
    SetStatement,
    UpdateFormQuery,
    WhileStatement,
)
from form_query.parsing.parser import QueryParser

__all__ = [
    "EXPECTED_SHAPES",
    "CreateFunctionStatement",
    "DeclareStatement",
    "IfStatement",
    "InsertQuery",
    "QueryLexer",
    "QueryParser",
    "SelectItem",
    "SelectQuery",
    "SetStatement",
    "StatementKind",
    "UpdateFormQuery",
    "WhileStatement",
    "classify",
]
