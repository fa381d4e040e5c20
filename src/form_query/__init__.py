"""Form Query - An SQL-flavored query language over form submissions."""

from form_query.control_flow import LoopContext
from form_query.datasource import DataSource, InMemoryDataSource
from form_query.errors import (
    ArityMismatch,
    IterationLimitExceeded,
    PersistenceFailure,
    QueryError,
    QuerySyntaxError,
    UnresolvedReference,
    UnsupportedStatement,
)
from form_query.evaluator import ExpressionEvaluator
from form_query.executor import (
    BlockResult,
    FunctionResult,
    InsertResult,
    QueryExecutor,
    QueryResult,
    UpdateResult,
    VariableResult,
)
from form_query.functions.registry import UserFunctionRegistry
from form_query.models import FieldDefinition, SubmissionRecord
from form_query.parsing import QueryParser, StatementKind, classify

__all__ = [
    # Main API
    "QueryExecutor",
    "QueryParser",
    "classify",
    "StatementKind",
    # Results
    "QueryResult",
    "UpdateResult",
    "InsertResult",
    "VariableResult",
    "BlockResult",
    "FunctionResult",
    # Storage
    "DataSource",
    "InMemoryDataSource",
    "FieldDefinition",
    "SubmissionRecord",
    # Evaluation
    "ExpressionEvaluator",
    "LoopContext",
    "UserFunctionRegistry",
    # Errors
    "QuerySyntaxError",
    "UnsupportedStatement",
    "QueryError",
    "UnresolvedReference",
    "ArityMismatch",
    "IterationLimitExceeded",
    "PersistenceFailure",
]

__version__ = "0.1.0"
