"""Query executor for FQL statements."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, TypeVar

from form_query.coercion import sort_key, to_bool
from form_query.config import Settings, get_settings
from form_query.control_flow import ControlFlowEngine, LoopContext
from form_query.datasource import DataSource
from form_query.errors import PersistenceFailure, QueryError, UnresolvedReference
from form_query.evaluator import ExpressionEvaluator
from form_query.functions.registry import UserFunctionRegistry
from form_query.identifiers import split_statements
from form_query.models import FieldDefinition, SubmissionRecord
from form_query.parsing.nodes import (
    ColumnRef,
    ConditionalBranch,
    CreateFunctionStatement,
    DeclareStatement,
    FieldRef,
    IfStatement,
    InList,
    InsertQuery,
    InSubquery,
    Literal,
    ParsedStatement,
    SelectItem,
    SelectQuery,
    SetStatement,
    Subquery,
    SystemColumn,
    UpdateFormQuery,
    WhileStatement,
    format_expression,
)
from form_query.parsing.parser import QueryParser, kind_of
from form_query.parsing.rewriter import SYSTEM_COLUMNS, contains_subquery, walk
from form_query.resolvers import resolve_labels

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Columns SELECT * puts ahead of the form's fields
STAR_SYSTEM_COLUMNS = ("submission_id", "submission_ref_id", "submitted_by", "submitted_at")

_GROUP_KEY_SEPARATOR = "\x1f"


@dataclass
class QueryResult:
    """Result of a statement execution."""

    columns: list[str]
    rows: list[list[Any]]
    errors: list[str] = field(default_factory=list)
    message: str | None = None

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class UpdateResult(QueryResult):
    """Result of an UPDATE FORM statement."""

    form_id: str = ""
    updated_count: int = 0
    failed_count: int = 0


@dataclass
class InsertResult(QueryResult):
    """Result of an INSERT statement."""

    form_id: str = ""
    inserted_count: int = 0
    failed_count: int = 0
    inserted_ids: list[str] = field(default_factory=list)


@dataclass
class VariableResult(QueryResult):
    """Result of a DECLARE or SET."""

    var_name: str = ""
    value: Any = None


@dataclass
class BlockResult(QueryResult):
    """Result of an IF or WHILE: the results of the statements that ran."""

    results: list[QueryResult] = field(default_factory=list)
    iterations: int = 0


@dataclass
class FunctionResult(QueryResult):
    """Result of a CREATE FUNCTION."""

    function_name: str = ""


def _error_result(error: Exception) -> QueryResult:
    return QueryResult(columns=[], rows=[], errors=[str(error)])


def _group_key(values: list[Any]) -> str:
    return _GROUP_KEY_SEPARATOR.join(json.dumps(v, sort_keys=True, default=str) for v in values)


class QueryExecutor:
    """Executes FQL statements against a DataSource."""

    def __init__(
        self,
        source: DataSource,
        functions: UserFunctionRegistry | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.source = source
        self.functions = functions if functions is not None else UserFunctionRegistry()
        self.settings = settings if settings is not None else get_settings()
        self.parser = QueryParser()
        self.engine = ControlFlowEngine(self._variable_evaluator)

    # --- Entry points ---

    async def run(self, text: str, context: LoopContext | None = None) -> QueryResult:
        """Parse and execute a single statement."""
        try:
            statement = self.parser.parse(text)
        except SyntaxError as e:
            return _error_result(e)
        return await self.execute(statement, context)

    async def run_script(self, text: str, context: LoopContext | None = None) -> list[QueryResult]:
        """Execute every statement of a script with one shared LoopContext.

        Stops at the first statement that fails; its error result is the
        last element of the returned list.
        """
        ctx = context if context is not None else LoopContext()
        results: list[QueryResult] = []
        for text_stmt in split_statements(text):
            result = await self.run(text_stmt, ctx)
            results.append(result)
            if result.errors and not isinstance(result, (UpdateResult, InsertResult)):
                break
        return results

    async def execute(self, statement: ParsedStatement, context: LoopContext | None = None) -> QueryResult:
        """Execute a parsed statement, turning failures into result errors."""
        ctx = context if context is not None else LoopContext()
        try:
            return await self._execute(statement, ctx)
        except (SyntaxError, QueryError) as e:
            logger.debug("Statement failed: %s", e)
            return _error_result(e)

    async def _execute(self, statement: ParsedStatement, ctx: LoopContext) -> QueryResult:
        logger.debug("Executing %s", kind_of(statement).value)
        if isinstance(statement, SelectQuery):
            return await self._execute_select(statement, ctx)
        elif isinstance(statement, UpdateFormQuery):
            return await self._execute_update(statement, ctx)
        elif isinstance(statement, InsertQuery):
            return await self._execute_insert(statement, ctx)
        elif isinstance(statement, DeclareStatement):
            initializer = await self._resolve_subqueries(statement.initializer, ctx)
            value = self.engine.declare(replace(statement, initializer=initializer), ctx)
            return self._variable_result(statement.name, value)
        elif isinstance(statement, SetStatement):
            await self._resolve_set(statement, ctx)
            return self._variable_result(statement.name, ctx.get(statement.name))
        elif isinstance(statement, IfStatement):
            return await self._execute_if(statement, ctx)
        elif isinstance(statement, WhileStatement):
            return await self._execute_while(statement, ctx)
        elif isinstance(statement, CreateFunctionStatement):
            return self._execute_create_function(statement)
        else:
            raise QueryError(f"Unknown statement type: {type(statement).__name__}")

    # --- Data access ---

    async def _fetch(self, awaitable: Awaitable[T], what: str) -> T:
        try:
            return await awaitable
        except QueryError:
            raise
        except Exception as e:
            raise PersistenceFailure(f"Failed to fetch {what}: {e}") from e

    async def _load_form(self, form_id: str) -> tuple[list[SubmissionRecord], list[FieldDefinition]]:
        records, fields = await asyncio.gather(
            self._fetch(self.source.fetch_records(form_id), f"submissions of form {form_id}"),
            self._fetch(self.source.fetch_field_defs(form_id), f"fields of form {form_id}"),
        )
        return records, fields

    def _variable_evaluator(self, ctx: LoopContext) -> ExpressionEvaluator:
        return ExpressionEvaluator(fields=[], functions=self.functions, variables=ctx)

    # --- Subqueries ---

    async def _subquery_column(self, query: SelectQuery, ctx: LoopContext) -> list[Any]:
        result = await self._execute_select(query, ctx)
        return [row[0] for row in result.rows if row]

    async def _resolve_subqueries(self, expr: Any, ctx: LoopContext) -> Any:
        """Replace (uncorrelated) subqueries in *expr* with their values.

        A scalar subquery becomes its single value (NULL when it returns no
        rows, a list when it returns several); ``IN (SELECT ...)`` becomes an
        IN list of the first column.
        """
        if expr is None or not contains_subquery(expr):
            return expr

        values: dict[int, Any] = {}
        for node in walk(expr):
            if isinstance(node, (Subquery, InSubquery)):
                column = await self._subquery_column(node.query, ctx)
                values[id(node)] = column

        def substitute(node: Any) -> Any:
            if isinstance(node, Subquery):
                column = values[id(node)]
                if not column:
                    return Literal(None)
                return Literal(column[0] if len(column) == 1 else column)
            if isinstance(node, InSubquery):
                return InList(
                    operand=_transform(node.operand, substitute),
                    items=[Literal(v) for v in values[id(node)]],
                    negated=node.negated,
                )
            return None

        return _transform(expr, substitute)

    async def _resolve_select(self, query: SelectQuery, ctx: LoopContext) -> SelectQuery:
        resolve = self._resolve_subqueries
        return replace(
            query,
            items=[replace(item, expression=await resolve(item.expression, ctx)) for item in query.items],
            where=await resolve(query.where, ctx),
            group_by=[await resolve(g, ctx) for g in query.group_by],
            having=await resolve(query.having, ctx),
            order_by=[replace(o, expression=await resolve(o.expression, ctx)) for o in query.order_by],
        )

    # --- Reference checks ---

    def _check_references(
        self,
        expr: Any,
        evaluator: ExpressionEvaluator,
        form_id: str,
        aliases: set[str] | frozenset[str] = frozenset(),
    ) -> None:
        """Reject unknown field ids and labels before any record is touched."""
        if not evaluator.fields:
            return
        for node in walk(expr):
            if isinstance(node, FieldRef) and node.field_id not in evaluator.fields:
                raise UnresolvedReference(f"Unknown field {node.field_id} on form {form_id}")
            if isinstance(node, ColumnRef):
                if evaluator.resolve_field(node.name) is None and node.name.lower() not in aliases:
                    raise UnresolvedReference(f"Unknown column '{node.name}' on form {form_id}")

    @staticmethod
    def _check_columns(
        expr: Any,
        known: set[str],
        resource: str,
        aliases: set[str] | frozenset[str] = frozenset(),
    ) -> None:
        """Reject column names that no row of a system table carries."""
        for node in walk(expr):
            if isinstance(node, ColumnRef):
                name = node.name.lower()
                if name not in known and name not in aliases:
                    raise UnresolvedReference(f"Unknown column '{node.name}' in {resource}")

    # --- SELECT ---

    async def _execute_select(self, query: SelectQuery, ctx: LoopContext) -> QueryResult:
        """Execute SELECT: fetch, WHERE, group, project, HAVING, ORDER BY, DISTINCT, OFFSET, LIMIT."""
        if query.is_system_table:
            records: list[Any] = await self._fetch(self.source.fetch_resource(query.source), query.source)
            fields: list[FieldDefinition] = []
        else:
            records, fields = await self._load_form(query.source)

        evaluator = ExpressionEvaluator(fields, self.functions, ctx)
        query = await self._resolve_select(query, ctx)

        items = self._select_items(query, fields, records)
        columns = [self._column_name(item, evaluator) for item in items]

        if not query.is_system_table:
            aliases = {c.lower() for c in columns}
            for item in items:
                self._check_references(item.expression, evaluator, query.source)
            self._check_references(query.where, evaluator, query.source)
            for expr in query.group_by:
                self._check_references(expr, evaluator, query.source)
            self._check_references(query.having, evaluator, query.source, aliases)
            for order in query.order_by:
                self._check_references(order.expression, evaluator, query.source, aliases)
        elif records:
            # A column present in any row reads as NULL in the rows that lack it
            known = {str(key).lower() for row in records for key in row}
            aliases = {c.lower() for c in columns}
            for item in items:
                self._check_columns(item.expression, known, query.source)
            self._check_columns(query.where, known, query.source)
            for expr in query.group_by:
                self._check_columns(expr, known, query.source)
            self._check_columns(query.having, known, query.source, aliases)
            for order in query.order_by:
                self._check_columns(order.expression, known, query.source, aliases)

        # Apply WHERE filter
        if query.where is not None:
            records = [r for r in records if evaluator.evaluate_condition(query.where, r)]

        # Bucket into groups
        if query.group_by:
            buckets: dict[str, list[Any]] = {}
            for record in records:
                key = _group_key([evaluator.evaluate(g, record) for g in query.group_by])
                buckets.setdefault(key, []).append(record)
            groups = list(buckets.values())
        elif any(item.is_aggregate for item in items):
            groups = [records]
        else:
            groups = [[r] for r in records]

        # Project
        entries = [
            ([evaluator.evaluate_group(item.expression, group) for item in items], group)
            for group in groups
        ]

        # Apply HAVING (only meaningful with GROUP BY)
        if query.group_by and query.having is not None:
            entries = [
                (row, group)
                for row, group in entries
                if to_bool(evaluator.evaluate_group(query.having, group, dict(zip(columns, row)))) is True
            ]

        # Apply ORDER BY
        if query.order_by:
            entries = self._apply_order_by(entries, query, items, columns, evaluator)

        rows = [row for row, _ in entries]

        # Apply DISTINCT
        if query.distinct:
            seen: set[str] = set()
            unique = []
            for row in rows:
                key = json.dumps(row, sort_keys=True, default=str)
                if key not in seen:
                    seen.add(key)
                    unique.append(row)
            rows = unique

        # Apply OFFSET and LIMIT
        if query.offset:
            rows = rows[query.offset:]
        if query.limit is not None:
            rows = rows[: query.limit]

        if self.settings.resolve_labels:
            rows = await resolve_labels(rows, self.source)

        return QueryResult(columns=columns, rows=rows)

    def _select_items(self, query: SelectQuery, fields: list[FieldDefinition], records: list[Any]) -> list[SelectItem]:
        """Explicit select items, or the expansion of ``*``."""
        if not query.star:
            return query.items
        if query.is_system_table:
            keys: list[str] = []
            for row in records:
                keys.extend(k for k in row if k not in keys)
            return [SelectItem(expression=ColumnRef(name=k)) for k in keys]

        items = [
            SelectItem(expression=SystemColumn(name=name, attribute=SYSTEM_COLUMNS[name]))
            for name in STAR_SYSTEM_COLUMNS
        ]
        if fields:
            field_ids = [f.id.lower() for f in fields]
        else:
            field_ids = []
            for record in records:
                field_ids.extend(k for k in record.data if k not in field_ids)
        return items + [SelectItem(expression=FieldRef(field_id=fid)) for fid in field_ids]

    @staticmethod
    def _column_name(item: SelectItem, evaluator: ExpressionEvaluator) -> str:
        if item.alias:
            return item.alias
        expr = item.expression
        if isinstance(expr, FieldRef):
            definition = evaluator.fields.get(expr.field_id)
            return definition.label if definition is not None else expr.field_id
        if isinstance(expr, (SystemColumn, ColumnRef)):
            return expr.name
        return format_expression(expr)

    @staticmethod
    def _apply_order_by(
        entries: list[tuple[list[Any], list[Any]]],
        query: SelectQuery,
        items: list[SelectItem],
        columns: list[str],
        evaluator: ExpressionEvaluator,
    ) -> list[tuple[list[Any], list[Any]]]:
        """Stable multi-key sort; NULLs sort last ascending and first descending."""
        lowered = [c.lower() for c in columns]

        def order_value(expr: Any, row: list[Any], group: list[Any]) -> Any:
            # By ordinal position
            if isinstance(expr, Literal) and isinstance(expr.value, int) and not isinstance(expr.value, bool):
                if not 1 <= expr.value <= len(row):
                    raise QueryError(f"ORDER BY position {expr.value} is out of range")
                return row[expr.value - 1]
            # By output column name or alias
            if isinstance(expr, (ColumnRef, SystemColumn)) and expr.name.lower() in lowered:
                return row[lowered.index(expr.name.lower())]
            # By a projected expression
            for i, item in enumerate(items):
                if item.expression == expr:
                    return row[i]
            return evaluator.evaluate_group(expr, group, dict(zip(columns, row)))

        keyed = [
            (entry, [order_value(o.expression, entry[0], entry[1]) for o in query.order_by])
            for entry in entries
        ]
        for i in reversed(range(len(query.order_by))):
            keyed.sort(key=lambda k: sort_key(k[1][i]), reverse=query.order_by[i].descending)
        return [entry for entry, _ in keyed]

    # --- UPDATE FORM ---

    async def _execute_update(self, query: UpdateFormQuery, ctx: LoopContext) -> UpdateResult:
        """Execute UPDATE FORM: one concurrent persist per matching record."""
        records, fields = await self._load_form(query.form_id)
        evaluator = ExpressionEvaluator(fields, self.functions, ctx)

        if fields and query.field_id not in evaluator.fields:
            raise UnresolvedReference(f"Unknown field {query.field_id} on form {query.form_id}")
        self._check_references(query.where, evaluator, query.form_id)
        self._check_references(query.value, evaluator, query.form_id)

        where = await self._resolve_subqueries(query.where, ctx)
        value_expr = await self._resolve_subqueries(query.value, ctx)

        matched = [r for r in records if evaluator.evaluate_condition(where, r)]
        errors = []
        updated = []
        for record in matched:
            try:
                value = self._update_value(query, value_expr, record, evaluator)
            except QueryError as e:
                logger.warning("Failed to compute value for submission %s: %s", record.id, e)
                errors.append(f"Submission {record.stable_ref or record.id}: {e}")
                continue
            updated.append(replace(record, data={**record.data, query.field_id: value}))

        outcomes = await asyncio.gather(
            *(self.source.persist_record(r) for r in updated),
            return_exceptions=True,
        )
        for record, outcome in zip(updated, outcomes):
            if isinstance(outcome, Exception):
                logger.warning("Failed to update submission %s: %s", record.id, outcome)
                errors.append(f"Submission {record.stable_ref or record.id}: {outcome}")

        failed = len(errors)
        succeeded = len(matched) - failed
        logger.info("UPDATE FORM %s: %d updated, %d failed", query.form_id, succeeded, failed)

        message = f"Updated {succeeded} row(s)" + (f", {failed} failed" if failed else "")
        return UpdateResult(
            columns=["message", "updated_rows", "failed_rows"],
            rows=[[message, succeeded, failed]],
            errors=errors,
            message=message,
            form_id=query.form_id,
            updated_count=succeeded,
            failed_count=failed,
        )

    @staticmethod
    def _update_value(
        query: UpdateFormQuery,
        value_expr: Any,
        record: SubmissionRecord,
        evaluator: ExpressionEvaluator,
    ) -> Any:
        if query.value_kind == "literal":
            return query.value.value
        # Subqueries were already replaced by literals; field copies and
        # expressions read the record being updated
        return evaluator.evaluate(value_expr, record)

    # --- INSERT ---

    async def _execute_insert(self, query: InsertQuery, ctx: LoopContext) -> InsertResult:
        """Execute INSERT from VALUES tuples or from a nested SELECT."""
        fields = await self._fetch(self.source.fetch_field_defs(query.form_id), f"fields of form {query.form_id}")
        evaluator = ExpressionEvaluator(fields, self.functions, ctx)

        column_ids = [self._insert_column(c, evaluator, query.form_id) for c in query.columns]
        duplicates = {c for c in column_ids if column_ids.count(c) > 1}
        if duplicates:
            raise QueryError(f"Column listed more than once: {', '.join(sorted(duplicates))}")

        if query.select is not None:
            selected = await self._execute_select(query.select, ctx)
            if len(selected.columns) != len(column_ids):
                raise QueryError(
                    f"INSERT has {len(column_ids)} column(s) but the SELECT returns {len(selected.columns)}"
                )
            value_rows = selected.rows
        else:
            value_rows = []
            for row in query.rows:
                values = []
                for expr in row:
                    values.append(evaluator.evaluate(await self._resolve_subqueries(expr, ctx), None))
                value_rows.append(values)

        new_records = [
            SubmissionRecord(id=None, form_id=query.form_id, data=dict(zip(column_ids, values)))
            for values in value_rows
        ]
        outcomes = await asyncio.gather(
            *(self.source.persist_record(r) for r in new_records),
            return_exceptions=True,
        )
        errors = []
        inserted_ids = []
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                logger.warning("Failed to insert into form %s: %s", query.form_id, outcome)
                errors.append(str(outcome))
            else:
                inserted_ids.append(outcome.id)

        failed = len(errors)
        logger.info("INSERT into %s: %d inserted, %d failed", query.form_id, len(inserted_ids), failed)

        message = f"Inserted {len(inserted_ids)} row(s)" + (f", {failed} failed" if failed else "")
        return InsertResult(
            columns=["message", "inserted_rows", "failed_rows"],
            rows=[[message, len(inserted_ids), failed]],
            errors=errors,
            message=message,
            form_id=query.form_id,
            inserted_count=len(inserted_ids),
            failed_count=failed,
            inserted_ids=inserted_ids,
        )

    @staticmethod
    def _insert_column(column: Any, evaluator: ExpressionEvaluator, form_id: str) -> str:
        """Field id for an INSERT column given as an id, FIELD() wrapper or label."""
        if isinstance(column, FieldRef):
            if evaluator.fields and column.field_id not in evaluator.fields:
                raise UnresolvedReference(f"Unknown field {column.field_id} on form {form_id}")
            return column.field_id
        field_id = evaluator.resolve_field(column.name)
        if field_id is None:
            raise UnresolvedReference(f"Unknown column '{column.name}' on form {form_id}")
        return field_id

    # --- Procedural statements ---

    @staticmethod
    def _variable_result(name: str, value: Any) -> VariableResult:
        return VariableResult(
            columns=["variable", "value"],
            rows=[[f"@{name}", value]],
            var_name=name,
            value=value,
        )

    async def _resolve_set(self, statement: SetStatement, ctx: LoopContext) -> None:
        value = await self._resolve_subqueries(statement.value, ctx)
        self.engine.assign(replace(statement, value=value), ctx)

    async def _execute_block(self, statements: list[Any], ctx: LoopContext) -> list[QueryResult]:
        results: list[QueryResult] = []
        for stmt in statements:
            result = await self._execute(stmt, ctx)
            if isinstance(result, BlockResult):
                results.extend(result.results)
            else:
                results.append(result)
        return results

    @staticmethod
    def _block_result(results: list[QueryResult], ctx: LoopContext, iterations: int = 0) -> BlockResult:
        errors = [e for r in results for e in r.errors]
        return BlockResult(
            columns=["variable", "value"],
            rows=[[f"@{name}", value] for name, value in ctx.variables.items()],
            errors=errors,
            message=f"{len(results)} statement(s) executed",
            results=results,
            iterations=iterations,
        )

    async def _execute_if(self, statement: IfStatement, ctx: LoopContext) -> BlockResult:
        branches = [
            ConditionalBranch(condition=await self._resolve_subqueries(b.condition, ctx), body=b.body)
            for b in statement.branches
        ]
        body = self.engine.select_branch(replace(statement, branches=branches), ctx)
        results = await self._execute_block(body or [], ctx)
        return self._block_result(results, ctx)

    async def _execute_while(self, statement: WhileStatement, ctx: LoopContext) -> BlockResult:
        condition = await self._resolve_subqueries(statement.condition, ctx)
        refresh = contains_subquery(statement.condition)

        results: list[QueryResult] = []
        passes = 0
        for body in self.engine.iterations(statement, ctx, holds=lambda: self.engine.holds(condition, ctx)):
            results.extend(await self._execute_block(body, ctx))
            passes += 1
            if refresh:
                condition = await self._resolve_subqueries(statement.condition, ctx)
        return self._block_result(results, ctx, iterations=passes)

    def _execute_create_function(self, statement: CreateFunctionStatement) -> FunctionResult:
        function = self.functions.create(statement)
        message = f"Function {function.name} created"
        return FunctionResult(
            columns=["message"],
            rows=[[message]],
            message=message,
            function_name=function.name,
        )


def _transform(node: Any, fn: Any) -> Any:
    """Rebuild an expression tree, replacing nodes for which *fn* returns a value.

    Does not descend into subquery SELECTs.
    """
    replacement = fn(node)
    if replacement is not None:
        return replacement
    if not hasattr(node, "__dataclass_fields__") or isinstance(node, SelectQuery):
        return node
    changes = {}
    for name in node.__dataclass_fields__:
        value = getattr(node, name)
        if isinstance(value, list):
            changes[name] = [_transform(v, fn) for v in value]
        elif hasattr(value, "__dataclass_fields__") and not isinstance(value, SelectQuery):
            changes[name] = _transform(value, fn)
    return replace(node, **changes) if changes else node
