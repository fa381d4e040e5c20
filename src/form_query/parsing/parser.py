"""Parser for the FQL (Form Query Language) dialect."""

from __future__ import annotations

from typing import Any

import ply.yacc as yacc

from form_query.errors import InvalidConstruct, QueryError, QuerySyntaxError, UnsupportedStatement
from form_query.identifiers import SYSTEM_TABLES, is_uuid, split_statements
from form_query.parsing import rewriter
from form_query.parsing.classifier import EXPECTED_SHAPES, StatementKind, classify
from form_query.parsing.lexer import QueryLexer
from form_query.parsing.nodes import (
    Between,
    BinaryOp,
    CaseExpr,
    Cast,
    ColumnRef,
    ConditionalBranch,
    CreateFunctionStatement,
    DeclareStatement,
    FieldRef,
    FunctionParameter,
    IfStatement,
    InList,
    InsertQuery,
    InSubquery,
    IsNull,
    JsonAccess,
    Like,
    Literal,
    OrderItem,
    ParsedStatement,
    ReturnStatement,
    SelectItem,
    SelectQuery,
    SetStatement,
    Subquery,
    UnaryOp,
    UpdateFormQuery,
    Variable,
    WhenClause,
    WhileStatement,
)


def _value_kind(value: Any) -> str:
    """Tag an UPDATE value so the executor knows how to compute it per record."""
    if isinstance(value, Subquery):
        return "subquery"
    if isinstance(value, FieldRef):
        return "field_copy"
    if isinstance(value, Literal):
        return "literal"
    return "expression"


def _find_returns(statements: list[Any]) -> list[ReturnStatement]:
    found = []
    for stmt in statements:
        if isinstance(stmt, ReturnStatement):
            found.append(stmt)
        elif isinstance(stmt, IfStatement):
            for branch in stmt.branches:
                found.extend(_find_returns(branch.body))
            if stmt.else_body:
                found.extend(_find_returns(stmt.else_body))
        elif isinstance(stmt, WhileStatement):
            found.extend(_find_returns(stmt.body))
    return found


class QueryParser:
    """Parser for FQL statements."""

    tokens = QueryLexer.tokens

    def __init__(self) -> None:
        self.lexer = QueryLexer()
        self.lexer.build()
        self.parser: yacc.LRParser = None  # type: ignore
        self._text = ""

    # --- Statements ---

    def p_statement(self, p: yacc.YaccProduction) -> None:
        """statement : query SEMICOLON
                     | query"""
        p[0] = p[1]

    def p_query(self, p: yacc.YaccProduction) -> None:
        """query : select_query
                 | update_query
                 | insert_query
                 | declare_stmt
                 | set_stmt
                 | if_stmt
                 | while_stmt
                 | create_function"""
        p[0] = p[1]

    def p_declare_stmt(self, p: yacc.YaccProduction) -> None:
        """declare_stmt : DECLARE VARIABLE type_spec"""
        p[0] = DeclareStatement(name=p[2], type_name=p[3])

    def p_declare_stmt_init(self, p: yacc.YaccProduction) -> None:
        """declare_stmt : DECLARE VARIABLE type_spec EQ expr"""
        p[0] = DeclareStatement(name=p[2], type_name=p[3], initializer=p[5])

    def p_type_spec(self, p: yacc.YaccProduction) -> None:
        """type_spec : IDENTIFIER
                     | IDENTIFIER LPAREN INTEGER RPAREN
                     | IDENTIFIER LPAREN INTEGER COMMA INTEGER RPAREN"""
        # Length / precision / scale do not change the coercion
        p[0] = p[1].upper()

    def p_set_stmt(self, p: yacc.YaccProduction) -> None:
        """set_stmt : SET VARIABLE EQ expr"""
        p[0] = SetStatement(name=p[2], value=p[4])

    def p_if_stmt(self, p: yacc.YaccProduction) -> None:
        """if_stmt : IF expr block elseif_list else_clause"""
        branches = [ConditionalBranch(condition=p[2], body=p[3])] + p[4]
        p[0] = IfStatement(branches=branches, else_body=p[5])

    def p_elseif_list_empty(self, p: yacc.YaccProduction) -> None:
        """elseif_list : """
        p[0] = []

    def p_elseif_list(self, p: yacc.YaccProduction) -> None:
        """elseif_list : elseif_list ELSE IF expr block"""
        p[0] = p[1] + [ConditionalBranch(condition=p[4], body=p[5])]

    def p_else_clause_empty(self, p: yacc.YaccProduction) -> None:
        """else_clause : """
        p[0] = None

    def p_else_clause(self, p: yacc.YaccProduction) -> None:
        """else_clause : ELSE block"""
        p[0] = p[2]

    def p_while_stmt(self, p: yacc.YaccProduction) -> None:
        """while_stmt : WHILE expr block"""
        p[0] = WhileStatement(condition=p[2], body=p[3])

    def p_block(self, p: yacc.YaccProduction) -> None:
        """block : BEGIN block_body END"""
        p[0] = p[2]

    def p_block_empty(self, p: yacc.YaccProduction) -> None:
        """block : BEGIN END"""
        p[0] = []

    def p_block_body(self, p: yacc.YaccProduction) -> None:
        """block_body : block_items
                      | block_items simple_stmt"""
        p[0] = p[1] + [p[2]] if len(p) == 3 else p[1]

    def p_block_body_single(self, p: yacc.YaccProduction) -> None:
        """block_body : simple_stmt"""
        p[0] = [p[1]]

    def p_block_items_single(self, p: yacc.YaccProduction) -> None:
        """block_items : block_item"""
        p[0] = [p[1]]

    def p_block_items_multiple(self, p: yacc.YaccProduction) -> None:
        """block_items : block_items block_item"""
        p[0] = p[1] + [p[2]]

    def p_block_item(self, p: yacc.YaccProduction) -> None:
        """block_item : simple_stmt SEMICOLON
                      | compound_stmt
                      | compound_stmt SEMICOLON"""
        p[0] = p[1]

    def p_simple_stmt(self, p: yacc.YaccProduction) -> None:
        """simple_stmt : declare_stmt
                       | set_stmt
                       | select_query
                       | update_query
                       | insert_query
                       | return_stmt"""
        p[0] = p[1]

    def p_compound_stmt(self, p: yacc.YaccProduction) -> None:
        """compound_stmt : if_stmt
                         | while_stmt"""
        p[0] = p[1]

    def p_return_stmt(self, p: yacc.YaccProduction) -> None:
        """return_stmt : RETURN expr"""
        p[0] = ReturnStatement(value=p[2])

    def p_create_function(self, p: yacc.YaccProduction) -> None:
        """create_function : CREATE FUNCTION IDENTIFIER LPAREN param_list RPAREN RETURNS type_spec AS BEGIN block_body END"""
        body = p[11]
        returns = _find_returns(body)
        if not body or not isinstance(body[-1], ReturnStatement) or len(returns) != 1:
            raise InvalidConstruct(
                f"Function {p[3].upper()} must end with exactly one RETURN statement"
            )
        start = p.lexpos(10) + len("BEGIN")
        source = self._text[start:p.lexpos(12)].strip()
        p[0] = CreateFunctionStatement(
            name=p[3].upper(),
            parameters=p[5],
            return_type=p[8],
            body=body,
            source=source,
        )

    def p_param_list_empty(self, p: yacc.YaccProduction) -> None:
        """param_list : """
        p[0] = []

    def p_param_list(self, p: yacc.YaccProduction) -> None:
        """param_list : params"""
        p[0] = p[1]

    def p_params_single(self, p: yacc.YaccProduction) -> None:
        """params : VARIABLE type_spec"""
        p[0] = [FunctionParameter(name=p[1], type_name=p[2])]

    def p_params_multiple(self, p: yacc.YaccProduction) -> None:
        """params : params COMMA VARIABLE type_spec"""
        names = [param.name.lower() for param in p[1]]
        if p[3].lower() in names:
            raise InvalidConstruct(f"Duplicate parameter @{p[3]}")
        p[0] = p[1] + [FunctionParameter(name=p[3], type_name=p[4])]

    # --- UPDATE / INSERT ---

    def p_update_query(self, p: yacc.YaccProduction) -> None:
        """update_query : UPDATE FORM form_target SET update_field EQ expr WHERE expr"""
        p[0] = UpdateFormQuery(
            form_id=p[3],
            field_id=p[5],
            value=p[7],
            where=p[9],
            value_kind=_value_kind(p[7]),
        )

    def p_form_target(self, p: yacc.YaccProduction) -> None:
        """form_target : STRING
                       | QUOTED
                       | UUID"""
        if not is_uuid(p[1]):
            raise InvalidConstruct(
                f"Invalid form id '{p[1]}' (position {p.lexpos(1)}): expected a UUID"
            )
        p[0] = p[1].lower()

    def p_update_field_call(self, p: yacc.YaccProduction) -> None:
        """update_field : IDENTIFIER LPAREN STRING RPAREN
                        | IDENTIFIER LPAREN QUOTED RPAREN"""
        if p[1].upper() not in rewriter.FIELD_ACCESSORS:
            raise InvalidConstruct(
                f"Syntax error at '{p[1]}' (position {p.lexpos(1)}): SET target must be FIELD('<uuid>')"
            )
        p[0] = rewriter.field_ref(p[3]).field_id

    def p_update_field_bare(self, p: yacc.YaccProduction) -> None:
        """update_field : UUID
                        | QUOTED"""
        p[0] = rewriter.field_ref(p[1]).field_id

    def p_insert_query_values(self, p: yacc.YaccProduction) -> None:
        """insert_query : INSERT into_opt form_opt form_target LPAREN insert_columns RPAREN VALUES values_list"""
        columns = p[6]
        for row in p[9]:
            if len(row) != len(columns):
                raise InvalidConstruct(
                    f"INSERT has {len(columns)} column(s) but a VALUES row has {len(row)}"
                )
        p[0] = InsertQuery(form_id=p[4], columns=columns, rows=p[9])

    def p_insert_query_select(self, p: yacc.YaccProduction) -> None:
        """insert_query : INSERT into_opt form_opt form_target LPAREN insert_columns RPAREN select_query"""
        p[0] = InsertQuery(form_id=p[4], columns=p[6], select=p[8])

    def p_into_opt(self, p: yacc.YaccProduction) -> None:
        """into_opt : INTO
                    | """
        p[0] = None

    def p_form_opt(self, p: yacc.YaccProduction) -> None:
        """form_opt : FORM
                    | """
        p[0] = None

    def p_insert_columns_single(self, p: yacc.YaccProduction) -> None:
        """insert_columns : insert_column"""
        p[0] = [p[1]]

    def p_insert_columns_multiple(self, p: yacc.YaccProduction) -> None:
        """insert_columns : insert_columns COMMA insert_column"""
        p[0] = p[1] + [p[3]]

    def p_insert_column_name(self, p: yacc.YaccProduction) -> None:
        """insert_column : UUID
                         | QUOTED
                         | STRING
                         | IDENTIFIER"""
        p[0] = FieldRef(field_id=p[1].lower()) if is_uuid(p[1]) else ColumnRef(name=p[1])

    def p_insert_column_call(self, p: yacc.YaccProduction) -> None:
        """insert_column : IDENTIFIER LPAREN STRING RPAREN
                         | IDENTIFIER LPAREN QUOTED RPAREN"""
        p[0] = rewriter.function_call(p[1], [Literal(p[3])])

    def p_values_list_single(self, p: yacc.YaccProduction) -> None:
        """values_list : LPAREN expr_list RPAREN"""
        p[0] = [p[2]]

    def p_values_list_multiple(self, p: yacc.YaccProduction) -> None:
        """values_list : values_list COMMA LPAREN expr_list RPAREN"""
        p[0] = p[1] + [p[4]]

    # --- SELECT ---

    def p_select_query(self, p: yacc.YaccProduction) -> None:
        """select_query : SELECT distinct_opt select_list FROM from_target where_clause group_clause having_clause order_clause paging_clause"""
        star = p[3] is None
        limit, offset = p[10]
        p[0] = SelectQuery(
            source=p[5],
            items=[] if star else p[3],
            star=star,
            distinct=p[2],
            where=p[6],
            group_by=p[7],
            having=p[8],
            order_by=p[9],
            limit=limit,
            offset=offset,
        )

    def p_distinct_opt(self, p: yacc.YaccProduction) -> None:
        """distinct_opt : DISTINCT
                        | """
        p[0] = len(p) == 2

    def p_select_list_star(self, p: yacc.YaccProduction) -> None:
        """select_list : STAR"""
        p[0] = None

    def p_select_list_items(self, p: yacc.YaccProduction) -> None:
        """select_list : select_items"""
        p[0] = p[1]

    def p_select_items_single(self, p: yacc.YaccProduction) -> None:
        """select_items : select_item"""
        p[0] = [p[1]]

    def p_select_items_multiple(self, p: yacc.YaccProduction) -> None:
        """select_items : select_items COMMA select_item"""
        p[0] = p[1] + [p[3]]

    def p_select_item(self, p: yacc.YaccProduction) -> None:
        """select_item : expr"""
        p[0] = SelectItem(expression=p[1])

    def p_select_item_alias(self, p: yacc.YaccProduction) -> None:
        """select_item : expr AS IDENTIFIER
                       | expr AS QUOTED
                       | expr AS STRING
                       | expr IDENTIFIER"""
        p[0] = SelectItem(expression=p[1], alias=p[len(p) - 1])

    def p_from_target(self, p: yacc.YaccProduction) -> None:
        """from_target : UUID
                       | STRING
                       | QUOTED
                       | IDENTIFIER"""
        name = p[1]
        if is_uuid(name):
            p[0] = name.lower()
        elif name.lower() in SYSTEM_TABLES:
            p[0] = name.lower()
        else:
            raise InvalidConstruct(
                f"Syntax error at '{name}' (position {p.lexpos(1)}): "
                "FROM expects a form UUID or a system table"
            )

    def p_where_clause_empty(self, p: yacc.YaccProduction) -> None:
        """where_clause : """
        p[0] = None

    def p_where_clause(self, p: yacc.YaccProduction) -> None:
        """where_clause : WHERE expr"""
        p[0] = p[2]

    def p_group_clause_empty(self, p: yacc.YaccProduction) -> None:
        """group_clause : """
        p[0] = []

    def p_group_clause(self, p: yacc.YaccProduction) -> None:
        """group_clause : GROUP BY expr_list"""
        p[0] = p[3]

    def p_having_clause_empty(self, p: yacc.YaccProduction) -> None:
        """having_clause : """
        p[0] = None

    def p_having_clause(self, p: yacc.YaccProduction) -> None:
        """having_clause : HAVING expr"""
        p[0] = p[2]

    def p_order_clause_empty(self, p: yacc.YaccProduction) -> None:
        """order_clause : """
        p[0] = []

    def p_order_clause(self, p: yacc.YaccProduction) -> None:
        """order_clause : ORDER BY order_list"""
        p[0] = p[3]

    def p_order_list_single(self, p: yacc.YaccProduction) -> None:
        """order_list : order_item"""
        p[0] = [p[1]]

    def p_order_list_multiple(self, p: yacc.YaccProduction) -> None:
        """order_list : order_list COMMA order_item"""
        p[0] = p[1] + [p[3]]

    def p_order_item(self, p: yacc.YaccProduction) -> None:
        """order_item : expr
                      | expr ASC
                      | expr DESC"""
        descending = len(p) == 3 and p[2].upper() == "DESC"
        p[0] = OrderItem(expression=p[1], descending=descending)

    def p_paging_clause_empty(self, p: yacc.YaccProduction) -> None:
        """paging_clause : """
        p[0] = (None, 0)

    def p_paging_clause_limit(self, p: yacc.YaccProduction) -> None:
        """paging_clause : LIMIT INTEGER"""
        p[0] = (p[2], 0)

    def p_paging_clause_offset(self, p: yacc.YaccProduction) -> None:
        """paging_clause : OFFSET INTEGER"""
        p[0] = (None, p[2])

    def p_paging_clause_limit_offset(self, p: yacc.YaccProduction) -> None:
        """paging_clause : LIMIT INTEGER OFFSET INTEGER"""
        p[0] = (p[2], p[4])

    def p_paging_clause_offset_limit(self, p: yacc.YaccProduction) -> None:
        """paging_clause : OFFSET INTEGER LIMIT INTEGER"""
        p[0] = (p[4], p[2])

    # --- Expressions ---

    def p_expr_list_single(self, p: yacc.YaccProduction) -> None:
        """expr_list : expr"""
        p[0] = [p[1]]

    def p_expr_list_multiple(self, p: yacc.YaccProduction) -> None:
        """expr_list : expr_list COMMA expr"""
        p[0] = p[1] + [p[3]]

    def p_expr_or(self, p: yacc.YaccProduction) -> None:
        """expr : expr OR and_expr"""
        p[0] = BinaryOp(op="or", left=p[1], right=p[3])

    def p_expr(self, p: yacc.YaccProduction) -> None:
        """expr : and_expr"""
        p[0] = p[1]

    def p_and_expr_and(self, p: yacc.YaccProduction) -> None:
        """and_expr : and_expr AND not_expr"""
        p[0] = BinaryOp(op="and", left=p[1], right=p[3])

    def p_and_expr(self, p: yacc.YaccProduction) -> None:
        """and_expr : not_expr"""
        p[0] = p[1]

    def p_not_expr_not(self, p: yacc.YaccProduction) -> None:
        """not_expr : NOT not_expr"""
        p[0] = UnaryOp(op="not", operand=p[2])

    def p_not_expr(self, p: yacc.YaccProduction) -> None:
        """not_expr : predicate"""
        p[0] = p[1]

    def p_predicate_compare(self, p: yacc.YaccProduction) -> None:
        """predicate : sum EQ sum
                     | sum NEQ sum
                     | sum LT sum
                     | sum LTE sum
                     | sum GT sum
                     | sum GTE sum"""
        op = "!=" if p[2] == "<>" else p[2]
        p[0] = BinaryOp(op=op, left=p[1], right=p[3])

    def p_predicate_is_null(self, p: yacc.YaccProduction) -> None:
        """predicate : sum IS NULL
                     | sum IS NOT NULL"""
        p[0] = IsNull(operand=p[1], negated=len(p) == 5)

    def p_predicate_in(self, p: yacc.YaccProduction) -> None:
        """predicate : sum IN LPAREN expr_list RPAREN
                     | sum NOT IN LPAREN expr_list RPAREN"""
        negated = len(p) == 7
        p[0] = InList(operand=p[1], items=p[len(p) - 2], negated=negated)

    def p_predicate_in_subquery(self, p: yacc.YaccProduction) -> None:
        """predicate : sum IN LPAREN select_query RPAREN
                     | sum NOT IN LPAREN select_query RPAREN"""
        negated = len(p) == 7
        p[0] = InSubquery(operand=p[1], query=p[len(p) - 2], negated=negated)

    def p_predicate_between(self, p: yacc.YaccProduction) -> None:
        """predicate : sum BETWEEN sum AND sum
                     | sum NOT BETWEEN sum AND sum"""
        if len(p) == 7:
            p[0] = Between(operand=p[1], low=p[4], high=p[6], negated=True)
        else:
            p[0] = Between(operand=p[1], low=p[3], high=p[5])

    def p_predicate_like(self, p: yacc.YaccProduction) -> None:
        """predicate : sum LIKE sum
                     | sum ILIKE sum
                     | sum NOT LIKE sum
                     | sum NOT ILIKE sum"""
        negated = len(p) == 5
        keyword = p[3] if negated else p[2]
        p[0] = Like(
            operand=p[1],
            pattern=p[len(p) - 1],
            negated=negated,
            case_insensitive=keyword.upper() == "ILIKE",
        )

    def p_predicate(self, p: yacc.YaccProduction) -> None:
        """predicate : sum"""
        p[0] = p[1]

    def p_sum_binary(self, p: yacc.YaccProduction) -> None:
        """sum : sum PLUS term
               | sum MINUS term
               | sum CONCAT term"""
        p[0] = BinaryOp(op=p[2], left=p[1], right=p[3])

    def p_sum(self, p: yacc.YaccProduction) -> None:
        """sum : term"""
        p[0] = p[1]

    def p_term_binary(self, p: yacc.YaccProduction) -> None:
        """term : term STAR factor
                | term SLASH factor
                | term PERCENT factor"""
        p[0] = BinaryOp(op=p[2], left=p[1], right=p[3])

    def p_term(self, p: yacc.YaccProduction) -> None:
        """term : factor"""
        p[0] = p[1]

    def p_factor_negate(self, p: yacc.YaccProduction) -> None:
        """factor : MINUS factor"""
        operand = p[2]
        if isinstance(operand, Literal) and isinstance(operand.value, (int, float)) and not isinstance(operand.value, bool):
            p[0] = Literal(-operand.value)
        else:
            p[0] = UnaryOp(op="-", operand=operand)

    def p_factor(self, p: yacc.YaccProduction) -> None:
        """factor : postfix"""
        p[0] = p[1]

    def p_postfix_cast(self, p: yacc.YaccProduction) -> None:
        """postfix : postfix CAST IDENTIFIER"""
        p[0] = Cast(operand=p[1], type_name=p[3].lower())

    def p_postfix_json(self, p: yacc.YaccProduction) -> None:
        """postfix : postfix ARROW primary
                   | postfix DARROW primary"""
        p[0] = JsonAccess(operand=p[1], key=p[3], as_text=p[2] == "->>")

    def p_postfix(self, p: yacc.YaccProduction) -> None:
        """postfix : primary"""
        p[0] = p[1]

    def p_primary_number(self, p: yacc.YaccProduction) -> None:
        """primary : INTEGER
                   | FLOAT"""
        p[0] = Literal(p[1])

    def p_primary_string(self, p: yacc.YaccProduction) -> None:
        """primary : STRING"""
        p[0] = Literal(p[1])

    def p_primary_bool(self, p: yacc.YaccProduction) -> None:
        """primary : TRUE
                   | FALSE"""
        p[0] = Literal(p[1].upper() == "TRUE")

    def p_primary_null(self, p: yacc.YaccProduction) -> None:
        """primary : NULL"""
        p[0] = Literal(None)

    def p_primary_variable(self, p: yacc.YaccProduction) -> None:
        """primary : VARIABLE"""
        p[0] = Variable(name=p[1])

    def p_primary_uuid(self, p: yacc.YaccProduction) -> None:
        """primary : UUID"""
        p[0] = rewriter.field_ref(p[1])

    def p_primary_quoted(self, p: yacc.YaccProduction) -> None:
        """primary : QUOTED"""
        p[0] = rewriter.quoted(p[1])

    def p_primary_identifier(self, p: yacc.YaccProduction) -> None:
        """primary : IDENTIFIER"""
        p[0] = rewriter.identifier(p[1])

    def p_primary_call(self, p: yacc.YaccProduction) -> None:
        """primary : IDENTIFIER LPAREN RPAREN
                   | IDENTIFIER LPAREN expr_list RPAREN"""
        args = p[3] if len(p) == 5 else []
        p[0] = rewriter.function_call(p[1], args)

    def p_primary_if_call(self, p: yacc.YaccProduction) -> None:
        """primary : IF LPAREN expr_list RPAREN"""
        # IF is a statement keyword; in expression position it is the IF() function
        p[0] = rewriter.function_call("IF", p[3])

    def p_primary_call_star(self, p: yacc.YaccProduction) -> None:
        """primary : IDENTIFIER LPAREN STAR RPAREN"""
        p[0] = rewriter.star_call(p[1])

    def p_primary_paren(self, p: yacc.YaccProduction) -> None:
        """primary : LPAREN expr RPAREN"""
        p[0] = p[2]

    def p_primary_subquery(self, p: yacc.YaccProduction) -> None:
        """primary : LPAREN select_query RPAREN"""
        p[0] = Subquery(query=p[2])

    def p_primary_case(self, p: yacc.YaccProduction) -> None:
        """primary : CASE when_list case_else END"""
        p[0] = CaseExpr(whens=p[2], default=p[3])

    def p_primary_case_simple(self, p: yacc.YaccProduction) -> None:
        """primary : CASE expr when_list case_else END"""
        p[0] = CaseExpr(whens=p[3], operand=p[2], default=p[4])

    def p_when_list_single(self, p: yacc.YaccProduction) -> None:
        """when_list : WHEN expr THEN expr"""
        p[0] = [WhenClause(condition=p[2], result=p[4])]

    def p_when_list_multiple(self, p: yacc.YaccProduction) -> None:
        """when_list : when_list WHEN expr THEN expr"""
        p[0] = p[1] + [WhenClause(condition=p[3], result=p[5])]

    def p_case_else_empty(self, p: yacc.YaccProduction) -> None:
        """case_else : """
        p[0] = None

    def p_case_else(self, p: yacc.YaccProduction) -> None:
        """case_else : ELSE expr"""
        p[0] = p[2]

    def p_error(self, p: yacc.YaccProduction) -> None:
        if p:
            raise QuerySyntaxError(f"Syntax error at '{p.value}' (position {p.lexpos})")
        else:
            raise QuerySyntaxError("Syntax error at end of input")

    # --- Parser methods ---

    def build(self, **kwargs: Any) -> None:
        """Build the parser."""
        self.parser = yacc.yacc(module=self, start="statement", **kwargs)

    def parse(self, data: str) -> ParsedStatement:
        """Parse a single statement.

        Raises UnsupportedStatement when the leading keywords are not an FQL
        statement form, and QuerySyntaxError (naming the expected shape) when
        the statement does not match its grammar.
        """
        if self.parser is None:
            self.build(debug=False, write_tables=False, errorlog=yacc.NullLogger())

        kind = classify(data)
        self._text = data
        self.lexer.lexer.lineno = 1
        try:
            result = self.parser.parse(data, lexer=self.lexer.lexer)
        except UnsupportedStatement:
            raise
        except (QuerySyntaxError, InvalidConstruct) as e:
            raise QuerySyntaxError(f"{e}. Expected: {EXPECTED_SHAPES[kind]}") from e
        if result is None:
            raise QuerySyntaxError(f"Could not parse statement. Expected: {EXPECTED_SHAPES[kind]}")

        if not isinstance(result, CreateFunctionStatement):
            if _find_returns([result]):
                raise QuerySyntaxError("RETURN is only allowed at the end of a function body")
        return result

    def parse_script(self, data: str) -> list[ParsedStatement]:
        """Split a script on top-level semicolons and parse each statement."""
        return [self.parse(stmt) for stmt in split_statements(data)]


def kind_of(statement: ParsedStatement) -> StatementKind:
    """Statement kind of an already-parsed statement."""
    if isinstance(statement, SelectQuery):
        if statement.is_system_table:
            return StatementKind.SYSTEM_TABLE_QUERY
        return StatementKind.FORM_SUBMISSION_QUERY
    kind = {
        UpdateFormQuery: StatementKind.UPDATE_FORM,
        InsertQuery: StatementKind.INSERT,
        DeclareStatement: StatementKind.DECLARE,
        SetStatement: StatementKind.SET,
        IfStatement: StatementKind.IF,
        WhileStatement: StatementKind.WHILE,
        CreateFunctionStatement: StatementKind.CREATE_FUNCTION,
    }.get(type(statement))
    if kind is None:
        raise QueryError(f"Unknown statement type: {type(statement).__name__}")
    return kind
