"""
AST mapper - converts a raw SQL parse tree into the query IR.

The raw tree is the dict shape produced by node-sql-parser style grammars
(``type: "select"``, ``columns``, ``from``, ``where`` ...); ``query_ir.parser``
produces the same shape from SQL text via sqlglot.
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from . import config
from .errors import DepthExceededError, MappingError, UnsupportedExpressionError
from .expression_renderer import prune_empty_sets, render_inline
from .ir_types import (
    ColumnRef,
    ExpressionNode,
    FilterNode,
    FunctionNode,
    JoinNode,
    LiteralNode,
    OrderByNode,
    QueryNode,
    RawSQL,
    SelectNode,
    SubQueryNode,
    TableNode,
    UnionNode,
    WithNode,
)

logger = logging.getLogger(__name__)

RawNode = Dict[str, Any]

_LOGICAL_OPERATORS = ("AND", "OR")

_JOIN_TYPES = {
    "": "JOIN",
    "INNER": "INNER",
    "LEFT": "LEFT",
    "RIGHT": "RIGHT",
    "FULL": "FULL",
    "CROSS": "CROSS",
}

_UNION_TYPES = {
    "UNION": "UNION",
    "UNION DISTINCT": "UNION",
    "UNION ALL": "UNION ALL",
}


def normalize_join_type(spelling: Optional[str]) -> str:
    """
    Map a raw join spelling onto the canonical join type.

    ``"left join"``, ``"LEFT OUTER JOIN"`` and ``"left"`` all become ``LEFT``;
    a bare ``"JOIN"`` stays ``JOIN``.
    """
    words = [
        word for word in (spelling or "JOIN").upper().split()
        if word not in ("JOIN", "OUTER")
    ]
    key = " ".join(words)
    if key not in _JOIN_TYPES:
        raise MappingError(f"Unsupported join type: '{spelling}'")
    return _JOIN_TYPES[key]


def _identifier(value: Any) -> Optional[str]:
    """Raw identifiers are either plain strings or ``{"value": ...}`` wrappers."""
    if isinstance(value, dict):
        value = value.get("value")
        if isinstance(value, dict):
            value = value.get("value")
    return value if value else None


def _expect_dict(value: Any, what: str) -> RawNode:
    if not isinstance(value, dict):
        raise MappingError(f"Invalid AST structure: {what} must be an object.", value)
    return value


class MappingContext:
    """Depth tracking for one map() call."""

    def __init__(self, max_depth: int):
        self.max_depth = max_depth
        self.depth = 0

    @contextmanager
    def nested(self, location: str) -> Iterator[None]:
        self.depth += 1
        try:
            if self.depth > self.max_depth:
                raise DepthExceededError(self.max_depth, location)
            yield
        finally:
            self.depth -= 1


class ASTMapper:
    """
    Maps a raw select tree to a QueryNode.

    The mapper holds configuration only; every map() call gets its own
    MappingContext, so one instance can be shared.

    Example:
        >>> raw = {
        ...     "type": "select",
        ...     "columns": [{"expr": {"type": "column_ref", "table": None, "column": "name"}, "as": None}],
        ...     "from": [{"db": None, "table": "users", "as": None}],
        ... }
        >>> ASTMapper().map(raw).from_.name
        'users'
    """

    def __init__(self, max_depth: Optional[int] = None):
        self.max_depth = max_depth if max_depth is not None else config.MAX_DEPTH
        self._expression_handlers: Dict[str, Callable[[RawNode, MappingContext], Any]] = {
            "column_ref": self._map_column_ref,
            "binary_expr": self._map_binary,
            "number": self._map_number,
            "single_quote_string": self._map_string,
            "double_quote_string": self._map_string,
            "string": self._map_string,
            "bool": self._map_bool,
            "boolean": self._map_bool,
            "null": self._map_null,
            "star": self._map_star,
            "function": self._map_function,
            "aggr_func": self._map_aggregate,
            "case": self._map_case,
            "interval": self._map_interval,
            "is_expr": self._map_is_expr,
            "expr_list": self._map_expr_list,
            "origin": self._map_origin,
        }

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def map(self, raw: Union[RawNode, List[RawNode]]) -> QueryNode:
        """
        Map a raw parse tree into a QueryNode.

        Accepts a bare select node, an ``{"ast": ...}`` wrapper, or a list
        of statements (the first one is used).

        Raises:
            MappingError: If the root is not a select or is malformed
            UnsupportedExpressionError: If an expression kind is not handled
            DepthExceededError: If nesting goes beyond max_depth
        """
        query = self._map_query(raw, MappingContext(self.max_depth))
        logger.debug(
            f"[ASTMapper] Mapped query with {len(query.selects)} select(s), "
            f"{len(query.joins)} join(s), {len(query.unions)} union arm(s)"
        )
        return query

    def _map_query(self, raw: Any, ctx: MappingContext) -> QueryNode:
        ast = self._unwrap(raw)
        with ctx.nested("query"):
            return self._map_select(ast, ctx)

    def _unwrap(self, raw: Any) -> RawNode:
        if isinstance(raw, list):
            if not raw:
                raise MappingError("Invalid AST: no statements to map.")
            return self._unwrap(raw[0])
        if isinstance(raw, dict) and "ast" in raw:
            return self._unwrap(raw["ast"])
        if not isinstance(raw, dict) or raw.get("type") != "select":
            raise MappingError("Invalid AST: Root node must be a SELECT query.", raw)
        return raw

    def _map_select(self, ast: RawNode, ctx: MappingContext, include_unions: bool = True) -> QueryNode:
        if ast.get("distinct"):
            raise MappingError("SELECT DISTINCT is not supported.", ast.get("distinct"))

        limit, offset = self._map_limit(ast.get("limit"))
        fields = {
            "with_": self._map_with(ast.get("with"), ctx),
            "selects": self._map_columns(ast.get("columns"), ctx),
            "from_": self._map_from(ast.get("from"), ctx),
            "joins": self._map_joins(ast.get("from"), ctx),
            "where": self._map_filter(ast.get("where"), ctx),
            "group_by": self._map_group_by(ast.get("groupby"), ctx),
            "having": self._map_filter(ast.get("having"), ctx),
            "qualify": self._map_filter(ast.get("qualify"), ctx),
            "order_by": self._map_order_by(ast.get("orderby"), ctx),
            "limit": limit,
            "offset": offset,
            "unions": self._map_unions(ast, ctx) if include_unions else [],
        }
        return QueryNode(**fields)

    def _map_with(self, with_clauses: Any, ctx: MappingContext) -> List[WithNode]:
        if not with_clauses:
            return []
        if not isinstance(with_clauses, list):
            raise MappingError("Invalid AST structure: 'with' must be an array.", with_clauses)
        nodes = []
        for cte in with_clauses:
            cte = _expect_dict(cte, "CTE entry")
            name = _identifier(cte.get("name"))
            if not name:
                raise MappingError("Invalid AST structure: CTE without a name.", cte)
            nodes.append(WithNode(name=name, query=self._map_query(cte.get("stmt"), ctx)))
        return nodes

    def _map_unions(self, ast: RawNode, ctx: MappingContext) -> List[UnionNode]:
        unions = []
        node = ast
        while node.get("_next"):
            operator = " ".join(str(node.get("set_op") or "union").upper().split())
            if operator not in _UNION_TYPES:
                raise MappingError(f"Unsupported set operation: '{node.get('set_op')}'")
            arm = self._unwrap(node["_next"])
            with ctx.nested("union"):
                query = self._map_select(arm, ctx, include_unions=False)
            unions.append(UnionNode(union_type=_UNION_TYPES[operator], query=query))
            node = arm
        return unions

    def _map_columns(self, columns: Any, ctx: MappingContext) -> List[SelectNode]:
        if columns == "*":
            return [SelectNode(expression=ColumnRef(name="*"))]
        if not isinstance(columns, list) or not columns:
            raise MappingError("Invalid AST structure: 'columns' must be a non-empty array.", columns)
        nodes = []
        for column in columns:
            column = _expect_dict(column, "column entry")
            nodes.append(SelectNode(
                expression=self.map_expression(column.get("expr"), ctx),
                alias=_identifier(column.get("as")),
            ))
        return nodes

    def _sources(self, from_list: Any) -> List[RawNode]:
        if isinstance(from_list, dict):
            from_list = [from_list]
        if not isinstance(from_list, list):
            raise MappingError("Invalid AST structure: 'from' must be an array.", from_list)
        return [_expect_dict(source, "FROM entry") for source in from_list]

    def _map_from(self, from_list: Any, ctx: MappingContext) -> Union[TableNode, SubQueryNode]:
        for source in self._sources(from_list):
            if not source.get("join"):
                return self._map_target(source, ctx)
        raise MappingError("Invalid AST structure: 'from' must contain a main table.", from_list)

    def _map_target(self, source: RawNode, ctx: MappingContext) -> Union[TableNode, SubQueryNode]:
        alias = _identifier(source.get("as"))
        expr = source.get("expr")
        if isinstance(expr, dict) and "ast" in expr:
            return SubQueryNode(query=self._map_query(expr["ast"], ctx), alias=alias)
        table = source.get("table")
        if table and isinstance(table, str):
            parts = [source.get("db"), table]
            return TableNode(name=".".join(p for p in parts if p), alias=alias)
        raise MappingError("Invalid AST structure: unsupported FROM entry.", source)

    def _map_joins(self, from_list: Any, ctx: MappingContext) -> List[JoinNode]:
        joins = []
        for source in self._sources(from_list):
            if not source.get("join"):
                continue
            if source.get("using"):
                raise MappingError("JOIN ... USING is not supported.", source)
            on = source.get("on")
            joins.append(JoinNode(
                join_type=normalize_join_type(source["join"]),
                table=self._map_target(source, ctx),
                on=self.map_expression(on, ctx) if on else None,
            ))
        return joins

    def _map_group_by(self, groupby: Any, ctx: MappingContext) -> Optional[List[str]]:
        if isinstance(groupby, dict):
            groupby = groupby.get("columns")
        if not groupby:
            return None
        if not isinstance(groupby, list):
            raise MappingError("Invalid AST structure: 'groupby' must be an array.", groupby)
        return [self._key_text(column, ctx) for column in groupby]

    def _map_order_by(self, orderby: Any, ctx: MappingContext) -> List[OrderByNode]:
        if not orderby:
            return []
        if not isinstance(orderby, list):
            raise MappingError("Invalid AST structure: 'orderby' must be an array.", orderby)
        nodes = []
        for order in orderby:
            order = _expect_dict(order, "ORDER BY entry")
            nodes.append(OrderByNode(
                column=self._key_text(order.get("expr"), ctx),
                direction=str(order.get("type") or "ASC").upper(),
            ))
        return nodes

    def _key_text(self, raw: Any, ctx: MappingContext) -> str:
        """GROUP BY / ORDER BY keys are stored as text."""
        expr = self.map_expression(raw, ctx)
        if expr.is_leaf and isinstance(expr.left, ColumnRef):
            return expr.left.name
        return render_inline(expr, self.max_depth)

    def _map_limit(self, limit: Any):
        if not limit:
            return None, None
        limit = _expect_dict(limit, "'limit'")
        values = limit.get("value")
        if not values:
            return None, None
        if not isinstance(values, list):
            raise MappingError("Invalid AST structure: limit 'value' must be an array.", limit)

        values = [self._limit_value(v) for v in values]
        separator = limit.get("seperator", limit.get("separator", ""))
        if separator == "," and len(values) == 2:
            # MySQL style LIMIT offset, count
            values.reverse()

        count = values[0]
        offset = values[1] if len(values) > 1 else None
        return count, offset

    def _limit_value(self, raw: Optional[RawNode]) -> Optional[int]:
        if raw is None:
            return None
        value = raw.get("value") if isinstance(raw, dict) else raw
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value != int(value):
            raise MappingError("LIMIT / OFFSET must be integer literals.", raw)
        return int(value)

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def _map_filter(self, raw: Any, ctx: MappingContext) -> Optional[FilterNode]:
        if raw is None:
            return None
        if not isinstance(raw, dict) or not raw.get("type"):
            raise MappingError("Invalid filter node.", raw)
        return self._regroup(raw, ctx)

    @staticmethod
    def _is_logical(raw: Any) -> bool:
        return (
            isinstance(raw, dict)
            and raw.get("type") == "binary_expr"
            and str(raw.get("operator", "")).upper() in _LOGICAL_OPERATORS
        )

    def _regroup(self, raw: RawNode, ctx: MappingContext) -> Optional[FilterNode]:
        """
        Build the FilterNode for one boolean tree.

        A comparison becomes a one-condition AND filter. An AND/OR node keeps
        its operator; same-operator children without parentheses are merged
        into it and every other logical child becomes a nested group.
        """
        with ctx.nested("filter"):
            if not self._is_logical(raw):
                conditions = self._flatten(raw, "AND", ctx)
                operator = "AND"
            else:
                operator = raw["operator"].upper()
                conditions = (
                    self._flatten(raw.get("left"), operator, ctx)
                    + self._flatten(raw.get("right"), operator, ctx)
                )

        if not conditions:
            return None
        return FilterNode(operator=operator, conditions=conditions)

    def _flatten(self, raw: Any, operator: str, ctx: MappingContext) -> List[Union[ExpressionNode, FilterNode]]:
        if not self._is_logical(raw):
            expr = prune_empty_sets(self.map_expression(raw, ctx))
            return [] if expr is None else [expr]

        if raw["operator"].upper() == operator and not raw.get("parentheses"):
            with ctx.nested("filter"):
                return (
                    self._flatten(raw.get("left"), operator, ctx)
                    + self._flatten(raw.get("right"), operator, ctx)
                )

        group = self._regroup(raw, ctx)
        return [group] if group is not None else []

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def map_expression(self, raw: Any, ctx: Optional[MappingContext] = None) -> ExpressionNode:
        """Map a raw expression, wrapping bare operands into an ExpressionNode."""
        operand = self._map_operand(raw, ctx or MappingContext(self.max_depth))
        if isinstance(operand, ExpressionNode):
            return operand
        return ExpressionNode(left=operand)

    def _map_operand(self, raw: Any, ctx: MappingContext):
        if not isinstance(raw, dict):
            raise MappingError("Invalid expression.", raw)

        with ctx.nested("expression"):
            if "ast" in raw:
                return self._map_query(raw["ast"], ctx)

            handler = self._expression_handlers.get(raw.get("type"))
            if handler is None:
                raise UnsupportedExpressionError(raw)
            return handler(raw, ctx)

    def _map_column_ref(self, raw: RawNode, ctx: MappingContext) -> ColumnRef:
        column = raw.get("column")
        if isinstance(column, dict):
            column = _identifier(column.get("expr"))
        if not column:
            raise MappingError("Invalid column reference.", raw)
        table = raw.get("table")
        return ColumnRef(name=f"{table}.{column}" if table else column)

    def _map_binary(self, raw: RawNode, ctx: MappingContext) -> ExpressionNode:
        return ExpressionNode(
            left=self._map_operand(raw.get("left"), ctx),
            operator=str(raw.get("operator")).upper(),
            right=self._map_operand(raw.get("right"), ctx),
        )

    def _map_number(self, raw: RawNode, ctx: MappingContext) -> LiteralNode:
        value = raw.get("value")
        if isinstance(value, str):
            try:
                value = float(value) if any(c in value for c in ".eE") else int(value)
            except ValueError:
                raise MappingError("Invalid number literal.", raw)
        return LiteralNode(value=value)

    def _map_string(self, raw: RawNode, ctx: MappingContext) -> LiteralNode:
        return LiteralNode(value=str(raw.get("value", "")))

    def _map_bool(self, raw: RawNode, ctx: MappingContext) -> LiteralNode:
        value = raw.get("value")
        if isinstance(value, str):
            value = value.upper() == "TRUE"
        return LiteralNode(value=bool(value))

    def _map_null(self, raw: RawNode, ctx: MappingContext) -> LiteralNode:
        return LiteralNode(value=None)

    def _map_star(self, raw: RawNode, ctx: MappingContext) -> ColumnRef:
        return ColumnRef(name="*")

    def _map_function(self, raw: RawNode, ctx: MappingContext) -> FunctionNode:
        name = raw.get("name")
        if isinstance(name, dict):
            parts = name.get("name")
            if isinstance(parts, list):
                name = ".".join(_identifier(part) or "" for part in parts)
            else:
                name = _identifier(name)
        if not name or not isinstance(name, str):
            raise MappingError("Invalid function call: missing name.", raw)

        args = raw.get("args") or {}
        if not isinstance(args, dict):
            raise MappingError("Invalid AST structure: function 'args' must be an object.", raw)
        values = (args.get("value") or []) if args.get("type") == "expr_list" else []
        return FunctionNode(name=name, args=[self._map_operand(arg, ctx) for arg in values])

    def _map_aggregate(self, raw: RawNode, ctx: MappingContext) -> FunctionNode:
        args = _expect_dict(raw.get("args") or {}, "aggregate 'args'")
        arg = args.get("expr")
        if arg is None:
            operands = []
        elif isinstance(arg, dict) and arg.get("type") == "star":
            operands = [ColumnRef(name="*")]
        else:
            operands = [self._map_operand(arg, ctx)]
        return FunctionNode(
            name=str(raw.get("name")).upper(),
            args=operands,
            distinct=bool(args.get("distinct")),
        )

    def _map_case(self, raw: RawNode, ctx: MappingContext) -> RawSQL:
        parts = ["CASE"]
        if raw.get("expr"):
            parts.append(self._inline(raw["expr"], ctx))
        for arm in raw.get("args") or []:
            arm = _expect_dict(arm, "CASE arm")
            if arm.get("type") == "when":
                parts.append(f"WHEN {self._inline(arm.get('cond'), ctx)} THEN {self._inline(arm.get('result'), ctx)}")
            elif arm.get("type") == "else":
                parts.append(f"ELSE {self._inline(arm.get('result'), ctx)}")
            else:
                raise MappingError("Invalid AST structure: CASE arm must be WHEN or ELSE.", arm)
        parts.append("END")
        return RawSQL(sql=" ".join(parts))

    def _map_interval(self, raw: RawNode, ctx: MappingContext) -> RawSQL:
        unit = str(raw.get("unit") or "").upper()
        return RawSQL(sql=f"INTERVAL {self._inline(raw.get('expr'), ctx)} {unit}".rstrip())

    def _map_is_expr(self, raw: RawNode, ctx: MappingContext) -> ExpressionNode:
        right = raw.get("right")
        return ExpressionNode(
            left=self._map_operand(raw.get("left"), ctx),
            operator=str(raw.get("operator") or "IS").upper(),
            right=self._map_operand(right, ctx) if right is not None else None,
        )

    def _map_expr_list(self, raw: RawNode, ctx: MappingContext):
        values = raw.get("value") or []
        if not isinstance(values, list):
            raise MappingError("Invalid AST structure: expr_list 'value' must be an array.", raw)
        if len(values) == 1 and isinstance(values[0], dict) and "ast" in values[0]:
            # x IN (SELECT ...)
            return self._map_operand(values[0], ctx)

        operands = [self._map_operand(value, ctx) for value in values]
        if all(isinstance(o, LiteralNode) and not isinstance(o.value, list) for o in operands):
            return LiteralNode(value=[o.value for o in operands])
        return RawSQL(sql="(" + ", ".join(render_inline(o, self.max_depth) for o in operands) + ")")

    def _map_origin(self, raw: RawNode, ctx: MappingContext) -> RawSQL:
        value = raw.get("value")
        if not value:
            raise MappingError("Invalid keyword fragment.", raw)
        return RawSQL(sql=str(value))

    def _inline(self, raw: Any, ctx: MappingContext) -> str:
        return render_inline(self.map_expression(raw, ctx), self.max_depth)


def map_ast(raw: Union[RawNode, List[RawNode]], max_depth: Optional[int] = None) -> QueryNode:
    """Convenience wrapper around ASTMapper(max_depth).map(raw)."""
    return ASTMapper(max_depth).map(raw)
