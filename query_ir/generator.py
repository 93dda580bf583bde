"""
SQL Generator - Converts IR back to SQL.

QueryBuilder validates a QueryNode and renders it clause by clause. Nested
queries (CTEs, FROM/JOIN subqueries, scalar subqueries, union arms) are
rendered through the same RenderContext, so one ParameterManager numbers
every placeholder of a build in document order.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel

from . import config
from .errors import QueryValidationError
from .expression_renderer import ExpressionRenderer, RenderContext, prune_empty_sets
from .ir_types import (
    ExpressionNode,
    FilterNode,
    JoinNode,
    OrderByNode,
    QueryNode,
    Schema,
    SelectNode,
    SubQueryNode,
    TableNode,
    UnionNode,
    WithNode,
)
from .parameters import ParameterManager, QueryBuilderMode
from .validator import ValidationPipeline, default_pipeline

logger = logging.getLogger(__name__)

_JOIN_KEYWORDS = {
    "INNER": "INNER JOIN",
    "LEFT": "LEFT JOIN",
    "RIGHT": "RIGHT JOIN",
    "FULL": "FULL JOIN",
    "CROSS": "CROSS JOIN",
    "JOIN": "JOIN",
}

_LOGICAL_OPERATORS = ("AND", "OR")


class QueryBuildResult(BaseModel):
    """
    Result of a build.

    ``parameters`` is a dict in NAMED mode, a list in POSITIONAL mode and
    None in SIMPLE mode.
    """
    query: str
    parameters: Optional[Union[Dict[str, Any], List[Any]]] = None


class QueryBuilder:
    """
    Builds parameterized SQL from a QueryNode.

    Example:
        >>> builder = QueryBuilder(QueryBuilderMode.NAMED)
        >>> result = builder.build(QueryNode(
        ...     selects=["name", "email"],
        ...     from_="users",
        ...     where=where([{"column": "age", "operator": ">", "value": 18}]),
        ... ))
        >>> result.query
        'SELECT name, email FROM users WHERE age > @param1'
        >>> result.parameters
        {'param1': 18}
    """

    def __init__(
        self,
        mode: Optional[QueryBuilderMode] = None,
        max_depth: Optional[int] = None,
        pipeline: Optional[ValidationPipeline] = None,
    ):
        self.mode = QueryBuilderMode(mode or config.DEFAULT_MODE)
        self.max_depth = max_depth if max_depth is not None else config.MAX_DEPTH
        self.validation_pipeline = pipeline or default_pipeline(self.max_depth)

    def set_mode(self, mode: QueryBuilderMode) -> None:
        self.mode = QueryBuilderMode(mode)

    def validate(self, query: QueryNode, schema: Optional[Schema] = None) -> None:
        """Raise QueryValidationError listing every rule violation."""
        errors = self.validation_pipeline.validate(query, schema)
        if errors:
            logger.warning(f"[QueryBuilder] Validation failed with {len(errors)} error(s)")
            raise QueryValidationError(errors)

    def build(self, query: QueryNode, schema: Optional[Schema] = None) -> QueryBuildResult:
        self.validate(query, schema)

        context = RenderContext(ParameterManager(self.mode), self.max_depth)
        sql = self._render_query(query, context)
        parameters = context.params.get_parameters()

        logger.debug(
            f"[QueryBuilder] Built {self.mode.value} query with "
            f"{len(parameters) if parameters is not None else 0} parameter(s)"
        )
        return QueryBuildResult(query=sql, parameters=parameters)

    def render_expression(self, expr) -> str:
        """Render a single expression or operand without validation."""
        context = RenderContext(ParameterManager(self.mode), self.max_depth)
        return self._expression_renderer(context).render(expr)

    def _expression_renderer(self, context: RenderContext) -> ExpressionRenderer:
        return ExpressionRenderer(context, lambda q: self._render_query(q, context))

    def _render_query(self, query: QueryNode, context: RenderContext) -> str:
        with context.nested("query"):
            renderer = self._expression_renderer(context)

            # Order matters: parameters are numbered as the text is produced
            parts = [
                self._build_with_clause(query.with_, context),
                self._build_select_clause(query.selects, renderer),
                self._build_from_clause(query.from_, context),
                self._build_join_clause(query.joins, renderer, context),
                self._build_filter_clause("WHERE", query.where, renderer),
                self._build_group_by_clause(query.group_by),
                self._build_filter_clause("HAVING", query.having, renderer),
                self._build_filter_clause("QUALIFY", query.qualify, renderer),
                self._build_union_clause(query.unions, context),
                self._build_order_by_clause(query.order_by),
                f"LIMIT {query.limit}" if query.limit is not None else "",
                f"OFFSET {query.offset}" if query.offset is not None else "",
            ]
            return " ".join(part for part in parts if part).strip()

    def _build_with_clause(self, with_nodes: List[WithNode], context: RenderContext) -> str:
        if not with_nodes:
            return ""
        ctes = [
            f"{node.name} AS ({self._render_query(node.query, context)})"
            for node in with_nodes
        ]
        return "WITH " + ", ".join(ctes)

    def _build_select_clause(self, selects: List[SelectNode], renderer: ExpressionRenderer) -> str:
        columns = []
        for select in selects:
            column = renderer.render(select.expression)
            if select.alias:
                column += f" AS {select.alias}"
            columns.append(column)
        return "SELECT " + ", ".join(columns)

    def _build_from_clause(self, from_node, context: RenderContext) -> str:
        return "FROM " + self._build_target(from_node, context)

    def _build_target(self, target, context: RenderContext) -> str:
        if isinstance(target, TableNode):
            sql = target.name
        elif isinstance(target, SubQueryNode):
            sql = f"({self._render_query(target.query, context)})"
        else:
            raise TypeError(f"Unexpected FROM target: {type(target).__name__}")

        if target.alias:
            sql += f" AS {target.alias}"
        return sql

    def _build_join_clause(
        self,
        joins: List[JoinNode],
        renderer: ExpressionRenderer,
        context: RenderContext,
    ) -> str:
        clauses = []
        for join in joins:
            clause = f"{_JOIN_KEYWORDS[join.join_type]} {self._build_target(join.table, context)}"
            if join.on is not None:
                clause += f" ON {renderer.render(join.on)}"
            clauses.append(clause)
        return " ".join(clauses)

    def _build_filter_clause(
        self,
        keyword: str,
        filter_node: Optional[FilterNode],
        renderer: ExpressionRenderer,
    ) -> str:
        """
        Generate a WHERE / HAVING / QUALIFY clause.

        Nested groups get parentheses only where their operator differs from
        the enclosing one, so ``(a AND b) OR c`` keeps its grouping while
        ``a AND (b AND c)`` renders flat. Empty ``IN ()`` sets are dropped.
        """
        if filter_node is None:
            return ""
        sql = self._render_filter(filter_node, renderer)
        return f"{keyword} {sql}" if sql else ""

    def _render_filter(
        self,
        node: FilterNode,
        renderer: ExpressionRenderer,
        parent_operator: Optional[str] = None,
    ) -> str:
        parts = []
        for condition in node.conditions:
            if isinstance(condition, FilterNode):
                text = self._render_filter(condition, renderer, node.operator)
            else:
                condition = prune_empty_sets(condition)
                if condition is None:
                    continue
                text = renderer.render(condition)
                if _needs_group(condition, node) and len(node.conditions) > 1:
                    text = f"({text})"
            if text:
                parts.append(text)

        sql = f" {node.operator} ".join(parts)
        if parent_operator and parent_operator != node.operator and len(parts) > 1:
            return f"({sql})"
        return sql

    def _build_group_by_clause(self, group_by: Optional[List[str]]) -> str:
        if not group_by:
            return ""
        return "GROUP BY " + ", ".join(group_by)

    def _build_union_clause(self, unions: List[UnionNode], context: RenderContext) -> str:
        arms = []
        for union in unions:
            sql = self._render_query(union.query, context)
            arm = union.query
            if arm.order_by or arm.limit is not None or arm.offset is not None or arm.unions or arm.with_:
                sql = f"({sql})"
            arms.append(f"{union.union_type} {sql}")
        return " ".join(arms)

    def _build_order_by_clause(self, order_by: List[OrderByNode]) -> str:
        if not order_by:
            return ""
        return "ORDER BY " + ", ".join(f"{o.column} {o.direction}" for o in order_by)


def _needs_group(condition: ExpressionNode, parent: FilterNode) -> bool:
    """A logical expression stored as a single condition needs parentheses
    when its operator differs from the filter it sits in."""
    operator = (condition.operator or "").upper()
    return operator in _LOGICAL_OPERATORS and operator != parent.operator


def ir_to_sql(
    query: QueryNode,
    mode: QueryBuilderMode = QueryBuilderMode.SIMPLE,
    schema: Optional[Schema] = None,
) -> str:
    """Convert a QueryNode to a SQL string (literals inlined by default)."""
    return QueryBuilder(mode).build(query, schema).query
