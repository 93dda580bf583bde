"""Tree-walking helpers shared by the validators and IR helpers."""

from typing import FrozenSet, Iterator, List, Optional, Tuple

from . import config
from .errors import DepthExceededError
from .ir_types import (
    ColumnRef,
    ExpressionNode,
    FilterNode,
    FunctionNode,
    QueryNode,
    SubQueryNode,
    TableNode,
)


def is_table(target) -> bool:
    """True when a FROM/JOIN target is a plain table rather than a subquery."""
    return isinstance(target, TableNode)


def iter_operands(expr) -> Iterator:
    """
    Yield every operand inside an expression, depth first.

    Scalar subqueries are yielded but not descended into; callers that need
    nested queries use iter_queries.
    """
    if expr is None:
        return
    yield expr
    if isinstance(expr, ExpressionNode):
        yield from iter_operands(expr.left)
        yield from iter_operands(expr.right)
    elif isinstance(expr, FunctionNode):
        for arg in expr.args:
            yield from iter_operands(arg)


def iter_column_refs(expr) -> Iterator[ColumnRef]:
    for operand in iter_operands(expr):
        if isinstance(operand, ColumnRef):
            yield operand


def iter_operators(expr) -> Iterator[str]:
    for operand in iter_operands(expr):
        if isinstance(operand, ExpressionNode) and operand.operator:
            yield operand.operator


def iter_filter_expressions(filter_node: Optional[FilterNode]) -> Iterator[ExpressionNode]:
    """Yield the ExpressionNode conditions of a filter, flattening nested groups."""
    if filter_node is None:
        return
    for condition in filter_node.conditions:
        if isinstance(condition, FilterNode):
            yield from iter_filter_expressions(condition)
        else:
            yield condition


def clause_expressions(query: QueryNode) -> List[Tuple[str, object]]:
    """(location, expression) pairs for every expression-bearing clause of one query."""
    pairs = [("SELECT", select.expression) for select in query.selects]
    pairs.extend(("JOIN", join.on) for join in query.joins if join.on is not None)
    for location, filter_node in (
        ("WHERE", query.where),
        ("HAVING", query.having),
        ("QUALIFY", query.qualify),
    ):
        pairs.extend((location, expr) for expr in iter_filter_expressions(filter_node))
    return pairs


def child_queries(query: QueryNode) -> List[QueryNode]:
    """Queries owned directly by this query, in document order."""
    pairs = clause_expressions(query)
    selects, rest = pairs[:len(query.selects)], pairs[len(query.selects):]

    children = [node.query for node in query.with_]
    for _, expr in selects:
        children.extend(o for o in iter_operands(expr) if isinstance(o, QueryNode))
    if isinstance(query.from_, SubQueryNode):
        children.append(query.from_.query)
    for join in query.joins:
        if isinstance(join.table, SubQueryNode):
            children.append(join.table.query)
    for _, expr in rest:
        children.extend(o for o in iter_operands(expr) if isinstance(o, QueryNode))
    children.extend(union.query for union in query.unions)
    return children


def iter_queries(
    query: QueryNode,
    max_depth: Optional[int] = None,
) -> Iterator[Tuple[QueryNode, FrozenSet[str]]]:
    """
    Yield the query and every nested query with the CTE names in scope.

    Raises DepthExceededError when nesting goes beyond max_depth.
    """
    limit = max_depth if max_depth is not None else config.MAX_DEPTH

    def visit(node: QueryNode, ctes: FrozenSet[str], depth: int):
        if depth > limit:
            raise DepthExceededError(limit, "validation")
        scope = ctes | {w.name for w in node.with_}
        yield node, scope
        for child in child_queries(node):
            yield from visit(child, scope, depth + 1)

    yield from visit(query, frozenset(), 1)


def split_column(name: str) -> Tuple[Optional[str], str]:
    """Split ``table.column`` into its qualifier and column parts."""
    if "." in name:
        qualifier, column = name.rsplit(".", 1)
        return qualifier, column
    return None, name
