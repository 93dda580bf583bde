"""
Helper constructors and tree transformations for building and editing IR.

The constructors return plain IR nodes, so they compose with QueryNode(...)
directly:

    QueryNode(
        selects=select("name", {"name": "email", "alias": "contact"}),
        from_=from_("users"),
        joins=[left_join("orders", "users.id", "=", "orders.user_id")],
        where=where(conditions([{"column": "age", "operator": ">", "value": 18}])),
        order_by=[order_by("name")],
    )

Every transformation returns a new tree; nodes are never modified in place.
"""

import re
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Union

from .expression_renderer import prune_empty_sets
from .ir_types import (
    ColumnRef,
    ExpressionNode,
    FilterNode,
    FunctionNode,
    JoinNode,
    JoinType,
    LiteralNode,
    OrderByNode,
    QueryNode,
    SelectNode,
    SortDirection,
    SubQueryNode,
    TableNode,
)
from .parameters import format_value

__all__ = [
    "select",
    "table",
    "from_",
    "join",
    "inner_join",
    "left_join",
    "right_join",
    "full_join",
    "cross_join",
    "condition",
    "conditions",
    "where",
    "group_by",
    "order_by",
    "format_value",
    "is_condition_equal",
    "update_condition",
    "update_or_add_condition",
    "get_primary_table_name",
    "qualify_table_names",
]

TableArg = Union[str, Dict[str, str], TableNode, SubQueryNode]


# ----------------------------------------------------------------------
# Constructors
# ----------------------------------------------------------------------

def select(*args: Union[str, Dict[str, str], SelectNode]) -> List[SelectNode]:
    """Build select items from names, ``{"name", "alias"}`` dicts or SelectNodes."""
    nodes = []
    for arg in args:
        if isinstance(arg, SelectNode):
            nodes.append(arg)
        elif isinstance(arg, dict):
            nodes.append(SelectNode(expression=ColumnRef(name=arg["name"]), alias=arg.get("alias")))
        else:
            nodes.append(SelectNode(expression=ColumnRef(name=arg)))
    return nodes


def table(name: str, alias: Optional[str] = None) -> TableNode:
    return TableNode(name=name, alias=alias)


def from_(target: TableArg) -> Union[TableNode, SubQueryNode]:
    """A FROM target from a table name, a ``{"name", "alias"}`` dict or a node."""
    if isinstance(target, str):
        return TableNode(name=target)
    if isinstance(target, dict):
        return TableNode(name=target["name"], alias=target.get("alias"))
    return target


def join(
    target: TableArg,
    first: str,
    operator: Optional[str],
    second: str,
    join_type: JoinType = "JOIN",
) -> JoinNode:
    """
    Build a JOIN whose ON clause compares two columns.

    Args:
        target: Table to join (name, ``{"name", "alias"}`` dict or node)
        first: Left column of the ON comparison
        operator: Comparison operator, ``=`` when None
        second: Right column of the ON comparison
        join_type: INNER, LEFT, RIGHT, FULL, CROSS or plain JOIN
    """
    return JoinNode(
        join_type=join_type,
        table=from_(target),
        on=ExpressionNode(
            left=ColumnRef(name=first),
            operator=operator or "=",
            right=ColumnRef(name=second),
        ),
    )


def inner_join(target: TableArg, first: str, operator: Optional[str], second: str) -> JoinNode:
    return join(target, first, operator, second, "INNER")


def left_join(target: TableArg, first: str, operator: Optional[str], second: str) -> JoinNode:
    return join(target, first, operator, second, "LEFT")


def right_join(target: TableArg, first: str, operator: Optional[str], second: str) -> JoinNode:
    return join(target, first, operator, second, "RIGHT")


def full_join(target: TableArg, first: str, operator: Optional[str], second: str) -> JoinNode:
    return join(target, first, operator, second, "FULL")


def cross_join(
    target: TableArg,
    first: Optional[str] = None,
    operator: Optional[str] = None,
    second: Optional[str] = None,
) -> JoinNode:
    """CROSS JOIN; the ON comparison is optional."""
    if first is None or second is None:
        return JoinNode(join_type="CROSS", table=from_(target))
    return join(target, first, operator, second, "CROSS")


def condition(column: str, operator: str, value: Any) -> ExpressionNode:
    """``column operator value`` with the value as a literal (lists for IN)."""
    if isinstance(value, (tuple, set, frozenset)):
        value = list(value)
    return ExpressionNode(
        left=ColumnRef(name=column),
        operator=operator,
        right=LiteralNode(value=value),
    )


def conditions(items: Sequence[Dict[str, Any]], boolean_operator: str = "AND") -> ExpressionNode:
    """
    Chain ``{"column", "operator", "value"}`` dicts into one left-nested expression.

    ``[a, b, c]`` becomes ``((a OP b) OP c)``; a single item is returned as is.
    """
    if not items:
        raise ValueError("conditions() needs at least one condition")

    expressions = [condition(i["column"], i["operator"], i["value"]) for i in items]
    result = expressions[0]
    for expr in expressions[1:]:
        result = ExpressionNode(left=result, operator=boolean_operator.upper(), right=expr)
    return result


def where(
    items: Union[ExpressionNode, FilterNode, Dict[str, Any], Iterable[Any]],
    operator: str = "AND",
) -> Optional[FilterNode]:
    """
    Build a WHERE / HAVING / QUALIFY filter.

    Accepts one condition or a list of ExpressionNodes, FilterNodes and
    ``{"column", "operator", "value"}`` dicts. ``IN`` conditions with an
    empty value list are dropped, also from inside AND/OR chains built by
    ``conditions()``; None is returned if nothing is left.
    """
    if isinstance(items, (ExpressionNode, FilterNode, dict)):
        items = [items]

    nodes = []
    for item in items:
        if isinstance(item, dict):
            item = condition(item["column"], item["operator"], item["value"])
        if isinstance(item, ExpressionNode):
            item = prune_empty_sets(item)
            if item is None:
                continue
        nodes.append(item)

    if not nodes:
        return None
    return FilterNode(operator=operator.upper(), conditions=nodes)


def group_by(columns: Union[str, Sequence[str]]) -> List[str]:
    if isinstance(columns, str):
        return [columns]
    return list(columns)


def order_by(column: str, direction: SortDirection = "DESC") -> OrderByNode:
    return OrderByNode(column=column, direction=direction)


# ----------------------------------------------------------------------
# Conditions
# ----------------------------------------------------------------------

def is_condition_equal(a: Any, b: Any) -> bool:
    """Structural equality of two conditions."""
    return a == b


def _same_target(original: ExpressionNode, update: ExpressionNode) -> bool:
    return (
        original.operator is not None
        and original.operator == update.operator
        and original.left == update.left
    )


def update_condition(original: ExpressionNode, update: ExpressionNode) -> Optional[ExpressionNode]:
    """
    Replace the first sub-expression that has the same left side and operator.

    Returns the rewritten expression, or None when nothing matched.
    """
    if _same_target(original, update):
        return update

    for side in ("left", "right"):
        child = getattr(original, side)
        if isinstance(child, ExpressionNode):
            replaced = update_condition(child, update)
            if replaced is not None:
                return original.model_copy(update={side: replaced})
    return None


def update_or_add_condition(filter_node: Optional[FilterNode], new: ExpressionNode) -> FilterNode:
    """Update the matching condition in a filter, or append it."""
    if filter_node is None:
        return FilterNode(conditions=[new])

    conditions_ = list(filter_node.conditions)
    for index, existing in enumerate(conditions_):
        if isinstance(existing, ExpressionNode):
            replaced = update_condition(existing, new)
        else:
            replaced = _update_filter(existing, new)
        if replaced is not None:
            conditions_[index] = replaced
            return filter_node.model_copy(update={"conditions": conditions_})

    conditions_.append(new)
    return filter_node.model_copy(update={"conditions": conditions_})


def _update_filter(filter_node: FilterNode, new: ExpressionNode) -> Optional[FilterNode]:
    for index, existing in enumerate(filter_node.conditions):
        if isinstance(existing, ExpressionNode):
            replaced = update_condition(existing, new)
        else:
            replaced = _update_filter(existing, new)
        if replaced is not None:
            conditions_ = list(filter_node.conditions)
            conditions_[index] = replaced
            return filter_node.model_copy(update={"conditions": conditions_})
    return None


# ----------------------------------------------------------------------
# Tables
# ----------------------------------------------------------------------

_AS_PATTERN = re.compile(r"\s+as\s+", re.IGNORECASE)


def get_primary_table_name(target: Union[str, TableNode, SubQueryNode]) -> str:
    """
    Name a query's primary table is referred to by.

    The alias wins when present; subqueries without an alias resolve to
    their own primary table.
    """
    if isinstance(target, str):
        parts = _AS_PATTERN.split(target.strip(), maxsplit=1)
        return parts[-1]
    if target.alias:
        return target.alias
    if isinstance(target, TableNode):
        return target.name
    return get_primary_table_name(target.query.from_)


def qualify_table_names(query: QueryNode, dataset: str) -> QueryNode:
    """
    Rewrite every table reference in the tree to ``dataset.table``.

    Any existing qualifier is replaced. References to CTEs in scope are left
    untouched.
    """
    return _qualify_query(query, dataset, frozenset())


def _qualify_name(name: str, dataset: str) -> str:
    return f"{dataset}.{name.rsplit('.', 1)[-1]}"


def _qualify_query(query: QueryNode, dataset: str, ctes: FrozenSet[str]) -> QueryNode:
    scope = ctes | {w.name for w in query.with_}

    def target(node):
        if isinstance(node, SubQueryNode):
            return node.model_copy(update={"query": _qualify_query(node.query, dataset, scope)})
        if node.name in scope:
            return node
        return node.model_copy(update={"name": _qualify_name(node.name, dataset)})

    def operand(node):
        if isinstance(node, QueryNode):
            return _qualify_query(node, dataset, scope)
        if isinstance(node, ExpressionNode):
            return node.model_copy(update={
                "left": operand(node.left),
                "right": operand(node.right) if node.right is not None else None,
            })
        if isinstance(node, FunctionNode):
            return node.model_copy(update={"args": [operand(a) for a in node.args]})
        return node

    def filter_(node: Optional[FilterNode]) -> Optional[FilterNode]:
        if node is None:
            return None
        return node.model_copy(update={
            "conditions": [
                filter_(c) if isinstance(c, FilterNode) else operand(c)
                for c in node.conditions
            ],
        })

    return query.model_copy(update={
        "with_": [
            w.model_copy(update={"query": _qualify_query(w.query, dataset, scope)})
            for w in query.with_
        ],
        "selects": [s.model_copy(update={"expression": operand(s.expression)}) for s in query.selects],
        "from_": target(query.from_),
        "joins": [
            j.model_copy(update={
                "table": target(j.table),
                "on": operand(j.on) if j.on is not None else None,
            })
            for j in query.joins
        ],
        "where": filter_(query.where),
        "having": filter_(query.having),
        "qualify": filter_(query.qualify),
        "unions": [
            u.model_copy(update={"query": _qualify_query(u.query, dataset, scope)})
            for u in query.unions
        ],
    })
