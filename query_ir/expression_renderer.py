"""
Expression renderer - turns one IR expression into SQL text.

Literals go through the ParameterManager, identifiers and raw fragments are
emitted verbatim, and scalar subqueries are handed back to the query renderer
so they share the same parameter numbering.
"""

from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from .errors import DepthExceededError, RenderError
from .ir_types import (
    ColumnRef,
    ExpressionNode,
    FunctionNode,
    LiteralNode,
    QueryNode,
    RawSQL,
)
from .parameters import ParameterManager, QueryBuilderMode


# Higher binds tighter; follows the usual SQL precedence ladder.
OR = 1
AND = 2
NOT = 3
COMPARISON = 4
PATTERN = 5
CONCAT = 6
ADD_SUB = 7
MUL_DIV = 8

_PRECEDENCE = {
    "OR": OR,
    "AND": AND,
    "IS": COMPARISON,
    "IS NOT": COMPARISON,
    "=": COMPARISON,
    "!=": COMPARISON,
    "<>": COMPARISON,
    "<": COMPARISON,
    ">": COMPARISON,
    "<=": COMPARISON,
    ">=": COMPARISON,
    "IN": PATTERN,
    "NOT IN": PATTERN,
    "LIKE": PATTERN,
    "NOT LIKE": PATTERN,
    "ILIKE": PATTERN,
    "NOT ILIKE": PATTERN,
    "||": CONCAT,
    "+": ADD_SUB,
    "-": ADD_SUB,
    "*": MUL_DIV,
    "/": MUL_DIV,
    "%": MUL_DIV,
}

# Operators where ``a op (b op c)`` differs from ``(a op b) op c``
_NON_ASSOCIATIVE = {"-", "/", "%"}


def precedence_of(operator: str) -> int:
    return _PRECEDENCE.get(operator.upper(), COMPARISON)


def is_empty_set(expr: ExpressionNode) -> bool:
    """True for ``x IN ()`` style conditions whose value list is empty."""
    return (
        expr.operator is not None
        and expr.operator.upper() in ("IN", "NOT IN")
        and isinstance(expr.right, LiteralNode)
        and isinstance(expr.right.value, list)
        and len(expr.right.value) == 0
    )


def prune_empty_sets(expr: ExpressionNode) -> Optional[ExpressionNode]:
    """
    Remove ``x IN ()`` conditions from an expression.

    Inside an AND/OR chain the empty side is dropped and its sibling takes
    the place of the logical node. Returns None when nothing is left.
    """
    if is_empty_set(expr):
        return None
    operator = (expr.operator or "").upper()
    if operator not in ("AND", "OR") or expr.right is None:
        return expr

    left = prune_empty_sets(expr.left) if isinstance(expr.left, ExpressionNode) else expr.left
    right = prune_empty_sets(expr.right) if isinstance(expr.right, ExpressionNode) else expr.right
    if left is None or right is None:
        remaining = right if left is None else left
        if remaining is None or isinstance(remaining, ExpressionNode):
            return remaining
        return ExpressionNode(left=remaining)
    if left is expr.left and right is expr.right:
        return expr
    return expr.model_copy(update={"left": left, "right": right})


class RenderContext:
    """State shared by every nested render call of one build."""

    def __init__(self, params: ParameterManager, max_depth: int):
        self.params = params
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


class ExpressionRenderer:
    """Renders ExpressionNodes and operands using a shared RenderContext."""

    def __init__(self, context: RenderContext, render_query: Callable[[QueryNode], str]):
        self.context = context
        self._render_query = render_query

    @property
    def params(self) -> ParameterManager:
        return self.context.params

    def render(self, expr) -> str:
        with self.context.nested("expression"):
            if isinstance(expr, ExpressionNode):
                return self._render_expression(expr)
            return self._render_operand(expr)

    def _render_expression(self, expr: ExpressionNode) -> str:
        if expr.operator is None:
            if expr.right is not None:
                raise RenderError("Expression has a right operand but no operator", expr)
            return self._render_operand(expr.left)

        operator = expr.operator
        left = self._render_side(expr.left, operator, is_right=False)

        if expr.right is None:
            # Postfix form, e.g. ``deleted_at IS NULL`` stored as operator "IS NULL"
            return f"{left} {operator}"

        right = self._render_side(expr.right, operator, is_right=True)
        return f"{left} {operator} {right}"

    def _render_side(self, operand, parent_operator: str, is_right: bool) -> str:
        text = self.render(operand)
        if isinstance(operand, ExpressionNode) and operand.operator and operand.right is not None:
            child = precedence_of(operand.operator)
            parent = precedence_of(parent_operator)
            if child < parent or (
                is_right and child == parent and parent_operator in _NON_ASSOCIATIVE
            ):
                return f"({text})"
        return text

    def _render_operand(self, operand) -> str:
        if isinstance(operand, ColumnRef):
            return operand.name
        if isinstance(operand, RawSQL):
            return operand.sql
        if isinstance(operand, LiteralNode):
            return self._render_literal(operand)
        if isinstance(operand, FunctionNode):
            return self._render_function(operand)
        if isinstance(operand, QueryNode):
            return f"({self._render_query(operand)})"
        if isinstance(operand, ExpressionNode):
            return self._render_expression(operand)
        raise RenderError(f"Cannot render operand of type {type(operand).__name__}", operand)

    def _render_literal(self, literal: LiteralNode) -> str:
        if isinstance(literal.value, list):
            if not literal.value:
                raise RenderError("Cannot render an empty value list", literal)
            values = [self._render_scalar(v) for v in literal.value]
            return "(" + ", ".join(values) + ")"
        return self._render_scalar(literal.value)

    def _render_scalar(self, value) -> str:
        if value is None:
            return "NULL"
        return self.params.add_parameter(value)

    def _render_function(self, func: FunctionNode) -> str:
        args = ", ".join(self.render(arg) for arg in func.args)
        if func.distinct:
            args = f"DISTINCT {args}"
        return f"{func.name}({args})"


def render_inline(expr, max_depth: Optional[int] = None) -> str:
    """
    Render an expression with literals inlined (SIMPLE mode).

    Used for text fragments and expression keys where no parameter
    collection is wanted.
    """
    # Import here to avoid circular imports
    from .generator import QueryBuilder

    builder = QueryBuilder(QueryBuilderMode.SIMPLE, max_depth=max_depth)
    return builder.render_expression(expr)
