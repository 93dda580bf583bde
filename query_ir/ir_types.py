"""Pydantic models for the query Intermediate Representation (IR).

Every node is frozen and tagged with a literal ``type`` field, so unions of
node kinds are resolved by discriminator rather than by probing attributes.
Transformations build new nodes (``model_copy(update=...)``) instead of
mutating existing ones.
"""

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from typing import Annotated, Any, Dict, List, Optional, Literal, Union

# bool must come before int to prevent coercion
ScalarValue = Union[bool, int, float, str, None]

JoinType = Literal['INNER', 'LEFT', 'RIGHT', 'FULL', 'CROSS', 'JOIN']
FilterOperator = Literal['AND', 'OR']
SortDirection = Literal['ASC', 'DESC']
UnionType = Literal['UNION', 'UNION ALL']

# Table name -> ordered column names
Schema = Dict[str, List[str]]

Alias = Optional[Annotated[str, Field(min_length=1)]]


class ColumnRef(BaseModel):
    """A column (or other identifier) reference, emitted verbatim."""
    model_config = ConfigDict(frozen=True)

    type: Literal['column'] = 'column'
    name: str = Field(min_length=1)


class LiteralNode(BaseModel):
    """A literal value; lists are used for IN (...) sets."""
    model_config = ConfigDict(frozen=True)

    type: Literal['literal'] = 'literal'
    value: Union[ScalarValue, List[ScalarValue]] = None


class RawSQL(BaseModel):
    """A verbatim SQL fragment (CASE arms, INTERVAL literals)."""
    model_config = ConfigDict(frozen=True)

    type: Literal['raw'] = 'raw'
    sql: str = Field(min_length=1)


class FunctionNode(BaseModel):
    """A function or aggregate call such as COUNT(DISTINCT id)."""
    model_config = ConfigDict(frozen=True)

    type: Literal['function'] = 'function'
    name: str = Field(min_length=1)
    args: List['Operand'] = Field(default_factory=list)
    distinct: bool = False


class ExpressionNode(BaseModel):
    """A leaf operand, or a binary ``left operator right`` expression."""
    model_config = ConfigDict(frozen=True)

    type: Literal['expression'] = 'expression'
    left: 'Operand'
    operator: Optional[str] = None
    right: Optional['Operand'] = None

    @property
    def is_leaf(self) -> bool:
        return self.operator is None and self.right is None


def _as_expression(value: Any) -> Any:
    """Wrap a bare operand (or identifier string) into an ExpressionNode."""
    if isinstance(value, str):
        return ExpressionNode(left=ColumnRef(name=value))
    if isinstance(value, (ColumnRef, LiteralNode, RawSQL, FunctionNode, QueryNode)):
        return ExpressionNode(left=value)
    return value


class SelectNode(BaseModel):
    """Represents one output column of the SELECT clause."""
    model_config = ConfigDict(frozen=True)

    type: Literal['select'] = 'select'
    expression: ExpressionNode
    alias: Alias = None

    @field_validator('expression', mode='before')
    @classmethod
    def _wrap_expression(cls, value):
        return _as_expression(value)


class TableNode(BaseModel):
    """Represents a table reference in FROM or JOIN clauses."""
    model_config = ConfigDict(frozen=True)

    type: Literal['table'] = 'table'
    name: str = Field(min_length=1)
    alias: Alias = None


class SubQueryNode(BaseModel):
    """Represents a parenthesized query used as a FROM or JOIN target."""
    model_config = ConfigDict(frozen=True)

    type: Literal['subquery'] = 'subquery'
    query: 'QueryNode'
    alias: Alias = None


FromTarget = Annotated[Union[TableNode, SubQueryNode], Field(discriminator='type')]


class JoinNode(BaseModel):
    """Represents a JOIN clause."""
    model_config = ConfigDict(frozen=True)

    type: Literal['join'] = 'join'
    join_type: JoinType = 'JOIN'
    table: FromTarget
    on: Optional[ExpressionNode] = None

    @field_validator('on', mode='before')
    @classmethod
    def _wrap_on(cls, value):
        return _as_expression(value)

    @model_validator(mode='after')
    def _require_on(self):
        if self.on is None and self.join_type != 'CROSS':
            raise ValueError(f'{self.join_type} join requires an ON expression')
        return self


class FilterNode(BaseModel):
    """A group of conditions joined by AND/OR.

    A condition that is itself a FilterNode is an explicitly grouped
    sub-expression; this is how parenthesization survives a round trip.
    """
    model_config = ConfigDict(frozen=True)

    type: Literal['filter'] = 'filter'
    operator: FilterOperator = 'AND'
    conditions: List[
        Annotated[Union[ExpressionNode, 'FilterNode'], Field(discriminator='type')]
    ] = Field(min_length=1)


class OrderByNode(BaseModel):
    """Represents one ORDER BY item."""
    model_config = ConfigDict(frozen=True)

    type: Literal['orderby'] = 'orderby'
    column: str = Field(min_length=1)
    direction: SortDirection = 'ASC'


class WithNode(BaseModel):
    """A named common table expression."""
    model_config = ConfigDict(frozen=True)

    type: Literal['with'] = 'with'
    name: str = Field(min_length=1)
    query: 'QueryNode'


class UnionNode(BaseModel):
    """A UNION / UNION ALL arm appended to a query."""
    model_config = ConfigDict(frozen=True)

    type: Literal['union'] = 'union'
    union_type: UnionType = 'UNION'
    query: 'QueryNode'


class QueryNode(BaseModel):
    """Root of the query IR."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal['query'] = 'query'
    selects: List[SelectNode] = Field(min_length=1)
    from_: FromTarget = Field(..., alias='from')
    joins: List[JoinNode] = Field(default_factory=list)
    where: Optional[FilterNode] = None
    group_by: Optional[List[str]] = None
    having: Optional[FilterNode] = None
    qualify: Optional[FilterNode] = None
    order_by: List[OrderByNode] = Field(default_factory=list)
    limit: Optional[int] = Field(default=None, ge=0)
    offset: Optional[int] = Field(default=None, ge=0)
    with_: List[WithNode] = Field(default_factory=list, alias='with')
    unions: List[UnionNode] = Field(default_factory=list)

    @field_validator('selects', mode='before')
    @classmethod
    def _coerce_selects(cls, value):
        if isinstance(value, (list, tuple)):
            return [
                SelectNode(expression=item)
                if isinstance(item, (str, ColumnRef, LiteralNode, RawSQL, FunctionNode, ExpressionNode, QueryNode))
                else item
                for item in value
            ]
        return value

    @field_validator('from_', mode='before')
    @classmethod
    def _coerce_from(cls, value):
        if isinstance(value, str):
            return TableNode(name=value)
        return value

    @field_validator('group_by', mode='before')
    @classmethod
    def _coerce_group_by(cls, value):
        if isinstance(value, str):
            return [value]
        return value


Operand = Annotated[
    Union[ColumnRef, LiteralNode, RawSQL, FunctionNode, ExpressionNode, QueryNode],
    Field(discriminator='type'),
]

for _model in (
    FunctionNode,
    ExpressionNode,
    SelectNode,
    SubQueryNode,
    JoinNode,
    FilterNode,
    WithNode,
    UnionNode,
    QueryNode,
):
    _model.model_rebuild()
