"""Query Intermediate Representation (IR): SQL parse tree -> IR -> parameterized SQL."""

from .ir_types import (
    ColumnRef,
    LiteralNode,
    RawSQL,
    FunctionNode,
    ExpressionNode,
    SelectNode,
    TableNode,
    SubQueryNode,
    JoinNode,
    FilterNode,
    OrderByNode,
    WithNode,
    UnionNode,
    QueryNode,
    Schema,
)
from .errors import (
    QueryIRError,
    MappingError,
    UnsupportedExpressionError,
    DepthExceededError,
    RenderError,
    QueryValidationError,
)
from .parameters import QueryBuilderMode, ParameterManager, format_value
from .expression_renderer import ExpressionRenderer, RenderContext, render_inline
from .mapper import ASTMapper, map_ast
from .validator import (
    ValidationError,
    ValidationRule,
    ValidationPipeline,
    LexicalAnalyzer,
    SyntaxAnalyzer,
    SchemaValidator,
    default_pipeline,
    validate_ir,
)
from .generator import QueryBuilder, QueryBuildResult, ir_to_sql
from .parser import parse_sql, parse_sql_to_ir
from .helpers import (
    select,
    table,
    from_,
    join,
    inner_join,
    left_join,
    right_join,
    full_join,
    cross_join,
    condition,
    conditions,
    where,
    group_by,
    order_by,
    is_condition_equal,
    update_condition,
    update_or_add_condition,
    get_primary_table_name,
    qualify_table_names,
)
from .equivalence import (
    compare_sql_ast,
    validate_round_trip,
    SQLComparisonResult,
    RoundTripResult,
)

__all__ = [
    "ColumnRef",
    "LiteralNode",
    "RawSQL",
    "FunctionNode",
    "ExpressionNode",
    "SelectNode",
    "TableNode",
    "SubQueryNode",
    "JoinNode",
    "FilterNode",
    "OrderByNode",
    "WithNode",
    "UnionNode",
    "QueryNode",
    "Schema",
    "QueryIRError",
    "MappingError",
    "UnsupportedExpressionError",
    "DepthExceededError",
    "RenderError",
    "QueryValidationError",
    "QueryBuilderMode",
    "ParameterManager",
    "format_value",
    "ExpressionRenderer",
    "RenderContext",
    "render_inline",
    "ASTMapper",
    "map_ast",
    "ValidationError",
    "ValidationRule",
    "ValidationPipeline",
    "LexicalAnalyzer",
    "SyntaxAnalyzer",
    "SchemaValidator",
    "default_pipeline",
    "validate_ir",
    "QueryBuilder",
    "QueryBuildResult",
    "ir_to_sql",
    "parse_sql",
    "parse_sql_to_ir",
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
    "is_condition_equal",
    "update_condition",
    "update_or_add_condition",
    "get_primary_table_name",
    "qualify_table_names",
    "compare_sql_ast",
    "validate_round_trip",
    "SQLComparisonResult",
    "RoundTripResult",
]
