"""Validation rules run against a QueryNode before it is rendered.

Each rule is a pure function of (query, schema) to a list of ValidationError
records; the pipeline concatenates every rule's output without stopping at
the first failure. Rules walk nested queries (CTEs, subqueries, union arms)
themselves through ``iter_queries``.
"""

from abc import ABC, abstractmethod
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel

from . import config
from .errors import QueryValidationError
from .ir_types import ColumnRef, QueryNode, Schema, SubQueryNode, TableNode
from .util import (
    clause_expressions,
    iter_column_refs,
    iter_filter_expressions,
    iter_operators,
    iter_queries,
    split_column,
)


class ValidationError(BaseModel):
    """One rule violation."""
    message: str
    location: Optional[str] = None
    suggestion: Optional[str] = None


class ValidationRule(ABC):
    """Base class for validation rules."""

    def __init__(self, max_depth: Optional[int] = None):
        self.max_depth = max_depth if max_depth is not None else config.MAX_DEPTH

    @abstractmethod
    def validate(self, query: QueryNode, schema: Optional[Schema] = None) -> List[ValidationError]:
        """Return every violation found in the query tree."""
        pass


RESERVED_KEYWORDS = frozenset({
    "ALL", "AND", "AS", "BY", "CASE", "CROSS", "DELETE", "DISTINCT", "DROP",
    "ELSE", "END", "FROM", "FULL", "GROUP", "HAVING", "IN", "INNER", "INSERT",
    "INTO", "IS", "JOIN", "LEFT", "LIKE", "LIMIT", "NOT", "NULL", "OFFSET",
    "ON", "OR", "ORDER", "OUTER", "QUALIFY", "RIGHT", "SELECT", "TABLE",
    "THEN", "UNION", "UPDATE", "WHEN", "WHERE", "WITH",
})

VALID_OPERATORS = frozenset({
    "=", "!=", "<>", ">", ">=", "<", "<=",
    "IN", "NOT IN", "LIKE", "NOT LIKE", "ILIKE", "NOT ILIKE",
    "IS", "IS NOT", "IS NULL", "IS NOT NULL",
    "AND", "OR",
    "+", "-", "*", "/", "%", "||",
})


class LexicalAnalyzer(ValidationRule):
    """Rejects reserved keywords used as column names and unknown operators."""

    def __init__(
        self,
        max_depth: Optional[int] = None,
        reserved_keywords: FrozenSet[str] = RESERVED_KEYWORDS,
        valid_operators: FrozenSet[str] = VALID_OPERATORS,
    ):
        super().__init__(max_depth)
        self.reserved_keywords = reserved_keywords
        self.valid_operators = valid_operators

    def validate(self, query: QueryNode, schema: Optional[Schema] = None) -> List[ValidationError]:
        errors: List[ValidationError] = []
        for node, _ in iter_queries(query, self.max_depth):
            errors.extend(self._check_keywords(node))
            errors.extend(self._check_operators(node))
        return errors

    def _is_reserved(self, name: str) -> bool:
        _, column = split_column(name)
        return name.upper() in self.reserved_keywords or column.upper() in self.reserved_keywords

    def _check_keywords(self, query: QueryNode) -> List[ValidationError]:
        names = [
            (location, ref.name)
            for location, expr in clause_expressions(query)
            for ref in iter_column_refs(expr)
        ]
        names.extend(("GROUP BY", column) for column in query.group_by or [])
        names.extend(("ORDER BY", order.column) for order in query.order_by)

        return [
            ValidationError(
                message=f"Column name '{name}' is a reserved SQL keyword.",
                location=location,
                suggestion="Rename the column to avoid conflicts.",
            )
            for location, name in names
            if self._is_reserved(name)
        ]

    def _check_operators(self, query: QueryNode) -> List[ValidationError]:
        errors = []
        allowed = ", ".join(sorted(self.valid_operators))
        for location, expr in clause_expressions(query):
            for operator in iter_operators(expr):
                if operator.upper() not in self.valid_operators:
                    errors.append(ValidationError(
                        message=f"Invalid operator in condition: '{operator}'.",
                        location=location,
                        suggestion=f"Use one of the valid operators: {allowed}.",
                    ))
        return errors


class SyntaxAnalyzer(ValidationRule):
    """Checks GROUP BY / HAVING / LIMIT combinations."""

    def validate(self, query: QueryNode, schema: Optional[Schema] = None) -> List[ValidationError]:
        errors: List[ValidationError] = []
        for node, _ in iter_queries(query, self.max_depth):
            errors.extend(self._check_group_by_selected(node))
            errors.extend(self._check_having_requires_group_by(node))
            errors.extend(self._check_limit_with_order_by(node))
        return errors

    def _select_keys(self, query: QueryNode) -> set:
        # Import here to avoid circular imports
        from .expression_renderer import render_inline

        keys = set()
        for select in query.selects:
            if select.alias:
                keys.add(select.alias)
            expr = select.expression
            if expr.is_leaf and isinstance(expr.left, ColumnRef):
                keys.add(expr.left.name)
                keys.add(split_column(expr.left.name)[1])
            else:
                keys.add(render_inline(expr, self.max_depth))
        return keys

    def _check_group_by_selected(self, query: QueryNode) -> List[ValidationError]:
        if not query.group_by:
            return []
        keys = self._select_keys(query)
        if "*" in keys:
            return []
        return [
            ValidationError(
                message=f"Column '{column}' in GROUP BY must be selected.",
                location="GROUP BY",
                suggestion="Add the column to the SELECT clause.",
            )
            for column in query.group_by
            if column not in keys and split_column(column)[1] not in keys
        ]

    def _check_having_requires_group_by(self, query: QueryNode) -> List[ValidationError]:
        if query.having is not None and not query.group_by:
            return [ValidationError(
                message="HAVING clause requires a GROUP BY clause.",
                location="HAVING",
                suggestion="Add a GROUP BY clause to your query.",
            )]
        return []

    def _check_limit_with_order_by(self, query: QueryNode) -> List[ValidationError]:
        if query.limit is not None and not query.order_by:
            return [ValidationError(
                message="LIMIT requires an ORDER BY clause for deterministic results.",
                location="LIMIT",
                suggestion="Add an ORDER BY clause to your query.",
            )]
        return []


class SchemaValidator(ValidationRule):
    """
    Checks tables and columns against a table -> columns schema.

    Only runs when a schema is supplied. Columns qualified by an alias that
    does not resolve to a schema table are skipped, as are queries reading
    from subqueries or CTEs (those are validated on their own).
    """

    def validate(self, query: QueryNode, schema: Optional[Schema] = None) -> List[ValidationError]:
        if not schema:
            return []
        errors: List[ValidationError] = []
        for node, ctes in iter_queries(query, self.max_depth):
            errors.extend(self._validate_query(node, schema, ctes))
        return errors

    def _validate_query(
        self,
        query: QueryNode,
        schema: Schema,
        ctes: FrozenSet[str],
    ) -> List[ValidationError]:
        primary = query.from_
        if isinstance(primary, SubQueryNode) or primary.name in ctes:
            return []
        if primary.name not in schema:
            return [ValidationError(
                message=f"Table '{primary.name}' does not exist in the schema.",
                location="FROM",
                suggestion="Ensure the table exists in the database.",
            )]

        # qualifier (table name or alias) -> table name
        scope: Dict[str, str] = {}
        complete = True
        for target in [primary] + [join.table for join in query.joins]:
            if isinstance(target, TableNode) and target.name in schema:
                scope[target.name] = target.name
                if target.alias:
                    scope[target.alias] = target.name
            else:
                complete = False

        errors = []
        expressions = [("SELECT", select.expression) for select in query.selects]
        expressions.extend(("WHERE", expr) for expr in iter_filter_expressions(query.where))
        for location, expr in expressions:
            for ref in iter_column_refs(expr):
                error = self._check_column(ref.name, primary, schema, scope, complete, location)
                if error:
                    errors.append(error)
        return errors

    def _check_column(
        self,
        name: str,
        primary: TableNode,
        schema: Schema,
        scope: Dict[str, str],
        complete: bool,
        location: str,
    ) -> Optional[ValidationError]:
        qualifier, column = split_column(name)
        if column == "*":
            return None

        if qualifier is not None:
            if qualifier not in scope or column in schema[scope[qualifier]]:
                return None
            table = scope[qualifier]
        else:
            if not complete or any(column in schema[t] for t in set(scope.values())):
                return None
            table = primary.name

        return ValidationError(
            message=f"Column '{name}' does not exist in table '{table}'.",
            location=location,
            suggestion="Check the column name or the table schema.",
        )


class ValidationPipeline:
    """Runs every rule in order and concatenates their errors."""

    def __init__(self, rules: List[ValidationRule]):
        self.rules = list(rules)

    def validate(self, query: QueryNode, schema: Optional[Schema] = None) -> List[ValidationError]:
        errors: List[ValidationError] = []
        for rule in self.rules:
            errors.extend(rule.validate(query, schema))
        return errors


def default_pipeline(max_depth: Optional[int] = None) -> ValidationPipeline:
    return ValidationPipeline([
        LexicalAnalyzer(max_depth),
        SyntaxAnalyzer(max_depth),
        SchemaValidator(max_depth),
    ])


def validate_ir(query: QueryNode, schema: Optional[Schema] = None) -> None:
    """
    Validate IR constraints with the default pipeline.

    Raises QueryValidationError if any rule fails.
    """
    errors = default_pipeline().validate(query, schema)
    if errors:
        raise QueryValidationError(errors)
