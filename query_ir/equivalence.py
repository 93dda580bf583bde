"""Round-trip checks: SQL -> IR -> SQL must describe the same query.

Two statements are compared after sqlglot normalization, so formatting and
redundant parentheses do not count as differences.
"""

import logging
from typing import List, Optional

import sqlglot
from pydantic import BaseModel
from sqlglot import exp
from sqlglot.errors import ParseError, TokenError
from sqlglot.optimizer import optimize

from . import config
from .errors import QueryIRError
from .generator import ir_to_sql
from .parser import _arg, parse_sql_to_ir

logger = logging.getLogger(__name__)

# Clauses a QueryNode carries besides its selects, FROM and joins
_CLAUSES = (
    ("where", "WHERE"),
    ("group", "GROUP BY"),
    ("having", "HAVING"),
    ("qualify", "QUALIFY"),
    ("order", "ORDER BY"),
    ("limit", "LIMIT"),
    ("offset", "OFFSET"),
)

# Statement-level clauses sqlglot attaches to the UNION node itself
_UNION_CLAUSES = _CLAUSES[4:]


class SQLComparisonResult(BaseModel):
    """Result of SQL comparison."""
    equivalent: bool
    differences: List[str] = []
    original_normalized: Optional[str] = None
    regenerated_normalized: Optional[str] = None


class RoundTripResult(BaseModel):
    """Result of a SQL -> IR -> SQL round trip."""
    lossless: bool
    regenerated_sql: Optional[str] = None
    errors: List[str] = []
    differences: List[str] = []


def compare_sql_ast(sql1: str, sql2: str, dialect: Optional[str] = None) -> SQLComparisonResult:
    """
    Compare two SQL statements for semantic equivalence using AST comparison.

    Args:
        sql1: First SQL statement (typically the original)
        sql2: Second SQL statement (typically the regenerated)
        dialect: sqlglot dialect (defaults to config.DIALECT)

    Returns:
        SQLComparisonResult with equivalent=True if semantically equivalent
    """
    dialect = dialect or config.DIALECT

    try:
        ast1 = _normalize(sqlglot.parse_one(sql1, read=dialect), dialect)
        ast2 = _normalize(sqlglot.parse_one(sql2, read=dialect), dialect)
    except (ParseError, TokenError) as e:
        return SQLComparisonResult(equivalent=False, differences=[f"Parse error: {str(e)}"])

    norm1 = ast1.sql(dialect=dialect, normalize=True)
    norm2 = ast2.sql(dialect=dialect, normalize=True)
    if ast1 == ast2 or norm1.lower() == norm2.lower():
        return SQLComparisonResult(equivalent=True, original_normalized=norm1, regenerated_normalized=norm2)

    differences = _find_ast_differences(ast1, ast2)
    return SQLComparisonResult(
        equivalent=False,
        differences=differences or ["SQL statements differ"],
        original_normalized=norm1,
        regenerated_normalized=norm2,
    )


def _normalize(ast: exp.Expression, dialect: str) -> exp.Expression:
    """Canonical form: constants folded, redundant parentheses removed."""
    try:
        return optimize(ast, dialect=dialect)
    except Exception as e:
        # Unqualified columns over several tables cannot be resolved without a schema
        logger.debug(f"[Equivalence] Optimizer failed, comparing raw AST: {e}")
        return ast


def _sql(node: Optional[exp.Expression]) -> Optional[str]:
    return node.sql() if node is not None else None


def _target_text(source: Optional[exp.Expression]) -> Optional[str]:
    if isinstance(source, exp.Subquery):
        # The body is compared as a query of its own
        return f"(subquery) {source.alias}"
    return _sql(source)


def _cte_names(query: exp.Select) -> List[str]:
    with_clause = _arg(query, "with")
    return [cte.alias for cte in with_clause.expressions] if with_clause is not None else []


def _clause_differences(node1: exp.Expression, node2: exp.Expression, clauses) -> List[str]:
    differences = []
    for key, label in clauses:
        clause1 = node1.args.get(key)
        clause2 = node2.args.get(key)
        if (clause1 is None) != (clause2 is None):
            differences.append(f"{label} clause presence differs")
        elif _sql(clause1) != _sql(clause2):
            differences.append(f"{label} clause differs")
    return differences


def _find_ast_differences(ast1: exp.Expression, ast2: exp.Expression) -> List[str]:
    """
    Name the IR-level clauses that differ between two statements.

    Both statements are split into their SELECTs (CTE bodies, subqueries and
    union arms) and compared query by query in breadth-first order.
    Differences in the outermost query carry no prefix; the others are
    prefixed with ``Query <n>:``.
    """
    differences = []

    unions1 = list(ast1.find_all(exp.Union))
    unions2 = list(ast2.find_all(exp.Union))
    if len(unions1) != len(unions2):
        differences.append(f"UNION count differs: {len(unions1)} vs {len(unions2)}")
    for index, (union1, union2) in enumerate(zip(unions1, unions2), start=1):
        if bool(union1.args.get("distinct")) != bool(union2.args.get("distinct")):
            differences.append(f"UNION {index} type differs")
        differences.extend(
            f"UNION {index}: {d}" for d in _clause_differences(union1, union2, _UNION_CLAUSES)
        )

    queries1 = list(ast1.find_all(exp.Select))
    queries2 = list(ast2.find_all(exp.Select))
    if len(queries1) != len(queries2):
        differences.append(f"Query count differs: {len(queries1)} vs {len(queries2)}")
    for index, (query1, query2) in enumerate(zip(queries1, queries2), start=1):
        prefix = "" if index == 1 else f"Query {index}: "
        differences.extend(prefix + d for d in _query_differences(query1, query2))

    return differences


def _query_differences(query1: exp.Select, query2: exp.Select) -> List[str]:
    differences = []

    if _cte_names(query1) != _cte_names(query2):
        differences.append("WITH clause differs")

    if len(query1.expressions) != len(query2.expressions):
        differences.append(
            f"SELECT column count differs: {len(query1.expressions)} vs {len(query2.expressions)}"
        )
    elif [_sql(e) for e in query1.expressions] != [_sql(e) for e in query2.expressions]:
        differences.append("SELECT columns differ")

    from1 = _arg(query1, "from")
    from2 = _arg(query2, "from")
    source1 = from1.this if from1 is not None else None
    source2 = from2.this if from2 is not None else None
    if _target_text(source1) != _target_text(source2):
        differences.append("FROM clause differs")

    joins1 = query1.args.get("joins") or []
    joins2 = query2.args.get("joins") or []
    if len(joins1) != len(joins2):
        differences.append(f"JOIN count differs: {len(joins1)} vs {len(joins2)}")
    for index, (join1, join2) in enumerate(zip(joins1, joins2), start=1):
        if (join1.side, join1.kind) != (join2.side, join2.kind):
            differences.append(f"JOIN {index} type differs")
        if _target_text(join1.this) != _target_text(join2.this):
            differences.append(f"JOIN {index} target differs")
        if _sql(join1.args.get("on")) != _sql(join2.args.get("on")):
            differences.append(f"JOIN {index} condition differs")

    differences.extend(_clause_differences(query1, query2, _CLAUSES))
    return differences


def validate_round_trip(sql: str, dialect: Optional[str] = None) -> RoundTripResult:
    """
    Parse SQL to IR, render it back in SIMPLE mode and compare the two.

    Mapping and validation failures are reported in ``errors`` rather than
    raised.
    """
    dialect = dialect or config.DIALECT

    try:
        ir = parse_sql_to_ir(sql, dialect)
        regenerated = ir_to_sql(ir)
    except QueryIRError as e:
        logger.info(f"[Equivalence] Round trip failed before comparison: {e}")
        return RoundTripResult(lossless=False, errors=[str(e)])

    comparison = compare_sql_ast(sql, regenerated, dialect)
    if comparison.equivalent:
        return RoundTripResult(lossless=True, regenerated_sql=regenerated)

    return RoundTripResult(
        lossless=False,
        regenerated_sql=regenerated,
        errors=["Round-trip validation failed: regenerated SQL differs from original"],
        differences=comparison.differences,
    )
