"""SQL text to raw parse tree adapter using sqlglot.

sqlglot's expression tree is converted into the node-sql-parser style dict
consumed by ASTMapper, so SQL text and externally produced parse trees go
through the same mapping code.
"""

import logging
from typing import Any, Dict, List, Optional

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError, TokenError

from . import config
from .errors import MappingError
from .ir_types import QueryNode
from .mapper import ASTMapper

logger = logging.getLogger(__name__)

RawNode = Dict[str, Any]

_BINARY_OPERATORS = {
    exp.EQ: "=",
    exp.NEQ: "!=",
    exp.GT: ">",
    exp.GTE: ">=",
    exp.LT: "<",
    exp.LTE: "<=",
    exp.Add: "+",
    exp.Sub: "-",
    exp.Mul: "*",
    exp.Div: "/",
    exp.Mod: "%",
    exp.DPipe: "||",
    exp.And: "AND",
    exp.Or: "OR",
    exp.Like: "LIKE",
    exp.ILike: "ILIKE",
    exp.Is: "IS",
}

# NOT wrapped around these becomes a single negated operator
_NEGATED_OPERATORS = {
    exp.In: "NOT IN",
    exp.Like: "NOT LIKE",
    exp.ILike: "NOT ILIKE",
    exp.Is: "IS NOT",
}


def parse_sql(sql: str, dialect: Optional[str] = None) -> RawNode:
    """
    Parse SQL text into a raw select tree.

    Args:
        sql: SQL query string
        dialect: sqlglot dialect name (defaults to config.DIALECT)

    Returns:
        Raw select dict as consumed by ASTMapper.map

    Raises:
        MappingError: If the SQL cannot be parsed or is not a SELECT
    """
    dialect = dialect or config.DIALECT
    try:
        ast = sqlglot.parse_one(sql, read=dialect)
    except (ParseError, TokenError) as e:
        raise MappingError(f"Failed to parse SQL: {str(e)}")

    if not (isinstance(ast, exp.Select) or type(ast) is exp.Union):
        raise MappingError(f"Invalid AST: Root node must be a SELECT query, got {type(ast).__name__}.")

    logger.debug(f"[Parser] Parsed {type(ast).__name__} statement with dialect '{dialect}'")
    return _convert_query(ast, dialect)


def parse_sql_to_ir(
    sql: str,
    dialect: Optional[str] = None,
    max_depth: Optional[int] = None,
) -> QueryNode:
    """Parse SQL text straight into a QueryNode."""
    return ASTMapper(max_depth).map(parse_sql(sql, dialect))


def _arg(node: exp.Expression, name: str):
    """Read an arg that newer sqlglot releases store with a trailing underscore."""
    value = node.args.get(name)
    if value is None:
        value = node.args.get(f"{name}_")
    return value


def _convert_query(node: exp.Expression, dialect: str) -> RawNode:
    """Convert a Select or a chain of UNION arms."""
    if isinstance(node, (exp.Subquery, exp.Paren)):
        return _convert_query(node.this, dialect)
    if isinstance(node, exp.Select):
        return _convert_select(node, dialect)
    if type(node) is exp.Union:
        return _convert_union(node, dialect)
    raise MappingError(f"Unsupported query type: {type(node).__name__}")


def _convert_union(node: exp.Union, dialect: str) -> RawNode:
    arms = []
    _collect_union_arms(node, arms)

    root = _convert_query(arms[0], dialect)
    if root.get("_next"):
        raise MappingError("A parenthesized set operation cannot start a UNION chain.")
    current = root
    for set_op, arm in arms[1:]:
        current["set_op"] = set_op
        current["_next"] = _convert_query(arm, dialect)
        current = current["_next"]
        while current.get("_next"):
            current = current["_next"]

    # Statement-level clauses belong to the first arm, which owns the unions
    _convert_tail(node, root, dialect)
    with_clause = _arg(node, "with")
    if with_clause:
        root["with"] = _convert_with(with_clause, dialect)
    return root


def _collect_union_arms(node: exp.Union, arms: List) -> None:
    """Flatten a left-deep UNION chain; arms[0] is the first query, the rest are (set_op, query)."""
    left = node.this
    if type(left) is exp.Union and not _has_tail(left) and not _arg(left, "with"):
        _collect_union_arms(left, arms)
    else:
        arms.append(left)
    arms.append(("union" if node.args.get("distinct") else "union all", node.expression))


def _has_tail(node: exp.Expression) -> bool:
    return any(node.args.get(key) for key in ("order", "limit", "offset"))


def _convert_tail(node: exp.Expression, raw: RawNode, dialect: str) -> None:
    """ORDER BY / LIMIT / OFFSET of a statement."""
    order = node.args.get("order")
    if order:
        raw["orderby"] = [
            {"expr": _convert_expression(o.this, dialect), "type": "DESC" if o.args.get("desc") else "ASC"}
            for o in order.expressions
        ]

    limit = _limit_value(node.args.get("limit"))
    offset = _limit_value(node.args.get("offset"))
    if limit is not None or offset is not None:
        values = [{"type": "number", "value": limit} if limit is not None else None]
        if offset is not None:
            values.append({"type": "number", "value": offset})
        raw["limit"] = {"seperator": "offset" if offset is not None else "", "value": values}


def _limit_value(node: Optional[exp.Expression]) -> Optional[int]:
    if node is None:
        return None
    value = node.args.get("expression") or node.this
    if not isinstance(value, exp.Literal) or value.is_string:
        raise MappingError(f"LIMIT / OFFSET must be integer literals, got '{node.sql()}'")
    try:
        return int(value.this)
    except ValueError:
        raise MappingError(f"LIMIT / OFFSET must be integer literals, got '{value.this}'")


def _convert_select(node: exp.Select, dialect: str) -> RawNode:
    raw: RawNode = {"type": "select", "distinct": None}
    if node.args.get("distinct"):
        raw["distinct"] = "DISTINCT"

    with_clause = _arg(node, "with")
    if with_clause:
        raw["with"] = _convert_with(with_clause, dialect)

    raw["columns"] = [_convert_column(e, dialect) for e in node.expressions]

    from_clause = _arg(node, "from")
    sources = []
    if from_clause is not None:
        sources.append(_convert_source(from_clause.this, dialect))
    for join in node.args.get("joins") or []:
        sources.append(_convert_join(join, dialect))
    raw["from"] = sources or None

    for key in ("where", "having", "qualify"):
        clause = node.args.get(key)
        raw[key] = _convert_expression(clause.this, dialect) if clause else None

    group = node.args.get("group")
    if group:
        raw["groupby"] = {"columns": [_convert_expression(e, dialect) for e in group.expressions]}

    _convert_tail(node, raw, dialect)
    return raw


def _convert_with(with_clause: exp.With, dialect: str) -> List[RawNode]:
    return [
        {"name": {"value": cte.alias}, "stmt": {"ast": _convert_query(cte.this, dialect)}}
        for cte in with_clause.expressions
    ]


def _convert_column(node: exp.Expression, dialect: str) -> RawNode:
    if isinstance(node, exp.Alias):
        return {"expr": _convert_expression(node.this, dialect), "as": node.alias}
    return {"expr": _convert_expression(node, dialect), "as": None}


def _convert_source(node: exp.Expression, dialect: str) -> RawNode:
    alias = node.alias or None
    if isinstance(node, exp.Table) and isinstance(node.this, exp.Identifier):
        parts = [part.name for part in node.parts]
        return {"db": ".".join(parts[:-1]) or None, "table": parts[-1], "as": alias}
    if isinstance(node, exp.Subquery):
        return {"expr": {"ast": _convert_query(node.this, dialect)}, "as": alias}
    raise MappingError(f"Unsupported FROM source: '{node.sql(dialect=dialect)}'")


def _convert_join(join: exp.Join, dialect: str) -> RawNode:
    raw = _convert_source(join.this, dialect)

    side = (join.side or "").upper()
    kind = (join.kind or "").upper()
    method = (join.method or "").upper()
    if method:
        raise MappingError(f"{method} JOIN is not supported.")
    if kind not in ("", "INNER", "OUTER", "CROSS"):
        raise MappingError(f"{' '.join(filter(None, (side, kind)))} JOIN is not supported.")

    on = join.args.get("on")
    using = join.args.get("using")

    if kind == "CROSS" or (not side and not kind and on is None and not using):
        spelling = "CROSS JOIN"
    elif side:
        spelling = f"{side} JOIN"
    elif kind in ("INNER", "OUTER"):
        spelling = "INNER JOIN" if kind == "INNER" else "FULL JOIN"
    else:
        spelling = "JOIN"

    raw["join"] = spelling
    raw["on"] = _convert_expression(on, dialect) if on is not None else None
    if using:
        raw["using"] = [u.name for u in using]
    return raw


def _convert_expression(node: exp.Expression, dialect: str) -> RawNode:
    """Convert one sqlglot expression into a raw expression dict."""
    if isinstance(node, exp.Paren):
        inner = _convert_expression(node.this, dialect)
        inner["parentheses"] = True
        return inner

    if isinstance(node, exp.Subquery):
        return {"ast": _convert_query(node.this, dialect)}

    if isinstance(node, exp.Column):
        parts = [part.name for part in node.parts]
        column = "*" if isinstance(node.this, exp.Star) else parts[-1]
        return {"type": "column_ref", "table": ".".join(parts[:-1]) or None, "column": column}

    if isinstance(node, exp.Star):
        if any(node.args.get(key) for key in ("except", "replace", "rename")):
            return _origin(node, dialect)
        return {"type": "star", "value": "*"}

    if isinstance(node, exp.Literal):
        if node.is_string:
            return {"type": "single_quote_string", "value": node.this}
        return {"type": "number", "value": _number(node.this)}

    if isinstance(node, exp.Boolean):
        return {"type": "bool", "value": node.this}

    if isinstance(node, exp.Null):
        return {"type": "null", "value": None}

    if isinstance(node, exp.Neg) and isinstance(node.this, exp.Literal) and not node.this.is_string:
        return {"type": "number", "value": -_number(node.this.this)}

    if isinstance(node, exp.Not) and type(node.this) in _NEGATED_OPERATORS:
        return _convert_predicate(node.this, _NEGATED_OPERATORS[type(node.this)], dialect)

    if isinstance(node, exp.In):
        return _convert_predicate(node, "IN", dialect)

    operator = _BINARY_OPERATORS.get(type(node))
    if operator:
        return _convert_predicate(node, operator, dialect)

    if isinstance(node, exp.Case):
        return _convert_case(node, dialect)

    if isinstance(node, exp.Interval):
        unit = node.args.get("unit")
        return {
            "type": "interval",
            "expr": _convert_expression(node.this, dialect),
            "unit": unit.name if unit is not None else "",
        }

    if isinstance(node, exp.Var):
        return {"type": "origin", "value": node.name}

    if isinstance(node, exp.Anonymous):
        return {
            "type": "function",
            "name": {"name": [{"value": node.name}]},
            "args": {"type": "expr_list", "value": [_convert_expression(a, dialect) for a in node.expressions]},
        }

    if isinstance(node, exp.AggFunc) and _is_simple_aggregate(node):
        return _convert_aggregate(node, dialect)

    if isinstance(node, (exp.Func, exp.Window)):
        # Typed functions keep their dialect-specific spelling verbatim
        return _origin(node, dialect)

    return {"type": type(node).__name__, "sql": node.sql(dialect=dialect)}


def _convert_predicate(node: exp.Expression, operator: str, dialect: str) -> RawNode:
    if isinstance(node, exp.In):
        query = node.args.get("query")
        if query is not None:
            values = [{"ast": _convert_query(query, dialect)}]
        else:
            values = [_convert_expression(e, dialect) for e in node.expressions]
        right = {"type": "expr_list", "value": values}
        left = node.this
    else:
        left = node.left
        right = _convert_expression(node.right, dialect)

    return {
        "type": "binary_expr",
        "operator": operator,
        "left": _convert_expression(left, dialect),
        "right": right,
    }


def _convert_case(node: exp.Case, dialect: str) -> RawNode:
    arms = [
        {
            "type": "when",
            "cond": _convert_expression(branch.this, dialect),
            "result": _convert_expression(branch.args["true"], dialect),
        }
        for branch in node.args.get("ifs") or []
    ]
    default = node.args.get("default")
    if default is not None:
        arms.append({"type": "else", "result": _convert_expression(default, dialect)})

    raw: RawNode = {"type": "case", "expr": None, "args": arms}
    if node.this is not None:
        raw["expr"] = _convert_expression(node.this, dialect)
    return raw


def _is_simple_aggregate(node: exp.AggFunc) -> bool:
    """COUNT/SUM/... over a single argument, with no extra modifiers."""
    extra = [key for key, value in node.args.items() if key != "this" and value]
    if extra or node.this is None:
        return False
    if isinstance(node.this, exp.Distinct):
        return len(node.this.expressions) == 1
    return True


def _convert_aggregate(node: exp.AggFunc, dialect: str) -> RawNode:
    arg = node.this
    distinct = None
    if isinstance(arg, exp.Distinct):
        distinct = "DISTINCT"
        arg = arg.expressions[0]
    return {
        "type": "aggr_func",
        "name": node.sql_name(),
        "args": {"expr": _convert_expression(arg, dialect), "distinct": distinct},
    }


def _origin(node: exp.Expression, dialect: str) -> RawNode:
    return {"type": "origin", "value": node.sql(dialect=dialect)}


def _number(text: str):
    try:
        return int(text)
    except ValueError:
        return float(text)
