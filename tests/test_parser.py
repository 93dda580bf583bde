"""Tests for parsing SQL text through sqlglot into the IR and back."""

import pytest

from query_ir import (
    FilterNode,
    MappingError,
    QueryBuilder,
    QueryBuilderMode,
    QueryNode,
    RawSQL,
    SubQueryNode,
    UnsupportedExpressionError,
    ir_to_sql,
    parse_sql,
    parse_sql_to_ir,
)


def round_trip(sql):
    return ir_to_sql(parse_sql_to_ir(sql))


class TestParseSQL:
    """Test SQL text to IR conversion."""

    def test_basic_query(self):
        """Test SELECT with WHERE"""
        ir = parse_sql_to_ir("SELECT name, email FROM users WHERE age > 18")
        assert isinstance(ir, QueryNode)
        assert ir.from_.name == "users"
        assert len(ir.selects) == 2
        assert ir.where.conditions[0].operator == ">"

    def test_join_with_aliases(self):
        """Test LEFT JOIN with table aliases"""
        sql = "SELECT u.name, o.amount FROM users AS u LEFT JOIN orders AS o ON u.id = o.user_id"
        ir = parse_sql_to_ir(sql)
        assert ir.from_.alias == "u"
        assert ir.joins[0].join_type == "LEFT"
        assert ir.joins[0].table.alias == "o"
        assert ir_to_sql(ir) == sql

    def test_comma_join(self):
        """Test comma joins become CROSS JOIN"""
        ir = parse_sql_to_ir("SELECT a.id FROM a, b")
        assert ir.joins[0].join_type == "CROSS"
        assert ir.joins[0].on is None

    def test_explicit_grouping(self):
        """Test parenthesized AND groups inside an OR survive the round trip"""
        sql = "SELECT * FROM t WHERE (a > 18 AND b = 'x') OR (c < 18 AND d = 'y') OR (e = 18 AND f = 'z')"
        ir = parse_sql_to_ir(sql)
        assert ir.where.operator == "OR"
        assert len(ir.where.conditions) == 3
        assert all(isinstance(c, FilterNode) and c.operator == "AND" for c in ir.where.conditions)
        assert ir_to_sql(ir) == sql

    def test_parenthesized_or_regrouped(self):
        """Test a parenthesized OR next to an unparenthesized AND"""
        sql = "SELECT * FROM t WHERE a > 18 AND b = 'x' OR (c < 18 AND d = 'y' OR (e = 18 AND f = 'z'))"
        assert round_trip(sql) == (
            "SELECT * FROM t WHERE (a > 18 AND b = 'x') OR (c < 18 AND d = 'y') OR (e = 18 AND f = 'z')"
        )

    def test_same_operator_flattened(self):
        """Test a chain of ANDs becomes one flat filter"""
        ir = parse_sql_to_ir("SELECT id FROM t WHERE a = 1 AND b = 2 AND c = 3")
        assert ir.where.operator == "AND"
        assert len(ir.where.conditions) == 3

    def test_mixed_precedence(self):
        """Test AND binding tighter than OR without parentheses"""
        sql = "SELECT id FROM t WHERE a = 1 OR b = 2 AND c = 3"
        assert round_trip(sql) == "SELECT id FROM t WHERE a = 1 OR (b = 2 AND c = 3)"

    def test_render_is_stable(self):
        """Test rendering a reparsed query gives the same text"""
        sql = "SELECT id FROM t WHERE (a = 1 OR b = 2) AND c = 3"
        first = round_trip(sql)
        assert round_trip(first) == first

    def test_negated_predicates(self):
        """Test NOT IN and IS NOT NULL"""
        sql = "SELECT id FROM users WHERE status NOT IN ('a', 'b') AND deleted_at IS NOT NULL"
        ir = parse_sql_to_ir(sql)
        assert [c.operator for c in ir.where.conditions] == ["NOT IN", "IS NOT"]
        assert ir_to_sql(ir) == sql

    def test_aggregation_clauses(self):
        """Test GROUP BY, HAVING, ORDER BY and LIMIT"""
        sql = (
            "SELECT country, COUNT(*) AS total FROM users GROUP BY country "
            "HAVING COUNT(*) > 5 ORDER BY total DESC LIMIT 10"
        )
        ir = parse_sql_to_ir(sql)
        assert ir.group_by == ["country"]
        assert ir.order_by[0].direction == "DESC"
        assert ir.limit == 10
        assert ir_to_sql(ir) == sql

    def test_count_distinct(self):
        """Test COUNT(DISTINCT col)"""
        ir = parse_sql_to_ir("SELECT COUNT(DISTINCT email) FROM users")
        func = ir.selects[0].expression.left
        assert func.name == "COUNT"
        assert func.distinct is True

    def test_limit_offset(self):
        """Test LIMIT with OFFSET"""
        ir = parse_sql_to_ir("SELECT id FROM users ORDER BY id ASC LIMIT 10 OFFSET 5")
        assert (ir.limit, ir.offset) == (10, 5)

    def test_typed_function_kept_verbatim(self):
        """Test dialect functions are carried as raw SQL"""
        ir = parse_sql_to_ir("SELECT DATE_TRUNC(created_at, MONTH) AS created_month FROM orders")
        assert isinstance(ir.selects[0].expression.left, RawSQL)
        assert ir.selects[0].alias == "created_month"

    def test_case(self):
        """Test CASE expressions"""
        ir = parse_sql_to_ir("SELECT CASE WHEN age > 18 THEN 'adult' ELSE 'minor' END AS bucket FROM users")
        assert ir.selects[0].expression.left == RawSQL(sql="CASE WHEN age > 18 THEN 'adult' ELSE 'minor' END")


class TestNestedQueries:
    """Test CTEs, subqueries and unions from SQL text."""

    def test_cte_with_in_subquery(self):
        """Test parameters are numbered across the CTE and the main query"""
        ir = parse_sql_to_ir(
            "WITH recent AS (SELECT user_id FROM orders WHERE amount > 100) "
            "SELECT name FROM users WHERE age > 18 AND id IN (SELECT user_id FROM recent)"
        )
        assert ir.with_[0].name == "recent"
        assert isinstance(ir.where.conditions[1].right, QueryNode)

        result = QueryBuilder(QueryBuilderMode.NAMED).build(ir)
        assert result.query == (
            "WITH recent AS (SELECT user_id FROM orders WHERE amount > @param1) "
            "SELECT name FROM users WHERE age > @param2 AND id IN (SELECT user_id FROM recent)"
        )
        assert result.parameters == {"param1": 100, "param2": 18}

    def test_from_subquery(self):
        """Test a FROM subquery with an alias"""
        sql = "SELECT s.total FROM (SELECT SUM(amount) AS total FROM orders) AS s"
        ir = parse_sql_to_ir(sql)
        assert isinstance(ir.from_, SubQueryNode)
        assert ir.from_.alias == "s"
        assert ir_to_sql(ir) == sql

    def test_union_all(self):
        """Test UNION ALL arms"""
        sql = "SELECT id FROM a UNION ALL SELECT id FROM b UNION ALL SELECT id FROM c"
        ir = parse_sql_to_ir(sql)
        assert [u.union_type for u in ir.unions] == ["UNION ALL", "UNION ALL"]
        assert [u.query.from_.name for u in ir.unions] == ["b", "c"]
        assert ir_to_sql(ir) == sql

    def test_union_distinct(self):
        """Test UNION DISTINCT maps to UNION"""
        ir = parse_sql_to_ir("SELECT id FROM a UNION DISTINCT SELECT id FROM b")
        assert ir.unions[0].union_type == "UNION"


class TestParseErrors:
    """Test inputs the parser rejects."""

    def test_syntax_error(self):
        """Test unparseable SQL raises MappingError"""
        with pytest.raises(MappingError, match="Failed to parse SQL"):
            parse_sql("SELECT * FROM users WHERE (a = 1")

    def test_insert_rejected(self):
        """Test non-SELECT statements are rejected"""
        with pytest.raises(MappingError, match="Root node must be a SELECT"):
            parse_sql("INSERT INTO users (id) VALUES (1)")

    def test_distinct_rejected(self):
        """Test SELECT DISTINCT is reported"""
        with pytest.raises(MappingError, match="DISTINCT"):
            parse_sql_to_ir("SELECT DISTINCT name FROM users")

    def test_between_unsupported(self):
        """Test BETWEEN has no IR counterpart"""
        with pytest.raises(UnsupportedExpressionError) as exc_info:
            parse_sql_to_ir("SELECT id FROM users WHERE age BETWEEN 18 AND 30")
        assert exc_info.value.node_type == "Between"

    @pytest.mark.parametrize("sql,keyword", [
        ("SELECT a.id FROM a NATURAL JOIN b", "NATURAL"),
        ("SELECT a.id FROM a LEFT SEMI JOIN b ON a.id = b.id", "SEMI"),
        ("SELECT a.id FROM a LEFT ANTI JOIN b ON a.id = b.id", "ANTI"),
    ])
    def test_join_variants_rejected(self, sql, keyword):
        """Test joins with no IR counterpart are reported instead of rewritten"""
        with pytest.raises(MappingError, match=keyword):
            parse_sql(sql, dialect="spark")

    def test_plain_joins_still_accepted(self):
        """Test INNER, LEFT, FULL and CROSS joins keep parsing in the same dialect"""
        sql = (
            "SELECT a.id FROM a INNER JOIN b ON a.id = b.id LEFT JOIN c ON a.id = c.id "
            "FULL OUTER JOIN d ON a.id = d.id CROSS JOIN e"
        )
        joins = [entry["join"] for entry in parse_sql(sql, dialect="spark")["from"][1:]]
        assert joins == ["INNER JOIN", "LEFT JOIN", "FULL JOIN", "CROSS JOIN"]


class TestRawShape:
    """Test the intermediate raw tree produced from SQL text."""

    def test_select_shape(self):
        """Test top-level keys of the raw select"""
        raw = parse_sql("SELECT u.name AS n FROM analytics.users AS u")
        assert raw["type"] == "select"
        assert raw["columns"] == [
            {"expr": {"type": "column_ref", "table": "u", "column": "name"}, "as": "n"},
        ]
        assert raw["from"] == [{"db": "analytics", "table": "users", "as": "u"}]

    def test_parentheses_flag(self):
        """Test parenthesized boolean groups are flagged"""
        raw = parse_sql("SELECT a FROM t WHERE (a = 1 OR b = 2) AND c = 3")
        assert raw["where"]["operator"] == "AND"
        assert raw["where"]["left"]["operator"] == "OR"
        assert raw["where"]["left"]["parentheses"] is True
        assert "parentheses" not in raw["where"]["right"]
