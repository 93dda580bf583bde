"""Unit tests for building SQL from the query IR."""

import pytest

from query_ir import (
    ColumnRef,
    DepthExceededError,
    ExpressionNode,
    FilterNode,
    FunctionNode,
    JoinNode,
    LiteralNode,
    OrderByNode,
    QueryBuilder,
    QueryBuilderMode,
    QueryNode,
    QueryValidationError,
    SelectNode,
    SubQueryNode,
    TableNode,
    UnionNode,
    WithNode,
    condition,
    conditions,
    ir_to_sql,
    join,
    where,
)


def users_query(**kwargs):
    return QueryNode(selects=["name", "email"], from_="users", **kwargs)


class TestBasicQueries:
    """Test the basic clause scenarios."""

    def test_select_from(self):
        """Test SELECT name, email FROM users"""
        result = QueryBuilder(QueryBuilderMode.NAMED).build(users_query())
        assert result.query == "SELECT name, email FROM users"
        assert result.parameters == {}

    def test_where(self):
        """Test a WHERE comparison becomes a named parameter"""
        query = users_query(where=where([condition("age", ">", 18)]))
        result = QueryBuilder(QueryBuilderMode.NAMED).build(query)
        assert result.query == "SELECT name, email FROM users WHERE age > @param1"
        assert result.parameters == {"param1": 18}

    def test_order_limit_offset(self):
        """Test ORDER BY, LIMIT and OFFSET"""
        query = users_query(
            order_by=[OrderByNode(column="name", direction="DESC")],
            limit=10,
            offset=5,
        )
        result = QueryBuilder(QueryBuilderMode.SIMPLE).build(query)
        assert result.query == "SELECT name, email FROM users ORDER BY name DESC LIMIT 10 OFFSET 5"

    def test_join(self):
        """Test a plain JOIN with an ON comparison"""
        query = QueryNode(
            selects=["users.name", "orders.amount"],
            from_="users",
            joins=[join("orders", "users.id", "=", "orders.user_id")],
        )
        assert ir_to_sql(query) == (
            "SELECT users.name, orders.amount FROM users JOIN orders ON users.id = orders.user_id"
        )

    def test_aliases(self):
        """Test table and column aliases render with AS"""
        query = QueryNode(
            selects=[SelectNode(expression=ColumnRef(name="u.name"), alias="user_name")],
            from_=TableNode(name="users", alias="u"),
        )
        assert ir_to_sql(query) == "SELECT u.name AS user_name FROM users AS u"

    def test_join_types(self):
        """Test LEFT and CROSS joins"""
        query = QueryNode(
            selects=["*"],
            from_="users",
            joins=[
                join("orders", "users.id", "=", "orders.user_id", "LEFT"),
                JoinNode(join_type="CROSS", table=TableNode(name="dates")),
            ],
        )
        assert ir_to_sql(query) == (
            "SELECT * FROM users LEFT JOIN orders ON users.id = orders.user_id CROSS JOIN dates"
        )

    def test_group_by_having(self):
        """Test GROUP BY with an aggregate HAVING condition"""
        count = FunctionNode(name="COUNT", args=[ColumnRef(name="*")])
        query = QueryNode(
            selects=["country", SelectNode(expression=count, alias="total")],
            from_="users",
            group_by="country",
            having=where(ExpressionNode(left=count, operator=">", right=LiteralNode(value=5))),
        )
        result = QueryBuilder(QueryBuilderMode.NAMED).build(query)
        assert result.query == (
            "SELECT country, COUNT(*) AS total FROM users GROUP BY country HAVING COUNT(*) > @param1"
        )
        assert result.parameters == {"param1": 5}

    def test_qualify(self):
        """Test QUALIFY renders after HAVING"""
        query = QueryNode(
            selects=["id"],
            from_="events",
            qualify=where(condition("rn", "=", 1)),
        )
        assert ir_to_sql(query) == "SELECT id FROM events QUALIFY rn = 1"


class TestModes:
    """Test the three parameterization modes on the same query."""

    def query(self):
        return users_query(where=where([
            condition("age", ">", 18),
            condition("name", "LIKE", "John%"),
        ]))

    def test_named(self):
        """Test NAMED mode"""
        result = QueryBuilder(QueryBuilderMode.NAMED).build(self.query())
        assert result.query == "SELECT name, email FROM users WHERE age > @param1 AND name LIKE @param2"
        assert result.parameters == {"param1": 18, "param2": "John%"}

    def test_positional(self):
        """Test POSITIONAL mode"""
        result = QueryBuilder(QueryBuilderMode.POSITIONAL).build(self.query())
        assert result.query == "SELECT name, email FROM users WHERE age > ? AND name LIKE ?"
        assert result.parameters == [18, "John%"]

    def test_simple(self):
        """Test SIMPLE mode inlines values"""
        result = QueryBuilder(QueryBuilderMode.SIMPLE).build(self.query())
        assert result.query == "SELECT name, email FROM users WHERE age > 18 AND name LIKE 'John%'"
        assert result.parameters is None

    def test_set_mode(self):
        """Test switching mode on an existing builder"""
        builder = QueryBuilder(QueryBuilderMode.NAMED)
        builder.set_mode(QueryBuilderMode.POSITIONAL)
        assert builder.build(self.query()).parameters == [18, "John%"]

    def test_builds_are_independent(self):
        """Test numbering restarts for every build"""
        builder = QueryBuilder(QueryBuilderMode.NAMED)
        builder.build(self.query())
        assert builder.build(self.query()).parameters == {"param1": 18, "param2": "John%"}


class TestFilters:
    """Test WHERE grouping and empty set elision."""

    def test_nested_groups(self):
        """Test groups with a different operator are parenthesized"""
        query = QueryNode(
            selects=["*"],
            from_="t",
            where=FilterNode(operator="OR", conditions=[
                FilterNode(operator="AND", conditions=[condition("a", ">", 18), condition("b", "=", "x")]),
                FilterNode(operator="AND", conditions=[condition("c", "<", 18), condition("d", "=", "y")]),
            ]),
        )
        assert ir_to_sql(query) == "SELECT * FROM t WHERE (a > 18 AND b = 'x') OR (c < 18 AND d = 'y')"

    def test_same_operator_group_flat(self):
        """Test a nested group with the same operator renders flat"""
        query = QueryNode(
            selects=["*"],
            from_="t",
            where=FilterNode(operator="AND", conditions=[
                condition("a", "=", 1),
                FilterNode(operator="AND", conditions=[condition("b", "=", 2), condition("c", "=", 3)]),
            ]),
        )
        assert ir_to_sql(query) == "SELECT * FROM t WHERE a = 1 AND b = 2 AND c = 3"

    def test_single_condition_group(self):
        """Test a one-condition group needs no parentheses"""
        query = QueryNode(
            selects=["*"],
            from_="t",
            where=FilterNode(operator="OR", conditions=[
                condition("a", "=", 1),
                FilterNode(operator="AND", conditions=[condition("b", "=", 2)]),
            ]),
        )
        assert ir_to_sql(query) == "SELECT * FROM t WHERE a = 1 OR b = 2"

    def test_empty_in_elided(self):
        """Test IN with an empty list is dropped from the filter"""
        query = users_query(where=FilterNode(conditions=[
            condition("age", ">", 18),
            condition("id", "IN", []),
        ]))
        result = QueryBuilder(QueryBuilderMode.NAMED).build(query)
        assert result.query == "SELECT name, email FROM users WHERE age > @param1"
        assert result.parameters == {"param1": 18}

    def test_filter_left_empty(self):
        """Test a filter with only empty sets is omitted"""
        query = users_query(where=FilterNode(conditions=[condition("id", "IN", [])]))
        assert ir_to_sql(query) == "SELECT name, email FROM users"

    def test_empty_in_inside_helper_chain(self):
        """Test an empty IN inside a conditions() chain is dropped"""
        chain = conditions([
            {"column": "age", "operator": ">", "value": 18},
            {"column": "id", "operator": "IN", "value": []},
        ])
        query = QueryNode(selects=["name"], from_="users", where=where(chain))
        assert ir_to_sql(query) == "SELECT name FROM users WHERE age > 18"

        query = QueryNode(selects=["name"], from_="users", where=FilterNode(conditions=[chain]))
        assert ir_to_sql(query) == "SELECT name FROM users WHERE age > 18"

    def test_empty_in_inside_hand_built_chain(self):
        """Test an empty IN on one side of a hand-built OR leaves the other side"""
        query = QueryNode(selects=["name"], from_="users", where=FilterNode(conditions=[
            ExpressionNode(left=condition("a", "=", 1), operator="OR", right=condition("x", "IN", [])),
        ]))
        result = QueryBuilder(QueryBuilderMode.NAMED).build(query)
        assert result.query == "SELECT name FROM users WHERE a = @param1"
        assert result.parameters == {"param1": 1}

    def test_empty_in_nested_chain(self):
        """Test pruning reaches empty sets several levels down"""
        inner = ExpressionNode(left=condition("x", "IN", []), operator="AND", right=condition("y", "NOT IN", []))
        chain = ExpressionNode(
            left=ExpressionNode(left=condition("a", "=", 1), operator="OR", right=inner),
            operator="AND",
            right=condition("b", "=", 2),
        )
        query = QueryNode(selects=["name"], from_="users", where=FilterNode(conditions=[chain]))
        assert ir_to_sql(query) == "SELECT name FROM users WHERE a = 1 AND b = 2"

        only_empty = FilterNode(conditions=[inner])
        assert ir_to_sql(QueryNode(selects=["name"], from_="users", where=only_empty)) == "SELECT name FROM users"

    def test_in_list(self):
        """Test IN lists become one parameter per element"""
        query = users_query(where=where(condition("id", "IN", [1, 2])))
        result = QueryBuilder(QueryBuilderMode.POSITIONAL).build(query)
        assert result.query == "SELECT name, email FROM users WHERE id IN (?, ?)"
        assert result.parameters == [1, 2]


class TestNestedQueries:
    """Test CTEs, subqueries and unions share one parameter sequence."""

    def test_numbering_across_cte_and_subquery(self):
        """Test placeholders are numbered in document order"""
        recent = QueryNode(selects=["user_id"], from_="orders", where=where(condition("amount", ">", 100)))
        paid = QueryNode(selects=["user_id"], from_="recent", where=where(condition("status", "=", "paid")))
        query = QueryNode(
            with_=[WithNode(name="recent", query=recent)],
            selects=["name"],
            from_="users",
            where=where([
                condition("age", ">", 18),
                ExpressionNode(left=ColumnRef(name="id"), operator="IN", right=paid),
            ]),
        )
        result = QueryBuilder(QueryBuilderMode.NAMED).build(query)
        assert result.query == (
            "WITH recent AS (SELECT user_id FROM orders WHERE amount > @param1) "
            "SELECT name FROM users WHERE age > @param2 "
            "AND id IN (SELECT user_id FROM recent WHERE status = @param3)"
        )
        assert result.parameters == {"param1": 100, "param2": 18, "param3": "paid"}

    def test_from_subquery(self):
        """Test FROM subqueries render with their alias"""
        inner = QueryNode(
            selects=[SelectNode(expression=FunctionNode(name="SUM", args=[ColumnRef(name="amount")]), alias="total")],
            from_="orders",
            where=where(condition("status", "=", "paid")),
        )
        query = QueryNode(
            selects=["s.total"],
            from_=SubQueryNode(query=inner, alias="s"),
            where=where(condition("s.total", ">", 10)),
        )
        result = QueryBuilder(QueryBuilderMode.POSITIONAL).build(query)
        assert result.query == (
            "SELECT s.total FROM (SELECT SUM(amount) AS total FROM orders WHERE status = ?) AS s "
            "WHERE s.total > ?"
        )
        assert result.parameters == ["paid", 10]

    def test_union(self):
        """Test union arms render before the statement ORDER BY"""
        query = QueryNode(
            selects=["id"],
            from_="a",
            unions=[UnionNode(union_type="UNION ALL", query=QueryNode(selects=["id"], from_="b"))],
            order_by=[OrderByNode(column="id")],
        )
        assert ir_to_sql(query) == "SELECT id FROM a UNION ALL SELECT id FROM b ORDER BY id ASC"

    def test_union_arm_with_order_is_parenthesized(self):
        """Test an arm carrying its own ORDER BY / LIMIT is wrapped"""
        arm = QueryNode(selects=["id"], from_="b", order_by=[OrderByNode(column="id")], limit=1)
        query = QueryNode(selects=["id"], from_="a", unions=[UnionNode(query=arm)])
        assert ir_to_sql(query) == "SELECT id FROM a UNION (SELECT id FROM b ORDER BY id ASC LIMIT 1)"

    def test_depth_limit(self):
        """Test nesting beyond max_depth raises DepthExceededError"""
        query = QueryNode(selects=["id"], from_="t")
        for _ in range(5):
            query = QueryNode(selects=["id"], from_=SubQueryNode(query=query, alias="s"))
        with pytest.raises(DepthExceededError):
            QueryBuilder(QueryBuilderMode.SIMPLE, max_depth=3).build(query)


class TestValidation:
    """Test build() refuses invalid queries."""

    def test_schema_error_located_at_select(self):
        """Test an unknown column yields exactly one SELECT error"""
        with pytest.raises(QueryValidationError) as exc_info:
            QueryBuilder(QueryBuilderMode.NAMED).build(users_query(), schema={"users": ["id", "name"]})
        errors = exc_info.value.errors
        assert len(errors) == 1
        assert errors[0].location == "SELECT"
        assert "email" in errors[0].message

    def test_having_without_group_by(self):
        """Test HAVING without GROUP BY is rejected"""
        query = users_query(having=where(condition("age", ">", 1)))
        with pytest.raises(QueryValidationError) as exc_info:
            QueryBuilder().build(query)
        assert exc_info.value.errors[0].location == "HAVING"

    def test_limit_without_order_by(self):
        """Test LIMIT without ORDER BY is rejected"""
        with pytest.raises(QueryValidationError):
            ir_to_sql(users_query(limit=10))

    def test_error_message_lists_locations(self):
        """Test the exception message names each failing clause"""
        with pytest.raises(QueryValidationError) as exc_info:
            ir_to_sql(users_query(limit=10))
        assert "Location: LIMIT" in str(exc_info.value)
