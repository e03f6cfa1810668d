"""
Unit tests for the SQL dialect query builders
"""
import pytest

from autorest.connections.connection_config import DatabaseType
from autorest.core.errors import UnsupportedDatabaseType
from autorest.services.auto_rest.dialects import TableRef, get_query_builder
from autorest.services.auto_rest.dialects.mssql import mssql_dialect
from autorest.services.auto_rest.dialects.mysql import mysql_dialect
from autorest.services.auto_rest.dialects.postgres import postgres_dialect
from autorest.services.auto_rest.dialects.sqlite import sqlite_dialect
from autorest.services.auto_rest.filter_ast import Condition, FilterOperator, combine_filters
from autorest.services.auto_rest.filter_parser import parse_filter
from autorest.services.auto_rest.pagination import MAX_OFFSET, compute_offset

COLUMNS = ["id", "customer_id", "total", "status"]
ORDERS = TableRef(name="orders")


class TestBuilderRegistry:
    """Test builder dispatch by backend type"""

    @pytest.mark.parametrize("db_type,builder", [
        (DatabaseType.POSTGRESQL, postgres_dialect),
        ("postgres", postgres_dialect),
        ("mariadb", mysql_dialect),
        ("sqlserver", mssql_dialect),
        (DatabaseType.SQLITE, sqlite_dialect),
    ])
    def test_dispatch(self, db_type, builder):
        assert get_query_builder(db_type) is builder

    def test_unsupported_type(self):
        with pytest.raises(UnsupportedDatabaseType):
            get_query_builder("oracle")


class TestIdentifierQuoting:
    """Test identifier quoting per dialect"""

    def test_postgres_doubles_quotes(self):
        assert postgres_dialect.quote_identifier('we"ird') == '"we""ird"'

    def test_mysql_doubles_backticks(self):
        assert mysql_dialect.quote_identifier("we`ird") == "`we``ird`"

    def test_mssql_doubles_closing_bracket(self):
        assert mssql_dialect.quote_identifier("we]ird") == "[we]]ird]"

    def test_default_schemas(self):
        assert postgres_dialect.table_reference(ORDERS) == '"public"."orders"'
        assert mssql_dialect.table_reference(ORDERS) == "[dbo].[orders]"
        assert mysql_dialect.table_reference(ORDERS) == "`orders`"
        assert sqlite_dialect.table_reference(TableRef("orders", "main")) == '"main"."orders"'


class TestPostgresQueries:
    """Test PostgreSQL list and by-id queries"""

    def test_list_query_binds_everything(self):
        node = parse_filter('status:eq:"shipped"', COLUMNS)
        query = postgres_dialect.build_list_query(
            ORDERS, ["id", "status"], node, (("id", "asc"),), page=2, page_size=10
        )
        assert query.sql == (
            'SELECT "id", "status" FROM "public"."orders" WHERE "status" = $1 '
            'ORDER BY "id" ASC LIMIT $2 OFFSET $3'
        )
        assert query.params == ["shipped", 10, 10]
        assert query.count_sql == 'SELECT COUNT(*) AS cnt FROM "public"."orders" WHERE "status" = $1'
        assert query.count_params == ["shipped"]

    def test_values_never_interpolated(self):
        node = parse_filter({"status": "x' OR '1'='1"}, COLUMNS)
        query = postgres_dialect.build_list_query(ORDERS, COLUMNS, node, (), 1, 25)
        assert "OR '1'='1" not in query.sql
        assert query.params[0] == "x' OR '1'='1"

    def test_ilike_is_native(self):
        node = parse_filter({"status": {"ilike": "%ship%"}}, COLUMNS)
        query = postgres_dialect.build_list_query(ORDERS, COLUMNS, node, (), 1, 25)
        assert '"status" ILIKE $1' in query.sql

    def test_nested_groups_and_operators(self):
        node = parse_filter(
            {"or": [{"status": {"in": ["a", "b"]}}, {"total": {"between": [1, 9]}}, {"customer_id": None}]},
            COLUMNS,
        )
        query = postgres_dialect.build_list_query(ORDERS, COLUMNS, node, (), 1, 25)
        assert 'WHERE ("status" IN ($1, $2) OR "total" BETWEEN $3 AND $4 OR "customer_id" IS NULL)' in query.sql
        assert query.count_params == ["a", "b", 1, 9]

    def test_empty_in_is_always_false(self):
        query = postgres_dialect.build_list_query(
            ORDERS, COLUMNS, Condition("id", FilterOperator.IN, ()), (), 1, 25
        )
        assert "WHERE 1 = 0" in query.sql
        assert query.count_params == []

    def test_empty_projection_selects_marker(self):
        query = postgres_dialect.build_list_query(ORDERS, [], None, (), 1, 25)
        assert query.sql.startswith('SELECT 1 AS "_row" FROM')

    def test_page_size_is_clamped(self):
        query = postgres_dialect.build_list_query(ORDERS, COLUMNS, None, (), "x", 5000)
        assert query.params == [200, 0]

    def test_by_id_with_row_policy(self):
        policy = Condition("customer_id", FilterOperator.EQ, 7)
        query = postgres_dialect.build_by_id_query(ORDERS, ["id", "total"], "id", 42, policy)
        assert query.sql == (
            'SELECT "id", "total" FROM "public"."orders" WHERE "id" = $1 AND "customer_id" = $2 LIMIT 1'
        )
        assert query.params == [42, 7]


class TestMySQLAndSQLiteQueries:
    """Test positional ? placeholder dialects"""

    def test_mysql_list_query(self):
        node = parse_filter('status:eq:"shipped"', COLUMNS)
        query = mysql_dialect.build_list_query(ORDERS, ["id"], node, (("total", "desc"),), 3, 5)
        assert query.sql == "SELECT `id` FROM `orders` WHERE `status` = ? ORDER BY `total` DESC LIMIT ? OFFSET ?"
        assert query.params == ["shipped", 5, 10]
        assert query.count_params == ["shipped"]

    def test_mysql_ilike_lowers_both_sides(self):
        node = parse_filter({"status": {"ilike": "SHIP%"}}, COLUMNS)
        query = mysql_dialect.build_list_query(ORDERS, COLUMNS, node, (), 1, 25)
        assert "LOWER(`status`) LIKE LOWER(?)" in query.sql

    def test_sqlite_by_id(self):
        query = sqlite_dialect.build_by_id_query(TableRef("orders", "main"), ["id"], "id", 3)
        assert query.sql == 'SELECT "id" FROM "main"."orders" WHERE "id" = ? LIMIT 1'
        assert query.params == [3]


class TestMSSQLQueries:
    """Test SQL Server named placeholders and OFFSET/FETCH paging"""

    def test_page_two_without_sort_synthesizes_order_by(self):
        query = mssql_dialect.build_list_query(ORDERS, ["first", "total"], None, (), page=2, page_size=25)
        assert query.sql == (
            "SELECT [first], [total] FROM [dbo].[orders] ORDER BY [first] "
            "OFFSET @param1 ROWS FETCH NEXT @param2 ROWS ONLY"
        )
        assert query.params == {"param1": 25, "param2": 25}
        assert query.count_sql == "SELECT COUNT(*) AS cnt FROM [dbo].[orders]"
        assert query.count_params == {}

    def test_named_params_number_across_statement(self):
        node = combine_filters(
            Condition("customer_id", FilterOperator.EQ, 7),
            parse_filter('status:eq:"shipped"', COLUMNS),
        )
        query = mssql_dialect.build_list_query(ORDERS, COLUMNS, node, (("id", "asc"),), 1, 10)
        assert "WHERE ([customer_id] = @param1 AND [status] = @param2)" in query.sql
        assert "OFFSET @param3 ROWS FETCH NEXT @param4 ROWS ONLY" in query.sql
        assert query.params == {"param1": 7, "param2": "shipped", "param3": 0, "param4": 10}
        assert query.count_params == {"param1": 7, "param2": "shipped"}

    def test_empty_projection_orders_by_constant(self):
        query = mssql_dialect.build_list_query(ORDERS, [], None, (), 1, 10)
        assert "ORDER BY (SELECT NULL)" in query.sql

    def test_by_id_uses_top(self):
        query = mssql_dialect.build_by_id_query(ORDERS, ["id"], "id", 5)
        assert query.sql == "SELECT TOP (1) [id] FROM [dbo].[orders] WHERE [id] = @param1"
        assert query.params == {"param1": 5}


LITERALS = {
    FilterOperator.EQ: "zq-eq",
    FilterOperator.NEQ: "zq-neq",
    FilterOperator.GT: 424201,
    FilterOperator.GTE: 424202,
    FilterOperator.LT: 424203,
    FilterOperator.LTE: 424204,
    FilterOperator.IN: ("zq-in-a", "zq-in-b"),
    FilterOperator.LIKE: "%zq-like%",
    FilterOperator.ILIKE: "%zq-ilike%",
    FilterOperator.BETWEEN: (424205, 424206),
    FilterOperator.ISNULL: True,
}

POSITIONAL_AND_NAMED = [mysql_dialect, mssql_dialect, sqlite_dialect]


def bound_values(params):
    return list(params.values()) if isinstance(params, dict) else list(params)


class TestParameterBindingAcrossDialects:
    """Test that filter values only ever travel as parameters"""

    @pytest.mark.parametrize("dialect", POSITIONAL_AND_NAMED, ids=lambda d: d.db_type.value)
    @pytest.mark.parametrize("op", list(FilterOperator), ids=lambda op: op.value)
    def test_no_literal_in_query_text(self, dialect, op):
        value = LITERALS[op]
        query = dialect.build_list_query(ORDERS, COLUMNS, Condition("status", op, value), (), 1, 25)
        literals = value if isinstance(value, tuple) else (value,)
        for literal in literals:
            if isinstance(literal, bool):
                continue
            assert str(literal) not in query.sql
            assert str(literal) not in query.count_sql
            assert literal in bound_values(query.params)
            assert literal in bound_values(query.count_params)

    @pytest.mark.parametrize("dialect", POSITIONAL_AND_NAMED, ids=lambda d: d.db_type.value)
    def test_isnull_binds_nothing(self, dialect):
        query = dialect.build_list_query(ORDERS, COLUMNS, Condition("status", FilterOperator.ISNULL, True), (), 1, 25)
        assert "IS NULL" in query.sql
        assert bound_values(query.count_params) == []

    @pytest.mark.parametrize("dialect", POSITIONAL_AND_NAMED, ids=lambda d: d.db_type.value)
    def test_empty_in_is_always_false(self, dialect):
        node = combine_filters(
            Condition("id", FilterOperator.IN, ()),
            Condition("status", FilterOperator.EQ, "shipped"),
        )
        query = dialect.build_list_query(ORDERS, COLUMNS, node, (), 1, 25)
        assert "1 = 0" in query.sql
        assert "1 = 0" in query.count_sql
        assert bound_values(query.count_params) == ["shipped"]


class TestPagination:
    """Test offset math at the edges"""

    def test_offset_is_capped(self):
        assert compute_offset(10 ** 20, 25) == MAX_OFFSET
        assert compute_offset("1e20", 200) == MAX_OFFSET
        assert compute_offset(3, 10) == 20

    def test_huge_page_binds_capped_offset(self):
        query = postgres_dialect.build_list_query(ORDERS, COLUMNS, None, (), 10 ** 20, 25)
        assert query.params == [25, MAX_OFFSET]
