"""
End-to-end tests against a real SQLite database
"""
import sqlite3
import time

import pytest

from autorest.connections.connection_manager import ConnectionManager
from autorest.connections.connectors.sqlite_connector import SQLiteConnector
from autorest.core.context import CallerContext
from autorest.core.errors import QueryTimeoutError, TableNotFound
from autorest.services.auto_rest.change_notifier import ChangeNotifier
from autorest.services.auto_rest.dialects import TableRef
from autorest.services.auto_rest.execution_engine import AutoRestEngine, ListParams


@pytest.fixture
def sqlite_engine(catalog, settings):
    connections = ConnectionManager(max_pools=4, pool_size=2)
    engine = AutoRestEngine(
        catalog=catalog,
        connections=connections,
        notifier=ChangeNotifier(poll_interval=0.05),
        settings=settings,
    )
    yield engine
    connections.close_all()


class TestSQLiteConnector:
    """Test discovery and introspection"""

    def test_list_tables_and_columns(self, sqlite_config):
        connections = ConnectionManager()
        try:
            connector = connections.get_connector(sqlite_config)
            tables = {table.name: table for table in connector.list_tables()}
            assert tables["orders"].table_type == "TABLE"
            assert tables["orders"].schema == "main"
            assert tables["shipped_orders"].table_type == "VIEW"

            columns = connector.get_columns(TableRef("orders", "main"))
            assert [column.name for column in columns] == ["id", "customer_id", "total", "status"]
            assert columns[0].is_primary_key is True

            with pytest.raises(TableNotFound):
                connector.get_columns(TableRef("payments"))
        finally:
            connections.close_all()

    def test_context_manager(self, sqlite_config):
        with SQLiteConnector(sqlite_config) as connector:
            assert connector.is_connected() is True
            assert connector.execute("SELECT COUNT(*) AS n FROM orders") == [{"n": 8}]
        assert connector.is_connected() is False


class TestSQLiteEndToEnd:
    """Test the full request path"""

    @pytest.mark.asyncio
    async def test_masked_filtered_sorted_page(self, sqlite_engine, catalog, sqlite_binding):
        result = await sqlite_engine.expose_tables(sqlite_binding, ["orders"])
        assert result["total"] == 1
        catalog.set_field_policy(sqlite_binding.service_id, "orders", role_id="analyst", masked_fields=["total"])

        envelope = await sqlite_engine.handle_list(
            sqlite_binding,
            CallerContext(role_id="analyst"),
            "orders",
            ListParams.from_mapping({"filter": 'status:eq:"shipped"', "sort": "id:asc", "page": "1", "pageSize": "2"}),
        )
        assert envelope["total"] == 5
        assert envelope["hasNext"] is True
        assert [row["id"] for row in envelope["data"]] == [1, 3]
        assert all(row["total"] is None for row in envelope["data"])

    @pytest.mark.asyncio
    async def test_last_page(self, sqlite_engine, sqlite_binding):
        await sqlite_engine.expose_tables(sqlite_binding, ["orders"])
        envelope = await sqlite_engine.handle_list(
            sqlite_binding, CallerContext(), "orders", ListParams(sort="-id", page=3, page_size=3)
        )
        assert [row["id"] for row in envelope["data"]] == [2, 1]
        assert envelope["hasNext"] is False
        assert envelope["total"] == 8

    @pytest.mark.asyncio
    async def test_page_past_the_end_is_empty(self, sqlite_engine, sqlite_binding):
        await sqlite_engine.expose_tables(sqlite_binding, ["orders"])
        envelope = await sqlite_engine.handle_list(
            sqlite_binding, CallerContext(), "orders", ListParams.from_mapping({"page": "1e20", "pageSize": "10"})
        )
        assert envelope["data"] == []
        assert envelope["total"] == 8
        assert envelope["hasNext"] is False

    @pytest.mark.asyncio
    async def test_row_policy_and_by_id(self, sqlite_engine, catalog, sqlite_binding):
        await sqlite_engine.expose_tables(sqlite_binding, ["orders"])
        catalog.set_row_policy(sqlite_binding.service_id, "orders", {"customer_id": "{{user.id}}"})
        caller = CallerContext(user={"id": 7})

        envelope = await sqlite_engine.handle_list(sqlite_binding, caller, "orders", ListParams(sort="id"))
        assert [row["id"] for row in envelope["data"]] == [1, 2, 5, 8]

        assert (await sqlite_engine.handle_by_id(sqlite_binding, caller, "orders", "2"))["status"] == "pending"
        # Row 3 belongs to another customer
        assert await sqlite_engine.handle_by_id(sqlite_binding, caller, "orders", "3") is None

    @pytest.mark.asyncio
    async def test_like_in_and_count(self, sqlite_engine, sqlite_binding):
        await sqlite_engine.expose_tables(sqlite_binding, ["orders"])
        envelope = await sqlite_engine.handle_list(
            sqlite_binding,
            CallerContext(),
            "orders",
            ListParams(filter={"or": [{"status": {"like": "pend%"}}, {"id": {"in": [5]}}]}, sort="id"),
        )
        assert [row["id"] for row in envelope["data"]] == [2, 5, 7]

        count = await sqlite_engine.handle_count(sqlite_binding, CallerContext(), "orders", "total:between:[40,100]")
        assert count == {"total": 4}

    @pytest.mark.asyncio
    async def test_empty_in_matches_nothing(self, sqlite_engine, sqlite_binding):
        await sqlite_engine.expose_tables(sqlite_binding, ["orders"])
        envelope = await sqlite_engine.handle_list(
            sqlite_binding, CallerContext(), "orders", ListParams(filter={"id": {"in": []}})
        )
        assert envelope["data"] == []
        assert envelope["total"] == 0
        assert envelope["hasNext"] is False

        either = await sqlite_engine.handle_count(
            sqlite_binding, CallerContext(), "orders", {"or": [{"id": {"in": []}}, {"status": "pending"}]}
        )
        assert either == {"total": 2}

    @pytest.mark.asyncio
    async def test_natural_primary_key(self, sqlite_engine, sqlite_orders_db, sqlite_binding):
        conn = sqlite3.connect(str(sqlite_orders_db))
        conn.execute("CREATE TABLE skus (code TEXT PRIMARY KEY, name TEXT)")
        conn.execute("INSERT INTO skus (code, name) VALUES ('LAMP-1', 'Desk lamp')")
        conn.commit()
        conn.close()

        result = await sqlite_engine.expose_tables(sqlite_binding, ["skus"])
        assert result["total"] == 1
        row = await sqlite_engine.handle_by_id(sqlite_binding, CallerContext(), "skus", "LAMP-1")
        assert row == {"code": "LAMP-1", "name": "Desk lamp"}

    @pytest.mark.asyncio
    async def test_empty_projection(self, sqlite_engine, catalog, sqlite_binding):
        await sqlite_engine.expose_tables(sqlite_binding, ["orders"])
        catalog.set_field_policy(sqlite_binding.service_id, "orders", include_fields=["total"], masked_fields=["total"])
        envelope = await sqlite_engine.handle_list(sqlite_binding, CallerContext(), "orders", ListParams(page_size=2))
        assert envelope["data"] == [{"total": None}, {"total": None}]
        assert envelope["total"] == 8

    @pytest.mark.asyncio
    async def test_view_is_readable(self, sqlite_engine, sqlite_binding):
        result = await sqlite_engine.expose_tables(
            sqlite_binding, [{"name": "shipped_orders", "pathSlug": "shipped"}]
        )
        assert result["exposed"][0]["endpoint"] == "/lite/_table/shipped"
        envelope = await sqlite_engine.handle_list(sqlite_binding, CallerContext(), "shipped", ListParams())
        assert envelope["total"] == 5


RUNAWAY = "WITH RECURSIVE n(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM n) SELECT x FROM n"


class TestQueryTimeout:
    """Test that the driver call itself stops at the query bound"""

    def test_runaway_statement_is_interrupted(self, sqlite_config):
        connector = SQLiteConnector(sqlite_config, query_timeout=0.1)
        connector.connect()
        try:
            started = time.monotonic()
            with pytest.raises(QueryTimeoutError):
                connector.execute(f"SELECT COUNT(*) AS n FROM ({RUNAWAY})")
            assert time.monotonic() - started < 3
            # The handler is cleared; later statements run normally
            assert connector.execute("SELECT COUNT(*) AS n FROM orders") == [{"n": 8}]
        finally:
            connector.disconnect()

    @pytest.mark.asyncio
    async def test_request_fails_before_the_async_bound(self, catalog, settings, sqlite_orders_db, sqlite_binding):
        conn = sqlite3.connect(str(sqlite_orders_db))
        conn.execute(f"CREATE VIEW endless AS {RUNAWAY}")
        conn.commit()
        conn.close()

        connections = ConnectionManager(query_timeout=0.2)
        engine = AutoRestEngine(
            catalog=catalog,
            connections=connections,
            notifier=ChangeNotifier(poll_interval=0.05),
            settings=settings,
        )
        try:
            await engine.expose_tables(sqlite_binding, ["endless", "orders"])
            started = time.monotonic()
            with pytest.raises(QueryTimeoutError):
                await engine.handle_count(sqlite_binding, CallerContext(), "endless", None)
            # Cut off by the driver, well before the 5 second request bound
            assert time.monotonic() - started < settings.QUERY_TIMEOUT_SECONDS - 1

            count = await engine.handle_count(sqlite_binding, CallerContext(), "orders", None)
            assert count == {"total": 8}
        finally:
            connections.close_all()
