# Test Configuration
import os
import sqlite3

# Settings are read on first import of autorest.config
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LOG_JSON", "false")

import pytest

from autorest.config import Settings
from autorest.connections.connection_config import ConnectionConfig, DatabaseType
from autorest.connections.connection_manager import ConnectionManager
from autorest.core.context import CallerContext, ServiceBinding
from autorest.database import create_catalog_engine, create_session_factory, init_catalog
from autorest.services.auto_rest.catalog import EntityCatalog
from autorest.services.auto_rest.change_notifier import ChangeNotifier
from autorest.services.auto_rest.execution_engine import AutoRestEngine
from autorest.services.auto_rest.request_cache import RequestDeduplicator, ResponseCache

from tests.fakes import FakeConnector


@pytest.fixture
def settings():
    """Settings with short timings for tests."""
    return Settings(
        DEDUP_GRACE_SECONDS=0.1,
        QUERY_TIMEOUT_SECONDS=5.0,
        REALTIME_POLL_INTERVAL_SECONDS=0.05,
        RESPONSE_CACHE_ENABLED=False,
        LOG_JSON=False,
    )


@pytest.fixture
def catalog_session_factory(tmp_path):
    """Session factory over a fresh file-backed catalog."""
    engine = create_catalog_engine(f"sqlite:///{tmp_path / 'catalog.db'}")
    init_catalog(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def catalog(catalog_session_factory):
    return EntityCatalog(catalog_session_factory)


@pytest.fixture
def pg_config():
    return ConnectionConfig(
        db_type=DatabaseType.POSTGRESQL,
        database="shop",
        host="db.internal",
        port=5432,
        username="svc_reader",
        password="s3cret-pass",
    )


@pytest.fixture
def binding(pg_config):
    return ServiceBinding(
        service_id="svc-1",
        service_name="shop",
        connection=pg_config,
        organization_id="org-1",
        connection_id="conn-1",
    )


@pytest.fixture
def caller():
    return CallerContext(
        role_id="role-sales",
        organization_id="org-1",
        user={"id": 7, "email": "ana@example.com", "region": "emea"},
    )


@pytest.fixture
def fake_connector(pg_config):
    return FakeConnector(pg_config)


@pytest.fixture
def connection_manager(fake_connector):
    return ConnectionManager(connector_factory=lambda config: fake_connector)


@pytest.fixture
def notifier():
    return ChangeNotifier(poll_interval=0.05, websocket_url="ws://test")


@pytest.fixture
def engine(catalog, connection_manager, notifier, settings):
    """Execution engine over the fake connector."""
    return AutoRestEngine(
        catalog=catalog,
        connections=connection_manager,
        deduplicator=RequestDeduplicator(grace_seconds=settings.DEDUP_GRACE_SECONDS),
        response_cache=ResponseCache(default_ttl=30, max_ttl=60),
        notifier=notifier,
        settings=settings,
    )


@pytest.fixture
def exposed_orders(catalog, binding, fake_connector):
    """The ``orders`` table exposed on the test service."""
    return catalog.expose_table(binding, "orders", available_tables=fake_connector.list_tables())


@pytest.fixture
def sqlite_orders_db(tmp_path):
    """SQLite file with an ``orders`` table of 8 rows, 5 of them shipped."""
    path = tmp_path / "shop.db"
    conn = sqlite3.connect(str(path))
    try:
        conn.execute(
            "CREATE TABLE orders ("
            "id INTEGER PRIMARY KEY, customer_id INTEGER, total NUMERIC, status VARCHAR(20))"
        )
        conn.executemany(
            "INSERT INTO orders (id, customer_id, total, status) VALUES (?, ?, ?, ?)",
            [
                (1, 7, 120.5, "shipped"),
                (2, 7, 80, "pending"),
                (3, 8, 42, "shipped"),
                (4, 9, 15, "shipped"),
                (5, 7, 300, "cancelled"),
                (6, 8, 99, "shipped"),
                (7, 9, 10, "pending"),
                (8, 7, 55, "shipped"),
            ],
        )
        conn.execute("CREATE VIEW shipped_orders AS SELECT id, total FROM orders WHERE status = 'shipped'")
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def sqlite_config(sqlite_orders_db):
    return ConnectionConfig(db_type=DatabaseType.SQLITE, database=str(sqlite_orders_db))


@pytest.fixture
def sqlite_binding(sqlite_config):
    return ServiceBinding(service_id="svc-lite", service_name="lite", connection=sqlite_config)
