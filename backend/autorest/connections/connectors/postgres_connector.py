"""
PostgreSQL Database Connector
"""
from typing import List, Optional
import select

from sqlalchemy.engine import URL

from autorest.connections.connectors.base_connector import ChangeListener
from autorest.connections.connectors.sql_connector import SQLAlchemyConnector
from autorest.services.auto_rest.dialects.postgres import postgres_dialect


class PostgresChangeListener(ChangeListener):
    """LISTEN on a dedicated psycopg2 connection taken out of the pool."""

    def __init__(self, engine, channel: str):
        self._raw = engine.raw_connection()
        self._dbapi = self._raw.driver_connection
        self._dbapi.rollback()
        self._dbapi.autocommit = True
        with self._dbapi.cursor() as cursor:
            cursor.execute(f"LISTEN {postgres_dialect.quote_identifier(channel)}")

    def wait(self, timeout: float) -> List[str]:
        ready, _, _ = select.select([self._dbapi], [], [], timeout)
        if not ready:
            return []
        self._dbapi.poll()
        events = []
        while self._dbapi.notifies:
            notify = self._dbapi.notifies.pop(0)
            events.append(notify.payload or "CHANGE")
        return events

    def close(self) -> None:
        # The session-level LISTEN must not leak back into the pool
        self._raw.invalidate()


class PostgreSQLConnector(SQLAlchemyConnector):
    """PostgreSQL database connector implementation."""

    excluded_schemas = ("information_schema", "pg_catalog", "pg_toast")
    supports_change_triggers = True

    def build_url(self) -> URL:
        return URL.create(
            "postgresql+psycopg2",
            username=self.config.username,
            password=self.config.password,
            host=self.config.host or "localhost",
            port=self.config.port or 5432,
            database=self.config.database,
            query={"sslmode": "require"} if self.config.ssl_enabled else {},
        )

    def connect_args(self):
        args = {"connect_timeout": self.timeout}
        if self.query_timeout is not None:
            # Server-side bound; the backend cancels the statement itself
            args["options"] = f"-c statement_timeout={int(self.query_timeout * 1000)}"
        return args

    def discovery_schemas(self, inspector) -> List[Optional[str]]:
        return [
            schema for schema in inspector.get_schema_names()
            if schema not in self.excluded_schemas and not schema.startswith("pg_")
        ]

    def install_change_trigger(self, table, channel: str) -> None:
        """Create a statement-level trigger that calls pg_notify on the channel."""
        function = postgres_dialect.quote_identifier(f"autorest_notify_{channel}")
        trigger = postgres_dialect.quote_identifier(f"autorest_{channel}")
        target = postgres_dialect.table_reference(table)
        # Channel names are restricted to [a-z0-9_] before they get here
        self.execute_ddl([
            f"CREATE OR REPLACE FUNCTION {function}() RETURNS trigger AS $$ "
            f"BEGIN PERFORM pg_notify('{channel}', TG_OP); RETURN NULL; END; "
            f"$$ LANGUAGE plpgsql",
            f"DROP TRIGGER IF EXISTS {trigger} ON {target}",
            f"CREATE TRIGGER {trigger} AFTER INSERT OR UPDATE OR DELETE ON {target} "
            f"FOR EACH STATEMENT EXECUTE FUNCTION {function}()",
        ])

    def open_change_listener(self, channel: str) -> ChangeListener:
        return PostgresChangeListener(self.engine, channel)
