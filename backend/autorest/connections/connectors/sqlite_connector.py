"""
SQLite Database Connector
"""
import time

from sqlalchemy.engine import URL

from autorest.connections.connectors.sql_connector import SQLAlchemyConnector
from autorest.connections.placeholders import QMARK

# Virtual machine instructions between deadline checks
PROGRESS_STEPS = 1000


class SQLiteConnector(SQLAlchemyConnector):
    """SQLite database connector implementation."""

    paramstyle = QMARK

    def build_url(self) -> URL:
        return URL.create("sqlite", database=self.config.database or None)

    def connect_args(self):
        return {"timeout": self.timeout, "check_same_thread": False}

    def engine_options(self):
        # SQLAlchemy picks the SQLite pool itself
        return {}

    def _fetch(self, conn, sql, params):
        if self.query_timeout is None:
            return super()._fetch(conn, sql, params)

        # sqlite3 has no statement timeout; a progress handler aborts the
        # running statement once the deadline passes
        driver = conn.connection.driver_connection
        deadline = time.monotonic() + self.query_timeout
        driver.set_progress_handler(lambda: int(time.monotonic() > deadline), PROGRESS_STEPS)
        try:
            return super()._fetch(conn, sql, params)
        finally:
            driver.set_progress_handler(None, PROGRESS_STEPS)

    def discovery_schemas(self, inspector):
        return [None]

    def default_schema_label(self):
        return "main"
