"""
MySQL/MariaDB Database Connector
"""
from typing import List, Optional
import math
import time

from sqlalchemy.engine import URL

from autorest.connections.connectors.base_connector import ChangeListener
from autorest.connections.connectors.sql_connector import SQLAlchemyConnector
from autorest.services.auto_rest.dialects.mysql import mysql_dialect

CHANGE_LOG_TABLE = "_autorest_changes"


class MySQLChangeListener(ChangeListener):
    """
    Tails the change log table written by the MySQL triggers.

    MySQL has no LISTEN/NOTIFY; triggers append rows and the listener reads
    everything past the last id it has seen.
    """

    def __init__(self, connector: "MySQLConnector", channel: str):
        self._connector = connector
        self._channel = channel
        rows = connector.execute(
            f"SELECT COALESCE(MAX(id), 0) AS last_id FROM {mysql_dialect.quote_identifier(CHANGE_LOG_TABLE)} "
            f"WHERE channel = ?",
            [channel],
        )
        self._last_id = int(rows[0]["last_id"]) if rows else 0
        self._closed = False

    def wait(self, timeout: float) -> List[str]:
        deadline = time.monotonic() + timeout
        while not self._closed:
            rows = self._connector.execute(
                f"SELECT id, operation FROM {mysql_dialect.quote_identifier(CHANGE_LOG_TABLE)} "
                f"WHERE channel = ? AND id > ? ORDER BY id",
                [self._channel, self._last_id],
            )
            if rows:
                self._last_id = int(rows[-1]["id"])
                return [row["operation"] for row in rows]
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            time.sleep(min(remaining, 1.0))
        return []

    def close(self) -> None:
        self._closed = True


class MySQLConnector(SQLAlchemyConnector):
    """MySQL/MariaDB database connector implementation."""

    supports_change_triggers = True

    def build_url(self) -> URL:
        return URL.create(
            "mysql+pymysql",
            username=self.config.username,
            password=self.config.password,
            host=self.config.host or "localhost",
            port=self.config.port or 3306,
            database=self.config.database,
            query={"charset": "utf8mb4"},
        )

    def connect_args(self):
        args = {"connect_timeout": self.timeout}
        if self.query_timeout is not None:
            # Socket read bound; pymysql drops the connection when it fires
            args["read_timeout"] = max(1, math.ceil(self.query_timeout))
        if self.config.ssl_enabled:
            args["ssl"] = {"check_hostname": False}
        return args

    def discovery_schemas(self, inspector) -> List[Optional[str]]:
        # Only the configured database, like information_schema TABLE_SCHEMA = database()
        return [None]

    def install_change_trigger(self, table, channel: str) -> None:
        """Create the change log table and one row-level trigger per operation."""
        log_table = mysql_dialect.quote_identifier(CHANGE_LOG_TABLE)
        target = mysql_dialect.table_reference(table)
        statements = [
            f"CREATE TABLE IF NOT EXISTS {log_table} ("
            f"id BIGINT AUTO_INCREMENT PRIMARY KEY, "
            f"channel VARCHAR(255) NOT NULL, "
            f"operation VARCHAR(16) NOT NULL, "
            f"created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP, "
            f"INDEX idx_autorest_changes_channel (channel, id))",
        ]
        for operation in ("INSERT", "UPDATE", "DELETE"):
            trigger = mysql_dialect.quote_identifier(f"autorest_{channel}_{operation.lower()}")
            statements.append(f"DROP TRIGGER IF EXISTS {trigger}")
            statements.append(
                f"CREATE TRIGGER {trigger} AFTER {operation} ON {target} FOR EACH ROW "
                f"INSERT INTO {log_table} (channel, operation) VALUES ('{channel}', '{operation}')"
            )
        self.execute_ddl(statements)

    def open_change_listener(self, channel: str) -> ChangeListener:
        return MySQLChangeListener(self, channel)
