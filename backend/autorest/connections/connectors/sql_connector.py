"""
Shared SQLAlchemy connector for the relational backends
"""
from abc import abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import URL, Connection
from sqlalchemy.exc import DBAPIError, NoSuchTableError, SQLAlchemyError
from sqlalchemy.pool import QueuePool

from autorest.connections.connectors.base_connector import BaseConnector, ColumnInfo, TableInfo
from autorest.connections.placeholders import FORMAT, rewrite_placeholders
from autorest.core.errors import QueryTimeoutError, TableNotFound

# Driver messages that mean a pooled connection was closed underneath us
STALE_SIGNATURES = (
    "server closed the connection",
    "connection reset",
    "connection refused",
    "broken pipe",
    "lost connection",
    "has gone away",
    "terminating connection",
    "connection is closed",
    "connection already closed",
    "econnreset",
    "ssl connection has been closed",
)

# Driver messages that mean the statement hit its driver-side time bound
TIMEOUT_SIGNATURES = (
    "statement timeout",
    "canceling statement due to",
    "interrupted",
    "timed out",
    "timeout expired",
)


class SQLAlchemyConnector(BaseConnector):
    """Relational connector backed by a SQLAlchemy QueuePool engine."""

    paramstyle = FORMAT
    excluded_schemas: Tuple[str, ...] = ()

    def __init__(self, config, pool_size: int = 5, timeout: int = 30, query_timeout: Optional[float] = None):
        super().__init__(config, pool_size, timeout, query_timeout)
        self._engine = None

    @abstractmethod
    def build_url(self) -> URL:
        """SQLAlchemy URL for the configured database."""
        pass

    def connect_args(self) -> Dict[str, Any]:
        return {"connect_timeout": self.timeout}

    def engine_options(self) -> Dict[str, Any]:
        return {
            "poolclass": QueuePool,
            "pool_size": self.pool_size,
            "max_overflow": self.pool_size * 2,
            "pool_pre_ping": True,
        }

    def connect(self) -> None:
        """Create the engine and its pool."""
        try:
            self._engine = create_engine(
                self.build_url(),
                connect_args=self.connect_args(),
                **self.engine_options(),
            )
            self._connection = self._engine
        except SQLAlchemyError as e:
            raise ConnectionError(f"Failed to create {self.config.db_type.value} engine: {e}") from e

    def disconnect(self) -> None:
        """Dispose the pool."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
        self._connection = None

    @property
    def engine(self):
        if self._engine is None:
            self.connect()
        return self._engine

    # -- execution -----------------------------------------------------------

    def _fetch(self, conn: Connection, sql: str, params: Any) -> List[Dict[str, Any]]:
        statement, ordered = rewrite_placeholders(sql, params, self.paramstyle)
        try:
            result = conn.exec_driver_sql(statement, ordered)
            if not result.returns_rows:
                return []
            return [dict(row._mapping) for row in result]
        except DBAPIError as e:
            if self.query_timeout is not None and self.is_timeout_error(e):
                raise QueryTimeoutError(f"Query exceeded {self.query_timeout} seconds") from e
            raise

    def execute(self, sql: str, params: Any = None) -> List[Dict[str, Any]]:
        """Run one statement written in this backend's native placeholder style."""
        with self.engine.connect() as conn:
            return self._fetch(conn, sql, params)

    def run_list(self, query) -> Tuple[List[Dict[str, Any]], int]:
        with self.engine.connect() as conn:
            rows = self._fetch(conn, query.sql, query.params)
            counted = self._fetch(conn, query.count_sql, query.count_params)
        return rows, _count_value(counted)

    def run_count(self, query) -> int:
        with self.engine.connect() as conn:
            return _count_value(self._fetch(conn, query.count_sql, query.count_params))

    def run_by_id(self, query) -> Optional[Dict[str, Any]]:
        rows = self.execute(query.sql, query.params)
        return rows[0] if rows else None

    def is_timeout_error(self, error: BaseException) -> bool:
        """True when the driver cancelled the statement at its time bound."""
        # The wrapped driver error only; the wrapper text carries SQL and parameters
        message = str(getattr(error, "orig", None) or error).lower()
        return any(signature in message for signature in TIMEOUT_SIGNATURES)

    def is_stale_error(self, error: BaseException) -> bool:
        if isinstance(error, DBAPIError) and error.connection_invalidated:
            return True
        message = str(error).lower()
        return any(signature in message for signature in STALE_SIGNATURES)

    # -- introspection -------------------------------------------------------

    def discovery_schemas(self, inspector) -> Sequence[Optional[str]]:
        """Schemas searched by discovery; None means the connection default."""
        return [
            schema for schema in inspector.get_schema_names()
            if schema not in self.excluded_schemas
        ]

    def list_tables(self) -> List[TableInfo]:
        """List tables and views across the user schemas."""
        inspector = inspect(self.engine)
        tables = []
        for schema in self.discovery_schemas(inspector):
            label = schema if schema is not None else self.default_schema_label()
            for table_name in inspector.get_table_names(schema=schema):
                tables.append(TableInfo(name=table_name, schema=label, table_type="TABLE"))
            for view_name in inspector.get_view_names(schema=schema):
                tables.append(TableInfo(name=view_name, schema=label, table_type="VIEW"))
        return sorted(tables, key=lambda table: (table.name, table.schema or ""))

    def default_schema_label(self) -> Optional[str]:
        return self.config.database or None

    def get_columns(self, table) -> List[ColumnInfo]:
        """Live columns of a table, in table order."""
        # A fresh inspector per call; Inspector caches reflection results
        inspector = inspect(self.engine)
        try:
            raw_columns = inspector.get_columns(table.name, schema=table.schema)
            primary_keys = inspector.get_pk_constraint(table.name, schema=table.schema) or {}
        except NoSuchTableError:
            raise TableNotFound(f"Table {table.name} does not exist", table=table.name)
        if not raw_columns:
            raise TableNotFound(f"Table {table.name} does not exist", table=table.name)

        pk_columns = set(primary_keys.get("constrained_columns") or ())
        return [
            ColumnInfo(
                name=col["name"],
                data_type=str(col["type"]),
                is_nullable=bool(col.get("nullable", True)),
                default_value=str(col["default"]) if col.get("default") is not None else None,
                is_primary_key=col["name"] in pk_columns,
            )
            for col in raw_columns
        ]

    def execute_ddl(self, statements: Sequence[str]) -> None:
        """Run DDL statements in one transaction, without parameter rewriting."""
        with self.engine.begin() as conn:
            for statement in statements:
                conn.exec_driver_sql(statement)


def _count_value(rows: List[Dict[str, Any]]) -> int:
    if not rows:
        return 0
    row = rows[0]
    for key, value in row.items():
        if str(key).lower() in ("cnt", "count"):
            return int(value or 0)
    return int(next(iter(row.values()), 0) or 0)
