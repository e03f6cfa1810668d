"""
Connection Manager - Pools connectors per target database
"""
from collections import OrderedDict
from typing import Callable, Dict, Optional, TypeVar
import threading

import structlog

from autorest.connections.connection_config import ConnectionConfig, DatabaseType
from autorest.connections.connectors.base_connector import BaseConnector
from autorest.connections.connectors.mongodb_connector import MongoDBConnector
from autorest.connections.connectors.mssql_connector import MSSQLConnector
from autorest.connections.connectors.mysql_connector import MySQLConnector
from autorest.connections.connectors.postgres_connector import PostgreSQLConnector
from autorest.connections.connectors.sqlite_connector import SQLiteConnector
from autorest.core.errors import UnsupportedDatabaseType

logger = structlog.get_logger()

T = TypeVar("T")


def get_connector_class(db_type: DatabaseType):
    """
    Get connector class for database type.

    Raises:
        UnsupportedDatabaseType: If there is no connector for the type
    """
    if db_type is DatabaseType.POSTGRESQL:
        return PostgreSQLConnector
    elif db_type is DatabaseType.MYSQL:
        return MySQLConnector
    elif db_type is DatabaseType.MSSQL:
        return MSSQLConnector
    elif db_type is DatabaseType.SQLITE:
        return SQLiteConnector
    elif db_type is DatabaseType.MONGODB:
        return MongoDBConnector
    raise UnsupportedDatabaseType(db_type)


class ConnectionManager:
    """
    Manages database connectors and their pools.

    Connectors are keyed by the configuration fingerprint, so configs that
    point at the same database with the same credentials share one pool.
    The number of pools is bounded; the least recently used one is disposed
    when the bound is exceeded.
    """

    def __init__(
        self,
        max_pools: int = 32,
        pool_size: int = 5,
        connect_timeout: int = 10,
        query_timeout: Optional[float] = None,
        connector_factory: Optional[Callable[[ConnectionConfig], BaseConnector]] = None,
    ):
        """
        Initialize connection manager.

        Args:
            max_pools: Maximum number of live connector pools
            pool_size: Default pool size per connector
            connect_timeout: Default connect timeout in seconds
            query_timeout: Statement bound handed to each driver, in seconds
            connector_factory: Builds connectors; defaults to the per-backend classes
        """
        self.max_pools = max(1, max_pools)
        self.pool_size = pool_size
        self.connect_timeout = connect_timeout
        self.query_timeout = query_timeout
        self._factory = connector_factory or self._create_connector
        self._connectors: "OrderedDict[str, BaseConnector]" = OrderedDict()
        self._lock = threading.Lock()

    def _create_connector(self, config: ConnectionConfig) -> BaseConnector:
        connector_class = get_connector_class(config.db_type)
        connector = connector_class(
            config,
            pool_size=self.pool_size,
            timeout=self.connect_timeout,
            query_timeout=self.query_timeout,
        )
        connector.connect()
        return connector

    def get_connector(self, config: ConnectionConfig) -> BaseConnector:
        """
        Get or create the connector for a configuration.

        Raises:
            UnsupportedDatabaseType: If the backend type has no connector
            ConnectionError: If the pool cannot be created
        """
        key = config.fingerprint()
        evicted = []
        with self._lock:
            connector = self._connectors.get(key)
            if connector is not None:
                self._connectors.move_to_end(key)
                return connector

            connector = self._factory(config)
            self._connectors[key] = connector
            while len(self._connectors) > self.max_pools:
                evicted.append(self._connectors.popitem(last=False))

        logger.info("connector_created", db_type=config.db_type.value, pool_key=key[:20])
        for evicted_key, evicted_connector in evicted:
            self._dispose(evicted_key, evicted_connector, reason="lru")
        return connector

    def discard(self, config: ConnectionConfig) -> None:
        """Dispose the pool of a configuration, if any."""
        key = config.fingerprint()
        with self._lock:
            connector = self._connectors.pop(key, None)
        if connector is not None:
            self._dispose(key, connector, reason="discarded")

    def run(self, config: ConnectionConfig, operation: Callable[[BaseConnector], T]) -> T:
        """
        Run a blocking operation against the pooled connector.

        When the failure looks like a stale pooled connection the pool is
        rebuilt and the operation retried once.
        """
        connector = self.get_connector(config)
        try:
            return operation(connector)
        except Exception as e:
            if not connector.is_stale_error(e):
                raise
            logger.warning("stale_connection_retry", db_type=config.db_type.value, error=str(e))
            self.discard(config)
            return operation(self.get_connector(config))

    def close_all(self) -> None:
        """Dispose every pool."""
        with self._lock:
            connectors = list(self._connectors.items())
            self._connectors.clear()
        for key, connector in connectors:
            self._dispose(key, connector, reason="shutdown")
        logger.info("connectors_closed", count=len(connectors))

    def active_pools(self) -> Dict[str, str]:
        """Pool keys mapped to backend type."""
        with self._lock:
            return {key: connector.config.db_type.value for key, connector in self._connectors.items()}

    def _dispose(self, key: str, connector: BaseConnector, reason: str) -> None:
        try:
            connector.disconnect()
        except Exception as e:
            logger.warning("connector_dispose_failed", pool_key=key[:20], reason=reason, error=str(e))
        else:
            logger.info("connector_disposed", pool_key=key[:20], reason=reason)
