"""
Base Connector Interface for Multi-Database Support
All database connectors must implement this interface
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass

from autorest.connections.connection_config import ConnectionConfig


@dataclass
class TableInfo:
    """Table metadata."""
    name: str
    schema: Optional[str]
    table_type: str = "TABLE"  # TABLE, VIEW, COLLECTION


@dataclass
class ColumnInfo:
    """Column metadata."""
    name: str
    data_type: str
    is_nullable: bool = True
    default_value: Optional[str] = None
    is_primary_key: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.data_type,
            "nullable": self.is_nullable,
            "default": self.default_value,
            "primaryKey": self.is_primary_key,
        }


class ChangeListener(ABC):
    """Blocking source of change events for one notification channel."""

    @abstractmethod
    def wait(self, timeout: float) -> List[str]:
        """
        Block up to ``timeout`` seconds for change events.

        Returns:
            Operation names received (possibly empty)
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the listening connection."""
        pass


class BaseConnector(ABC):
    """
    Abstract base class for database connectors.

    Connectors are synchronous; the execution engine runs them in worker
    threads. Each connector owns one driver pool for one ConnectionConfig.
    """

    supports_change_triggers = False

    def __init__(
        self,
        config: ConnectionConfig,
        pool_size: int = 5,
        timeout: int = 30,
        query_timeout: Optional[float] = None,
    ):
        """
        Initialize connector.

        Args:
            config: Decrypted connection parameters
            pool_size: Connection pool size
            timeout: Connection timeout in seconds
            query_timeout: Per-statement bound enforced by the driver, in seconds
        """
        self.config = config
        self.pool_size = config.pool_size or pool_size
        self.timeout = config.timeout_seconds or timeout
        self.query_timeout = query_timeout if query_timeout and query_timeout > 0 else None
        self._connection = None

    @abstractmethod
    def connect(self) -> None:
        """
        Create the driver pool.

        Raises:
            ConnectionError: If the pool cannot be created
        """
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Dispose the driver pool."""
        pass

    @abstractmethod
    def list_tables(self) -> List[TableInfo]:
        """
        List user tables, views or collections.

        Returns:
            List of TableInfo objects ordered by name
        """
        pass

    @abstractmethod
    def get_columns(self, table: Any) -> List[ColumnInfo]:
        """
        Introspect the live columns of a table.

        Args:
            table: TableRef of the table or collection

        Raises:
            TableNotFound: If the table does not exist
        """
        pass

    @abstractmethod
    def run_list(self, query: Any) -> Tuple[List[Dict[str, Any]], int]:
        """
        Execute a built list query.

        Returns:
            (rows of the requested page, total matching rows)
        """
        pass

    @abstractmethod
    def run_count(self, query: Any) -> int:
        """Execute only the count part of a built list query."""
        pass

    @abstractmethod
    def run_by_id(self, query: Any) -> Optional[Dict[str, Any]]:
        """Execute a built by-id query; None when no row matches."""
        pass

    @abstractmethod
    def is_stale_error(self, error: BaseException) -> bool:
        """True when the error means pooled connections went stale."""
        pass

    def install_change_trigger(self, table: Any, channel: str) -> None:
        """
        Install the notification trigger for a table.

        Raises:
            NotImplementedError: If the backend has no trigger support
        """
        raise NotImplementedError(f"{type(self).__name__} does not support change triggers")

    def open_change_listener(self, channel: str) -> ChangeListener:
        """Open a dedicated listener for a notification channel."""
        raise NotImplementedError(f"{type(self).__name__} does not support change triggers")

    def is_connected(self) -> bool:
        """Check if currently connected."""
        return self._connection is not None

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
