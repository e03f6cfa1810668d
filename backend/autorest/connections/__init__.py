"""
Connections Package - Multi-database connection management
"""
from autorest.connections.connection_config import ConnectionConfig, DatabaseType
from autorest.connections.connection_manager import ConnectionManager

__all__ = [
    "ConnectionConfig",
    "DatabaseType",
    "ConnectionManager",
]
