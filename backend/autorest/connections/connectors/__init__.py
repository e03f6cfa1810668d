"""
Connectors Package - Database connector implementations
"""
from autorest.connections.connectors.base_connector import (
    BaseConnector,
    ChangeListener,
    TableInfo,
    ColumnInfo,
)

__all__ = [
    "BaseConnector",
    "ChangeListener",
    "TableInfo",
    "ColumnInfo",
]
