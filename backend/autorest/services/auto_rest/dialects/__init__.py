"""
Dialect query builders, one per supported backend family
"""
from autorest.connections.connection_config import DatabaseType
from autorest.core.errors import UnsupportedDatabaseType
from autorest.services.auto_rest.dialects.base import (
    EMPTY_PROJECTION_ALIAS,
    ByIdQuery,
    ListQuery,
    SQLDialect,
    TableRef,
)
from autorest.services.auto_rest.dialects.mongodb import (
    MongoByIdQuery,
    MongoListQuery,
    MongoQueryBuilder,
    mongodb_builder,
)
from autorest.services.auto_rest.dialects.mssql import mssql_dialect
from autorest.services.auto_rest.dialects.mysql import mysql_dialect
from autorest.services.auto_rest.dialects.postgres import postgres_dialect
from autorest.services.auto_rest.dialects.sqlite import sqlite_dialect


def get_query_builder(db_type):
    """
    Return the query builder for a backend type.

    Raises:
        UnsupportedDatabaseType: If no builder exists for the type
    """
    if not isinstance(db_type, DatabaseType):
        db_type = DatabaseType.parse(db_type)

    if db_type is DatabaseType.POSTGRESQL:
        return postgres_dialect
    elif db_type is DatabaseType.MYSQL:
        return mysql_dialect
    elif db_type is DatabaseType.MSSQL:
        return mssql_dialect
    elif db_type is DatabaseType.SQLITE:
        return sqlite_dialect
    elif db_type is DatabaseType.MONGODB:
        return mongodb_builder
    raise UnsupportedDatabaseType(db_type)


__all__ = [
    "EMPTY_PROJECTION_ALIAS",
    "ByIdQuery",
    "ListQuery",
    "MongoByIdQuery",
    "MongoListQuery",
    "MongoQueryBuilder",
    "SQLDialect",
    "TableRef",
    "get_query_builder",
]
