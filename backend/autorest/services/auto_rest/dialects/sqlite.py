"""
SQLite dialect: "double quoted" identifiers, ? placeholders
"""
from autorest.connections.connection_config import DatabaseType
from autorest.services.auto_rest.dialects.base import ParameterCollector, PositionalCollector, SQLDialect


class SQLiteDialect(SQLDialect):
    db_type = DatabaseType.SQLITE

    def new_collector(self) -> ParameterCollector:
        return PositionalCollector(numbered=False)

    def pagination_clause(self, collector: ParameterCollector, limit: int, offset: int) -> str:
        return f" LIMIT {collector.add(limit)} OFFSET {collector.add(offset)}"


sqlite_dialect = SQLiteDialect()
