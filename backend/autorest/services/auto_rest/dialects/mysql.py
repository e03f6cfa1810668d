"""
MySQL / MariaDB dialect: `backtick` identifiers, ? placeholders
"""
from autorest.connections.connection_config import DatabaseType
from autorest.services.auto_rest.dialects.base import ParameterCollector, PositionalCollector, SQLDialect


class MySQLDialect(SQLDialect):
    db_type = DatabaseType.MYSQL
    quote_open = "`"
    quote_close = "`"

    def new_collector(self) -> ParameterCollector:
        return PositionalCollector(numbered=False)

    def pagination_clause(self, collector: ParameterCollector, limit: int, offset: int) -> str:
        # LIMIT binds before OFFSET; the driver consumes ? in textual order
        return f" LIMIT {collector.add(limit)} OFFSET {collector.add(offset)}"


mysql_dialect = MySQLDialect()
