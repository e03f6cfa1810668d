"""
PostgreSQL dialect: "double quoted" identifiers, $1..$n placeholders
"""
from autorest.connections.connection_config import DatabaseType
from autorest.services.auto_rest.dialects.base import ParameterCollector, PositionalCollector, SQLDialect


class PostgreSQLDialect(SQLDialect):
    db_type = DatabaseType.POSTGRESQL
    default_schema = "public"

    def new_collector(self) -> ParameterCollector:
        return PositionalCollector(numbered=True)

    def like_clause(self, column: str, placeholder: str, case_insensitive: bool) -> str:
        return f"{column} {'ILIKE' if case_insensitive else 'LIKE'} {placeholder}"

    def pagination_clause(self, collector: ParameterCollector, limit: int, offset: int) -> str:
        return f" LIMIT {collector.add(limit)} OFFSET {collector.add(offset)}"


postgres_dialect = PostgreSQLDialect()
