"""
SQL Server dialect: [bracketed] identifiers, named @paramN placeholders

OFFSET/FETCH paging is only valid after ORDER BY, so a deterministic order is
always emitted even when the caller asked for none.
"""
from autorest.connections.connection_config import DatabaseType
from autorest.services.auto_rest.dialects.base import NamedCollector, ParameterCollector, SQLDialect


class MSSQLDialect(SQLDialect):
    db_type = DatabaseType.MSSQL
    quote_open = "["
    quote_close = "]"
    default_schema = "dbo"
    requires_order_by = True

    def new_collector(self) -> ParameterCollector:
        return NamedCollector()

    def pagination_clause(self, collector: ParameterCollector, limit: int, offset: int) -> str:
        offset_param = collector.add(offset)
        limit_param = collector.add(limit)
        return f" OFFSET {offset_param} ROWS FETCH NEXT {limit_param} ROWS ONLY"

    def single_row_select(self, select_list: str, source: str, where: str) -> str:
        return f"SELECT TOP (1) {select_list} FROM {source} WHERE {where}"


mssql_dialect = MSSQLDialect()
