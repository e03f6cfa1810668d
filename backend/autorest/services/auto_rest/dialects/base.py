"""
Base SQL dialect query builder

Builders are pure: given a table reference, a projection, a filter AST, a sort
spec and pagination they return query text plus bound parameters in the
dialect's native placeholder convention. Identifiers are always quoted and
values are always bound, never interpolated.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

from autorest.connections.connection_config import DatabaseType
from autorest.services.auto_rest.filter_ast import (
    Combinator,
    CombinatorKind,
    Condition,
    FilterNode,
    FilterOperator,
    SortSpec,
)
from autorest.services.auto_rest.pagination import clamp_page_size, compute_offset

Params = Union[List[Any], Dict[str, Any]]

# Alias used when a caller may not see any non-masked column
EMPTY_PROJECTION_ALIAS = "_row"

_COMPARISONS = {
    FilterOperator.EQ: "=",
    FilterOperator.NEQ: "<>",
    FilterOperator.GT: ">",
    FilterOperator.GTE: ">=",
    FilterOperator.LT: "<",
    FilterOperator.LTE: "<=",
}


@dataclass(frozen=True)
class TableRef:
    name: str
    schema: Optional[str] = None


@dataclass(frozen=True)
class ListQuery:
    """Data query, count query and their parameter sets."""
    sql: str
    count_sql: str
    params: Params
    count_params: Params


@dataclass(frozen=True)
class ByIdQuery:
    sql: str
    params: Params


class ParameterCollector(ABC):
    """Accumulates bound values and hands out placeholders in order."""

    @abstractmethod
    def add(self, value: Any) -> str:
        """Bind a value and return the placeholder that refers to it."""

    @abstractmethod
    def snapshot(self) -> Params:
        """Copy of the parameters bound so far."""


class PositionalCollector(ParameterCollector):
    """``$1..$n`` (numbered) or ``?`` (order-tracked) placeholders."""

    def __init__(self, numbered: bool):
        self._numbered = numbered
        self._values: List[Any] = []

    def add(self, value: Any) -> str:
        self._values.append(value)
        return f"${len(self._values)}" if self._numbered else "?"

    def snapshot(self) -> List[Any]:
        return list(self._values)


class NamedCollector(ParameterCollector):
    """``@param1..@paramN`` placeholders, numbered across the whole statement."""

    def __init__(self, prefix: str = "param"):
        self._prefix = prefix
        self._values: Dict[str, Any] = {}

    def add(self, value: Any) -> str:
        name = f"{self._prefix}{len(self._values) + 1}"
        self._values[name] = value
        return f"@{name}"

    def snapshot(self) -> Dict[str, Any]:
        return dict(self._values)


class SQLDialect(ABC):
    """Shared SQL generation; subclasses supply quoting, placeholders and paging."""

    db_type: DatabaseType
    quote_open = '"'
    quote_close = '"'
    default_schema: Optional[str] = None
    requires_order_by = False

    @abstractmethod
    def new_collector(self) -> ParameterCollector:
        """Create a parameter collector for one statement."""

    @abstractmethod
    def pagination_clause(self, collector: ParameterCollector, limit: int, offset: int) -> str:
        """Return the paging suffix, binding limit and offset through the collector."""

    # -- identifiers -------------------------------------------------------

    def quote_identifier(self, name: str) -> str:
        escaped = str(name).replace(self.quote_close, self.quote_close * 2)
        return f"{self.quote_open}{escaped}{self.quote_close}"

    def table_reference(self, table: TableRef) -> str:
        schema = table.schema or self.default_schema
        if schema:
            return f"{self.quote_identifier(schema)}.{self.quote_identifier(table.name)}"
        return self.quote_identifier(table.name)

    def select_list(self, projection: Sequence[str]) -> str:
        if not projection:
            return f"1 AS {self.quote_identifier(EMPTY_PROJECTION_ALIAS)}"
        return ", ".join(self.quote_identifier(field) for field in projection)

    # -- filters -----------------------------------------------------------

    def compile_filter(self, node: FilterNode, collector: ParameterCollector) -> str:
        if isinstance(node, Condition):
            return self.compile_condition(node, collector)

        if not node.children:
            return "1 = 1" if node.kind is CombinatorKind.AND else "1 = 0"
        parts = [self.compile_filter(child, collector) for child in node.children]
        if len(parts) == 1:
            return parts[0]
        joiner = " AND " if node.kind is CombinatorKind.AND else " OR "
        return "(" + joiner.join(parts) + ")"

    def compile_condition(self, condition: Condition, collector: ParameterCollector) -> str:
        column = self.quote_identifier(condition.field)
        op = condition.op

        if op is FilterOperator.ISNULL:
            return f"{column} IS NULL" if condition.value else f"{column} IS NOT NULL"

        if op is FilterOperator.IN:
            if not condition.value:
                return "1 = 0"
            placeholders = ", ".join(collector.add(value) for value in condition.value)
            return f"{column} IN ({placeholders})"

        if op is FilterOperator.BETWEEN:
            low, high = condition.value
            return f"{column} BETWEEN {collector.add(low)} AND {collector.add(high)}"

        if op is FilterOperator.LIKE:
            return self.like_clause(column, collector.add(condition.value), case_insensitive=False)

        if op is FilterOperator.ILIKE:
            return self.like_clause(column, collector.add(condition.value), case_insensitive=True)

        return f"{column} {_COMPARISONS[op]} {collector.add(condition.value)}"

    def like_clause(self, column: str, placeholder: str, case_insensitive: bool) -> str:
        if case_insensitive:
            return f"LOWER({column}) LIKE LOWER({placeholder})"
        return f"{column} LIKE {placeholder}"

    # -- ordering ----------------------------------------------------------

    def order_by_clause(self, sort: SortSpec, projection: Sequence[str]) -> str:
        if sort:
            items = ", ".join(
                f"{self.quote_identifier(column)} {'DESC' if direction == 'desc' else 'ASC'}"
                for column, direction in sort
            )
            return f" ORDER BY {items}"
        if self.requires_order_by:
            if projection:
                return f" ORDER BY {self.quote_identifier(projection[0])}"
            return " ORDER BY (SELECT NULL)"
        return ""

    # -- statements --------------------------------------------------------

    def build_list_query(
        self,
        table: TableRef,
        projection: Sequence[str],
        filter_ast: Optional[FilterNode],
        sort: SortSpec,
        page: Any,
        page_size: Any,
    ) -> ListQuery:
        """
        Build the paged data query and its count query.

        The count query shares the WHERE clause; its parameters are the ones
        bound while compiling WHERE, captured before pagination is bound.
        """
        limit = clamp_page_size(page_size)
        offset = compute_offset(page, page_size)
        source = self.table_reference(table)

        collector = self.new_collector()
        where = f" WHERE {self.compile_filter(filter_ast, collector)}" if filter_ast is not None else ""
        count_params = collector.snapshot()

        order_by = self.order_by_clause(sort, projection)
        paging = self.pagination_clause(collector, limit, offset)

        sql = f"SELECT {self.select_list(projection)} FROM {source}{where}{order_by}{paging}"
        count_sql = f"SELECT COUNT(*) AS cnt FROM {source}{where}"
        return ListQuery(sql=sql, count_sql=count_sql, params=collector.snapshot(), count_params=count_params)

    def build_by_id_query(
        self,
        table: TableRef,
        projection: Sequence[str],
        primary_key: str,
        record_id: Any,
        filter_ast: Optional[FilterNode] = None,
    ) -> ByIdQuery:
        """Build a primary-key lookup, optionally constrained by a row policy."""
        collector = self.new_collector()
        where = f"{self.quote_identifier(primary_key)} = {collector.add(record_id)}"
        if filter_ast is not None:
            where = f"{where} AND {self.compile_filter(filter_ast, collector)}"
        sql = self.single_row_select(self.select_list(projection), self.table_reference(table), where)
        return ByIdQuery(sql=sql, params=collector.snapshot())

    def single_row_select(self, select_list: str, source: str, where: str) -> str:
        return f"SELECT {select_list} FROM {source} WHERE {where} LIMIT 1"
