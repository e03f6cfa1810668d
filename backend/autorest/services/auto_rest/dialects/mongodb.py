"""
MongoDB document-query builder

Maps the same filter AST to an operator document. LIKE patterns become
anchor-free regular expressions where every literal character is escaped.
"""
from dataclasses import dataclass
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId

from autorest.connections.connection_config import DatabaseType
from autorest.services.auto_rest.dialects.base import EMPTY_PROJECTION_ALIAS, TableRef
from autorest.services.auto_rest.filter_ast import (
    CombinatorKind,
    Condition,
    FilterNode,
    FilterOperator,
    SortSpec,
)
from autorest.services.auto_rest.pagination import clamp_page_size, compute_offset

_COMPARISONS = {
    FilterOperator.EQ: "$eq",
    FilterOperator.NEQ: "$ne",
    FilterOperator.GT: "$gt",
    FilterOperator.GTE: "$gte",
    FilterOperator.LT: "$lt",
    FilterOperator.LTE: "$lte",
}


@dataclass(frozen=True)
class MongoListQuery:
    collection: str
    filter: Dict[str, Any]
    projection: Dict[str, int]
    sort: List[Tuple[str, int]]
    skip: int
    limit: int

    @property
    def count_filter(self) -> Dict[str, Any]:
        return self.filter


@dataclass(frozen=True)
class MongoByIdQuery:
    collection: str
    filter: Dict[str, Any]
    projection: Dict[str, int]


def like_to_regex(pattern: str) -> str:
    """Translate a SQL LIKE pattern: ``%`` -> ``.*``, ``_`` -> ``.``."""
    parts = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return "".join(parts)


class MongoQueryBuilder:
    """Document-query counterpart of the SQL dialects."""

    db_type = DatabaseType.MONGODB
    default_schema = None

    def compile_filter(self, node: Optional[FilterNode]) -> Dict[str, Any]:
        if node is None:
            return {}
        if isinstance(node, Condition):
            return self.compile_condition(node)

        if not node.children:
            return {} if node.kind is CombinatorKind.AND else {"_id": {"$in": []}}
        parts = [self.compile_filter(child) for child in node.children]
        if len(parts) == 1:
            return parts[0]
        operator = "$and" if node.kind is CombinatorKind.AND else "$or"
        return {operator: parts}

    def compile_condition(self, condition: Condition) -> Dict[str, Any]:
        field, op, value = condition.field, condition.op, condition.value

        if op is FilterOperator.ISNULL:
            return {field: None} if value else {field: {"$ne": None}}
        if op is FilterOperator.IN:
            return {field: {"$in": list(value)}}
        if op is FilterOperator.BETWEEN:
            low, high = value
            return {field: {"$gte": low, "$lte": high}}
        if op is FilterOperator.LIKE:
            return {field: {"$regex": like_to_regex(value)}}
        if op is FilterOperator.ILIKE:
            return {field: {"$regex": like_to_regex(value), "$options": "i"}}
        return {field: {_COMPARISONS[op]: value}}

    def projection_document(self, projection: Sequence[str]) -> Dict[str, int]:
        if not projection:
            return {EMPTY_PROJECTION_ALIAS: 1, "_id": 0}
        document = {field: 1 for field in projection}
        if "_id" not in document:
            document["_id"] = 0
        return document

    def build_list_query(
        self,
        table: TableRef,
        projection: Sequence[str],
        filter_ast: Optional[FilterNode],
        sort: SortSpec,
        page: Any,
        page_size: Any,
    ) -> MongoListQuery:
        return MongoListQuery(
            collection=table.name,
            filter=self.compile_filter(filter_ast),
            projection=self.projection_document(projection),
            sort=[(column, -1 if direction == "desc" else 1) for column, direction in sort],
            skip=compute_offset(page, page_size),
            limit=clamp_page_size(page_size),
        )

    def build_by_id_query(
        self,
        table: TableRef,
        projection: Sequence[str],
        primary_key: str,
        record_id: Any,
        filter_ast: Optional[FilterNode] = None,
    ) -> MongoByIdQuery:
        if primary_key == "_id" and isinstance(record_id, str) and ObjectId.is_valid(record_id):
            record_id = ObjectId(record_id)
        document = {primary_key: record_id}
        if filter_ast is not None:
            document = {"$and": [document, self.compile_filter(filter_ast)]}
        return MongoByIdQuery(
            collection=table.name,
            filter=document,
            projection=self.projection_document(projection),
        )


mongodb_builder = MongoQueryBuilder()
