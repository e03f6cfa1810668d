"""
Unit tests for the MongoDB document-query builder and connector helpers
"""
from datetime import datetime

import pytest
from bson import ObjectId
from pymongo.errors import ExecutionTimeout

from autorest.connections.connection_config import ConnectionConfig, DatabaseType
from autorest.connections.connectors.mongodb_connector import MongoDBConnector, serialize_value
from autorest.core.errors import QueryTimeoutError
from autorest.services.auto_rest.dialects import TableRef, get_query_builder
from autorest.services.auto_rest.dialects.mongodb import like_to_regex, mongodb_builder
from autorest.services.auto_rest.filter_ast import Combinator, CombinatorKind, Condition, FilterOperator
from autorest.services.auto_rest.filter_parser import parse_filter

FIELDS = ["_id", "name", "status", "qty"]
ITEMS = TableRef(name="items")


class TestMongoFilters:
    """Test filter AST to operator document translation"""

    def test_registry(self):
        assert get_query_builder("mongo") is mongodb_builder

    def test_comparisons(self):
        node = parse_filter({"qty": {"gte": 2, "lt": 9}}, FIELDS)
        assert mongodb_builder.compile_filter(node) == {
            "$and": [{"qty": {"$gte": 2}}, {"qty": {"$lt": 9}}]
        }

    def test_or_and_in(self):
        node = parse_filter({"or": [{"status": {"in": ["a", "b"]}}, {"name": None}]}, FIELDS)
        assert mongodb_builder.compile_filter(node) == {
            "$or": [{"status": {"$in": ["a", "b"]}}, {"name": None}]
        }

    def test_between_and_not_null(self):
        assert mongodb_builder.compile_condition(Condition("qty", FilterOperator.BETWEEN, (1, 3))) == {
            "qty": {"$gte": 1, "$lte": 3}
        }
        assert mongodb_builder.compile_condition(Condition("name", FilterOperator.ISNULL, False)) == {
            "name": {"$ne": None}
        }

    def test_like_patterns_are_escaped(self):
        assert like_to_regex("a.b%c_") == r"a\.b.*c."
        ilike = mongodb_builder.compile_condition(Condition("name", FilterOperator.ILIKE, "%(x)%"))
        assert ilike == {"name": {"$regex": r".*\(x\).*", "$options": "i"}}

    def test_empty_groups(self):
        assert mongodb_builder.compile_filter(None) == {}
        assert mongodb_builder.compile_filter(Combinator(CombinatorKind.AND, ())) == {}
        assert mongodb_builder.compile_filter(Combinator(CombinatorKind.OR, ())) == {"_id": {"$in": []}}


class TestMongoQueries:
    """Test list and by-id query documents"""

    def test_list_query(self):
        node = parse_filter('status:eq:"open"', FIELDS)
        query = mongodb_builder.build_list_query(ITEMS, ["name", "qty"], node, (("qty", "desc"),), 3, 10)
        assert query.collection == "items"
        assert query.filter == {"status": {"$eq": "open"}}
        assert query.count_filter == query.filter
        assert query.projection == {"name": 1, "qty": 1, "_id": 0}
        assert query.sort == [("qty", -1)]
        assert query.skip == 20
        assert query.limit == 10

    def test_empty_projection(self):
        query = mongodb_builder.build_list_query(ITEMS, [], None, (), 1, 10)
        assert query.projection == {"_row": 1, "_id": 0}

    def test_by_id_converts_object_id(self):
        oid = ObjectId()
        query = mongodb_builder.build_by_id_query(ITEMS, FIELDS, "_id", str(oid))
        assert query.filter == {"_id": oid}
        assert query.projection["_id"] == 1

    def test_by_id_keeps_plain_keys(self):
        query = mongodb_builder.build_by_id_query(ITEMS, ["sku"], "sku", "not-an-object-id")
        assert query.filter == {"sku": "not-an-object-id"}

    def test_by_id_with_row_policy(self):
        policy = Condition("status", FilterOperator.EQ, "open")
        query = mongodb_builder.build_by_id_query(ITEMS, ["name"], "sku", "A1", policy)
        assert query.filter == {"$and": [{"sku": "A1"}, {"status": {"$eq": "open"}}]}


class TestSerializeValue:
    """Test BSON value serialization"""

    def test_nested_values(self):
        oid = ObjectId()
        stamp = datetime(2026, 1, 2, 3, 4, 5)
        assert serialize_value({"_id": oid, "at": [stamp], "n": 1}) == {
            "_id": str(oid),
            "at": ["2026-01-02T03:04:05"],
            "n": 1,
        }


class RecordingCollection:
    """Collection stand-in that records the server-side time bound of each call."""

    def __init__(self, documents, fail=False):
        self.documents = documents
        self.fail = fail
        self.calls = []

    def _check(self):
        if self.fail:
            raise ExecutionTimeout("operation exceeded time limit", code=50)

    def find(self, filter, **kwargs):
        self.calls.append(("find", kwargs.get("max_time_ms")))
        self._check()
        return iter(self.documents)

    def count_documents(self, filter, **kwargs):
        self.calls.append(("count_documents", kwargs.get("maxTimeMS")))
        self._check()
        return len(self.documents)

    def find_one(self, filter, **kwargs):
        self.calls.append(("find_one", kwargs.get("max_time_ms")))
        self._check()
        return self.documents[0] if self.documents else None


def mongo_connector(collection, query_timeout=2.5):
    connector = MongoDBConnector(
        ConnectionConfig(db_type=DatabaseType.MONGODB, database="shop"), query_timeout=query_timeout
    )
    connector.db = {"items": collection}
    return connector


class TestMongoQueryTimeout:
    """Test the server-side time bound on reads"""

    def test_every_read_carries_max_time(self):
        oid = ObjectId()
        collection = RecordingCollection([{"_id": oid, "name": "lamp"}])
        connector = mongo_connector(collection)
        list_query = mongodb_builder.build_list_query(ITEMS, ["_id", "name"], None, (), 1, 10)

        rows, total = connector.run_list(list_query)
        assert rows == [{"_id": str(oid), "name": "lamp"}]
        assert total == 1
        assert connector.run_count(list_query) == 1
        assert connector.run_by_id(mongodb_builder.build_by_id_query(ITEMS, FIELDS, "_id", str(oid)))["name"] == "lamp"
        assert collection.calls == [
            ("find", 2500),
            ("count_documents", 2500),
            ("count_documents", 2500),
            ("find_one", 2500),
        ]

    def test_no_bound_without_query_timeout(self):
        collection = RecordingCollection([])
        connector = mongo_connector(collection, query_timeout=None)
        connector.run_count(mongodb_builder.build_list_query(ITEMS, [], None, (), 1, 10))
        assert collection.calls == [("count_documents", None)]

    def test_server_timeout_becomes_query_timeout(self):
        connector = mongo_connector(RecordingCollection([], fail=True))
        with pytest.raises(QueryTimeoutError):
            connector.run_list(mongodb_builder.build_list_query(ITEMS, [], None, (), 1, 10))
        with pytest.raises(QueryTimeoutError):
            connector.run_by_id(mongodb_builder.build_by_id_query(ITEMS, ["sku"], "sku", "A1"))
