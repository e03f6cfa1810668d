"""
MongoDB Connector
Implements BaseConnector for MongoDB databases
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import MongoClient
from pymongo.errors import AutoReconnect, ConnectionFailure, ExecutionTimeout, PyMongoError

from autorest.connections.connectors.base_connector import BaseConnector, ColumnInfo, TableInfo
from autorest.core.errors import QueryTimeoutError, TableNotFound
from autorest.services.auto_rest.dialects.base import EMPTY_PROJECTION_ALIAS

# Documents sampled to infer the columns of a collection
SAMPLE_SIZE = 100


def serialize_value(value: Any) -> Any:
    """Convert BSON values to JSON-serializable ones."""
    if isinstance(value, ObjectId):
        return str(value)
    elif isinstance(value, datetime):
        return value.isoformat()
    elif isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [serialize_value(item) for item in value]
    else:
        return value


class MongoDBConnector(BaseConnector):
    """MongoDB connector implementation"""

    def __init__(self, config, pool_size: int = 5, timeout: int = 30, query_timeout: Optional[float] = None):
        super().__init__(config, pool_size, timeout, query_timeout)
        self.client: Optional[MongoClient] = None
        self.db = None

    def connect(self):
        """Create the MongoDB client and its pool"""
        try:
            self.client = MongoClient(
                host=self.config.host or "localhost",
                port=self.config.port or 27017,
                username=self.config.username or None,
                password=self.config.password or None,
                tls=self.config.ssl_enabled,
                serverSelectionTimeoutMS=self.timeout * 1000,
                connectTimeoutMS=self.timeout * 1000,
                maxPoolSize=self.pool_size,
            )
            self.db = self.client[self.config.database]
            self._connection = self.client
        except PyMongoError as e:
            raise ConnectionError(f"Failed to connect to MongoDB: {e}") from e

    def disconnect(self):
        """Close MongoDB client"""
        if self.client:
            self.client.close()
            self.client = None
            self.db = None
            self._connection = None

    def _database(self):
        if self.db is None:
            self.connect()
        return self.db

    def list_tables(self) -> List[TableInfo]:
        """List user collections"""
        db = self._database()
        names = sorted(name for name in db.list_collection_names() if not name.startswith("system."))
        return [TableInfo(name=name, schema=self.config.database, table_type="COLLECTION") for name in names]

    def get_columns(self, table) -> List[ColumnInfo]:
        """Infer fields from a sample of documents, ``_id`` first"""
        db = self._database()
        if table.name not in db.list_collection_names():
            raise TableNotFound(f"Collection {table.name} does not exist", table=table.name)

        fields: Dict[str, str] = {"_id": "objectId"}
        for document in db[table.name].find({}, limit=SAMPLE_SIZE):
            for key, value in document.items():
                if key not in fields:
                    fields[key] = type(value).__name__
        return [
            ColumnInfo(name=name, data_type=data_type, is_primary_key=(name == "_id"))
            for name, data_type in fields.items()
        ]

    def _max_time_ms(self) -> Optional[int]:
        if self.query_timeout is None:
            return None
        return max(1, int(self.query_timeout * 1000))

    def _server_bounded(self, operation):
        try:
            return operation()
        except ExecutionTimeout as e:
            raise QueryTimeoutError(f"Query exceeded {self.query_timeout} seconds") from e

    def _count(self, collection, filter: Dict[str, Any]) -> int:
        max_time_ms = self._max_time_ms()
        if max_time_ms is None:
            return collection.count_documents(filter)
        return collection.count_documents(filter, maxTimeMS=max_time_ms)

    def run_list(self, query) -> Tuple[List[Dict[str, Any]], int]:
        collection = self._database()[query.collection]

        def list_page():
            cursor = collection.find(
                query.filter,
                projection=query.projection,
                sort=query.sort or None,
                skip=query.skip,
                limit=query.limit,
                max_time_ms=self._max_time_ms(),
            )
            return [self._row(document) for document in cursor], self._count(collection, query.filter)

        return self._server_bounded(list_page)

    def run_count(self, query) -> int:
        collection = self._database()[query.collection]
        return self._server_bounded(lambda: self._count(collection, query.filter))

    def run_by_id(self, query) -> Optional[Dict[str, Any]]:
        collection = self._database()[query.collection]
        document = self._server_bounded(
            lambda: collection.find_one(query.filter, projection=query.projection, max_time_ms=self._max_time_ms())
        )
        return self._row(document) if document is not None else None

    def is_stale_error(self, error: BaseException) -> bool:
        return isinstance(error, (AutoReconnect, ConnectionFailure))

    def _row(self, document: Dict[str, Any]) -> Dict[str, Any]:
        row = serialize_value(document)
        if EMPTY_PROJECTION_ALIAS in row:
            # Placeholder projection field; documents never carry it
            row.pop(EMPTY_PROJECTION_ALIAS)
        return row
