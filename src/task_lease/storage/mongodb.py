"""
MongoDB implementation of the atomic task store.

MongoDB guarantees atomicity per document, which is all the claim protocol
needs: `update_many` re-evaluates its filter against each document as it
writes, and `find_one_and_update` matches and modifies one document in a
single indivisible step.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.errors import PyMongoError

from ..models import ID_FIELD, LOCKED_AT_FIELD, STATUS_FIELD, Task, TaskStatus
from ..errors import StoreUnavailableError
from .base import AtomicTaskStore, SortSpec

logger = logging.getLogger(__name__)


class MongoTaskStore(AtomicTaskStore):
    """Task store backed by a MongoDB collection."""

    def __init__(self, conn_params: Optional[Dict[str, Any]] = None):
        """
        Initialize MongoDB task store.

        Args:
            conn_params: Connection parameters:
                - connection_string: Full MongoDB URI (overrides host/port/credentials)
                - host, port, username, password: Used to build the URI
                - db_name: Database name (default: task-lease)
                - collection: Collection name (default: tasks)
                - options: Extra URI options
                - server_selection_timeout_ms: How long to wait for a server
        """
        super().__init__(conn_params)
        self.db_name = self.conn_params.get('db_name', 'task-lease')
        self.collection_name = self.conn_params.get('collection', 'tasks')
        self.client = None
        self.db = None
        self.collection = None

    def _connection_string(self) -> str:
        if self.conn_params.get('connection_string'):
            return self.conn_params['connection_string']

        host = self.conn_params.get('host', 'localhost')
        port = self.conn_params.get('port', 27017)
        username = self.conn_params.get('username')
        password = self.conn_params.get('password')

        connection_string = "mongodb://"
        if username and password:
            connection_string += f"{username}:{password}@"
        connection_string += f"{host}:{port}/"

        options = self.conn_params.get('options', {})
        if options:
            option_str = "&".join(f"{k}={v}" for k, v in options.items())
            connection_string += f"?{option_str}"
        return connection_string

    def initialize(self) -> None:
        """Connect, verify the server is reachable and create indexes."""
        timeout_ms = self.conn_params.get('server_selection_timeout_ms', 5000)
        try:
            # tz_aware so stored lease stamps compare with the UTC clock
            self.client = MongoClient(
                self._connection_string(),
                tz_aware=True,
                serverSelectionTimeoutMS=timeout_ms
            )
            self.client.admin.command('ping')
            self.db = self.client[self.db_name]
            self.collection = self.db[self.collection_name]
            self.collection.create_index([(STATUS_FIELD, ASCENDING), (LOCKED_AT_FIELD, ASCENDING)])
            logger.info(f"Connected to MongoDB collection {self.db_name}.{self.collection_name}")
        except PyMongoError as e:
            logger.error(f"Error connecting to MongoDB: {str(e)}")
            raise StoreUnavailableError(f"Cannot connect to MongoDB: {e}") from e

    def close(self) -> None:
        if self.client:
            self.client.close()
            self.client = None
            self.db = None
            self.collection = None

    def _require_collection(self):
        if self.collection is None:
            raise StoreUnavailableError("MongoDB task store is not initialized")
        return self.collection

    def find_eligible(self, predicate: Dict[str, Any], sort: SortSpec, limit: int,
                      projection: Optional[Iterable[str]] = None) -> List[Task]:
        collection = self._require_collection()
        fields = {name: 1 for name in projection} if projection is not None else None
        try:
            cursor = collection.find(predicate, fields).sort(list(sort)).limit(limit)
            return [Task.from_document(doc) for doc in cursor]
        except PyMongoError as e:
            raise StoreUnavailableError(f"find failed: {e}") from e

    def conditional_bulk_update(self, match: Dict[str, Any], update: Dict[str, Any]) -> int:
        collection = self._require_collection()
        try:
            result = collection.update_many(match, update)
            return result.modified_count
        except PyMongoError as e:
            raise StoreUnavailableError(f"update_many failed: {e}") from e

    def atomic_find_and_modify(self, predicate: Dict[str, Any], update: Dict[str, Any],
                               sort: SortSpec) -> Optional[Task]:
        collection = self._require_collection()
        try:
            document = collection.find_one_and_update(
                predicate,
                update,
                sort=list(sort),
                return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            raise StoreUnavailableError(f"find_one_and_update failed: {e}") from e
        return Task.from_document(document) if document else None

    def find(self, predicate: Dict[str, Any]) -> List[Task]:
        collection = self._require_collection()
        try:
            return [Task.from_document(doc) for doc in collection.find(predicate).sort(ID_FIELD, ASCENDING)]
        except PyMongoError as e:
            raise StoreUnavailableError(f"find failed: {e}") from e

    def insert_tasks(self, payloads: Iterable[Dict[str, Any]]) -> List[Any]:
        collection = self._require_collection()
        documents = []
        for payload in payloads:
            document = dict(payload)
            document[STATUS_FIELD] = TaskStatus.PENDING.value
            documents.append(document)
        if not documents:
            return []
        try:
            result = collection.insert_many(documents, ordered=True)
        except PyMongoError as e:
            raise StoreUnavailableError(f"insert_many failed: {e}") from e
        logger.info(f"Inserted {len(result.inserted_ids)} tasks into {self.collection_name}")
        return list(result.inserted_ids)

    def count_by_status(self) -> Dict[str, int]:
        collection = self._require_collection()
        try:
            rows = collection.aggregate([{"$group": {"_id": f"${STATUS_FIELD}", "count": {"$sum": 1}}}])
            return {row["_id"]: row["count"] for row in rows}
        except PyMongoError as e:
            raise StoreUnavailableError(f"aggregate failed: {e}") from e
