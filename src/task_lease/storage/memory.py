"""
In-process task store.

Holds documents in a dict guarded by a single re-entrant lock, so every store
operation is atomic with respect to other threads, the same per-operation
guarantee the claim engine relies on from MongoDB. Understands the subset of
MongoDB filter and update syntax the claim engine emits.

Useful for tests, demos, and single-process deployments.
"""

import copy
import itertools
import logging
import threading
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional

from ..models import ID_FIELD, STATUS_FIELD, Task, TaskStatus
from .base import AtomicTaskStore, SortSpec

logger = logging.getLogger(__name__)

_MISSING = object()


def _compare(operator: str, actual: Any, expected: Any) -> bool:
    if actual is _MISSING or actual is None:
        return False
    if operator == "$lt":
        return actual < expected
    if operator == "$lte":
        return actual <= expected
    if operator == "$gt":
        return actual > expected
    return actual >= expected


def _match_condition(actual: Any, condition: Any) -> bool:
    """Match one field value against a literal or an operator document."""
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for operator, expected in condition.items():
            if operator == "$in":
                value = None if actual is _MISSING else actual
                if value not in expected:
                    return False
            elif operator == "$nin":
                value = None if actual is _MISSING else actual
                if value in expected:
                    return False
            elif operator == "$ne":
                if _match_condition(actual, expected):
                    return False
            elif operator == "$eq":
                if not _match_condition(actual, expected):
                    return False
            elif operator == "$exists":
                if (actual is not _MISSING) != bool(expected):
                    return False
            elif operator in ("$lt", "$lte", "$gt", "$gte"):
                if not _compare(operator, actual, expected):
                    return False
            else:
                raise ValueError(f"Unsupported query operator: {operator}")
        return True

    # null matches both an explicit null and a missing field
    if condition is None:
        return actual is _MISSING or actual is None
    return actual is not _MISSING and actual == condition


def matches(document: Dict[str, Any], predicate: Dict[str, Any]) -> bool:
    """
    Evaluate a MongoDB-style filter document against a document.

    Args:
        document: Document to test
        predicate: Filter document ($and, $or, field conditions)

    Returns:
        True if the document satisfies the filter
    """
    for key, condition in predicate.items():
        if key == "$and":
            if not all(matches(document, clause) for clause in condition):
                return False
        elif key == "$or":
            if not any(matches(document, clause) for clause in condition):
                return False
        elif key.startswith("$"):
            raise ValueError(f"Unsupported top-level operator: {key}")
        elif not _match_condition(document.get(key, _MISSING), condition):
            return False
    return True


def apply_update(document: Dict[str, Any], update: Dict[str, Any]) -> bool:
    """
    Apply a $set/$unset update document in place.

    Returns:
        True if the document changed
    """
    changed = False
    for operator, fields in update.items():
        if operator == "$set":
            for field, value in fields.items():
                if document.get(field, _MISSING) != value:
                    document[field] = value
                    changed = True
        elif operator == "$unset":
            for field in fields:
                if field in document:
                    del document[field]
                    changed = True
        else:
            raise ValueError(f"Unsupported update operator: {operator}")
    return changed


def _sort_key(field: str):
    def key(document):
        value = document.get(field)
        # missing values sort first, as in MongoDB
        return (value is not None, value)
    return key


class InMemoryTaskStore(AtomicTaskStore):
    """Thread-safe task store kept in process memory."""

    def __init__(self, conn_params: Optional[Dict[str, Any]] = None):
        super().__init__(conn_params)
        self._documents: Dict[Any, Dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        # Documents modified by conditional updates and find-and-modify
        self.mutations = 0

    def initialize(self) -> None:
        logger.debug("In-memory task store ready")

    def close(self) -> None:
        pass

    def _sorted(self, documents: List[Dict[str, Any]], sort: SortSpec) -> List[Dict[str, Any]]:
        # Apply keys from least to most significant; sorted() is stable
        for field, direction in reversed(list(sort)):
            documents = sorted(documents, key=_sort_key(field), reverse=direction < 0)
        return documents

    def find_eligible(self, predicate: Dict[str, Any], sort: SortSpec, limit: int,
                      projection: Optional[Iterable[str]] = None) -> List[Task]:
        with self._lock:
            found = [doc for doc in self._documents.values() if matches(doc, predicate)]
            found = self._sorted(found, sort)[:limit]
            if projection is not None:
                fields = set(projection) | {ID_FIELD}
                found = [{k: v for k, v in doc.items() if k in fields} for doc in found]
            return [Task.from_document(copy.deepcopy(doc)) for doc in found]

    def conditional_bulk_update(self, match: Dict[str, Any], update: Dict[str, Any]) -> int:
        with self._lock:
            modified = 0
            for document in self._documents.values():
                if matches(document, match) and apply_update(document, update):
                    modified += 1
            self.mutations += modified
            return modified

    def atomic_find_and_modify(self, predicate: Dict[str, Any], update: Dict[str, Any],
                               sort: SortSpec) -> Optional[Task]:
        with self._lock:
            found = [doc for doc in self._documents.values() if matches(doc, predicate)]
            if not found:
                return None
            document = self._sorted(found, sort)[0]
            if apply_update(document, update):
                self.mutations += 1
            return Task.from_document(copy.deepcopy(document))

    def find(self, predicate: Dict[str, Any]) -> List[Task]:
        with self._lock:
            found = [doc for doc in self._documents.values() if matches(doc, predicate)]
            return [Task.from_document(copy.deepcopy(doc)) for doc in self._sorted(found, [(ID_FIELD, 1)])]

    def insert_tasks(self, payloads: Iterable[Dict[str, Any]]) -> List[Any]:
        ids = []
        with self._lock:
            for payload in payloads:
                document = dict(payload)
                document.setdefault(ID_FIELD, next(self._ids))
                document[STATUS_FIELD] = TaskStatus.PENDING.value
                self._documents[document[ID_FIELD]] = document
                ids.append(document[ID_FIELD])
        logger.debug(f"Inserted {len(ids)} tasks")
        return ids

    def add_documents(self, documents: Iterable[Dict[str, Any]]) -> None:
        """Insert raw documents as-is, in whatever state they describe."""
        with self._lock:
            for document in documents:
                document = copy.deepcopy(document)
                document.setdefault(ID_FIELD, next(self._ids))
                self._documents[document[ID_FIELD]] = document

    def get(self, task_id: Any) -> Optional[Task]:
        with self._lock:
            document = self._documents.get(task_id)
            return Task.from_document(copy.deepcopy(document)) if document else None

    def count_by_status(self) -> Dict[str, int]:
        with self._lock:
            return dict(Counter(doc.get(STATUS_FIELD) for doc in self._documents.values()))
