"""
Atomic task store abstract base class.

The claim engine needs only a handful of primitives from the shared store, all
expressed in MongoDB filter/update document syntax:

- a plain read of eligible tasks (no locking)
- a conditional bulk update, evaluated per document at execution time
- an atomic find-and-modify of a single document

Any backend that offers per-document atomic conditional writes can implement
this interface.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..models import Task

# (field, direction) pairs; 1 ascending, -1 descending
SortSpec = Sequence[Tuple[str, int]]

ASCENDING = 1
DESCENDING = -1


class AtomicTaskStore(ABC):
    """Capability interface over a shared mutable task collection."""

    def __init__(self, conn_params: Optional[Dict[str, Any]] = None):
        """
        Initialize the store with backend-specific connection parameters.

        Args:
            conn_params: Connection parameters for the backend
        """
        self.conn_params = conn_params or {}

    @abstractmethod
    def initialize(self) -> None:
        """Connect and prepare the collection (indexes etc.)."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the connection."""
        pass

    @abstractmethod
    def find_eligible(self, predicate: Dict[str, Any], sort: SortSpec, limit: int,
                      projection: Optional[Iterable[str]] = None) -> List[Task]:
        """
        Read up to `limit` tasks matching `predicate`, ordered by `sort`.

        This is a plain read; nothing is locked.

        Args:
            predicate: Filter document
            sort: Sort specification
            limit: Maximum number of tasks to return
            projection: Optional field names to fetch (id is always included)

        Returns:
            Matching tasks
        """
        pass

    @abstractmethod
    def conditional_bulk_update(self, match: Dict[str, Any], update: Dict[str, Any]) -> int:
        """
        Apply `update` to every document matching `match` when the update executes.

        Each document is matched and modified atomically; the match is
        re-evaluated per document, so documents changed by another actor since
        an earlier read are skipped.

        Returns:
            Number of documents actually modified
        """
        pass

    @abstractmethod
    def atomic_find_and_modify(self, predicate: Dict[str, Any], update: Dict[str, Any],
                               sort: SortSpec) -> Optional[Task]:
        """
        Atomically select the first document matching `predicate` and update it.

        Returns:
            The post-update task, or None if nothing matched
        """
        pass

    @abstractmethod
    def find(self, predicate: Dict[str, Any]) -> List[Task]:
        """Plain read of all tasks matching `predicate`."""
        pass

    @abstractmethod
    def insert_tasks(self, payloads: Iterable[Dict[str, Any]]) -> List[Any]:
        """
        Insert new pending tasks.

        Args:
            payloads: Business payload for each task

        Returns:
            Ids of the inserted tasks, in insertion order
        """
        pass

    @abstractmethod
    def count_by_status(self) -> Dict[str, int]:
        """Count tasks grouped by status."""
        pass

    def __enter__(self):
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
