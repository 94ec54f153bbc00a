"""
Task model shared by the lease policy, the claim engine and the stores.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

# Field names as stored in the task collection
ID_FIELD = "_id"
STATUS_FIELD = "status"
LOCKED_AT_FIELD = "lockedAt"
LOCKED_BY_FIELD = "lockedBy"
CLAIM_FIELDS = (ID_FIELD, STATUS_FIELD, LOCKED_AT_FIELD, LOCKED_BY_FIELD)


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"


@dataclass
class Task:
    """A unit of work as seen by the claiming logic."""
    id: Any
    status: TaskStatus = TaskStatus.PENDING
    locked_at: Optional[datetime] = None
    locked_by: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'Task':
        """
        Build a Task from a store document.

        Args:
            document: Raw document; fields other than id, status and the
                lock fields are kept as opaque payload

        Returns:
            Task instance

        Raises:
            ValueError: If the status value is not a known TaskStatus
        """
        payload = {
            key: value for key, value in document.items()
            if key not in CLAIM_FIELDS
        }
        status = document.get(STATUS_FIELD)
        return cls(
            id=document[ID_FIELD],
            status=TaskStatus(status) if status is not None else TaskStatus.PENDING,
            locked_at=document.get(LOCKED_AT_FIELD),
            locked_by=document.get(LOCKED_BY_FIELD),
            payload=payload
        )

    def to_document(self) -> Dict[str, Any]:
        """Convert to a store document. A missing lock is omitted rather than stored as null."""
        document = dict(self.payload)
        document[ID_FIELD] = self.id
        document[STATUS_FIELD] = self.status.value
        if self.locked_at is not None:
            document[LOCKED_AT_FIELD] = self.locked_at
        if self.locked_by is not None:
            document[LOCKED_BY_FIELD] = self.locked_by
        return document

    def __str__(self) -> str:
        return f"Task(id={self.id}, status={self.status.value}, locked_at={self.locked_at})"
