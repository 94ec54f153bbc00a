"""
Lease policy: which tasks are safe to claim, and how a claim is stamped.

A task is eligible when it is pending, or when it is processing and its lease
is absent or older than the lease timeout. The same predicate is handed to the
store by both claim variants so there is exactly one definition of eligibility.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from ..models import LOCKED_AT_FIELD, LOCKED_BY_FIELD, STATUS_FIELD, Task, TaskStatus

DEFAULT_LEASE_TIMEOUT = timedelta(minutes=5)


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


class LeasePolicy:
    """Pure eligibility and lease-stamp logic. Performs no I/O."""

    def __init__(self, lease_timeout: timedelta = DEFAULT_LEASE_TIMEOUT,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize lease policy.

        Args:
            lease_timeout: How long a processing task stays owned by its claimant
            clock: Callable returning the current time (defaults to UTC now)
        """
        if lease_timeout <= timedelta(0):
            raise ValueError(f"Lease timeout must be positive, got {lease_timeout}")

        self.lease_timeout = lease_timeout
        self.clock = clock or utc_now

    def now(self) -> datetime:
        """Current time truncated to milliseconds, the resolution of BSON dates."""
        now = self.clock()
        return now.replace(microsecond=now.microsecond - now.microsecond % 1000)

    def expiry_cutoff(self, now: datetime) -> datetime:
        """Leases stamped before this instant have expired."""
        return now - self.lease_timeout

    def eligibility_filter(self, now: datetime) -> Dict[str, Any]:
        """
        Build the eligibility predicate as a store filter document.

        Args:
            now: Reference time for lease expiry

        Returns:
            Filter matching pending tasks and processing tasks with no lease
            or an expired lease
        """
        return {
            "$or": [
                {STATUS_FIELD: TaskStatus.PENDING.value},
                {
                    "$and": [
                        {STATUS_FIELD: TaskStatus.PROCESSING.value},
                        {"$or": [
                            {LOCKED_AT_FIELD: None},
                            {LOCKED_AT_FIELD: {"$lt": self.expiry_cutoff(now)}}
                        ]}
                    ]
                }
            ]
        }

    def is_eligible(self, task: Task, now: datetime) -> bool:
        """Evaluate the eligibility predicate against a single task."""
        if task.status == TaskStatus.PENDING:
            return True
        if task.status == TaskStatus.PROCESSING:
            return task.locked_at is None or task.locked_at < self.expiry_cutoff(now)
        return False

    def is_stale(self, task: Task, now: datetime) -> bool:
        """A processing task whose claimant is presumed dead."""
        return task.status == TaskStatus.PROCESSING and self.is_eligible(task, now)

    @staticmethod
    def claim_update(now: datetime, owner: str) -> Dict[str, Any]:
        return {"$set": {
            STATUS_FIELD: TaskStatus.PROCESSING.value,
            LOCKED_AT_FIELD: now,
            LOCKED_BY_FIELD: owner
        }}

    @staticmethod
    def held_by(owner: str) -> Dict[str, Any]:
        """Filter for tasks still held under the given claim token."""
        return {STATUS_FIELD: TaskStatus.PROCESSING.value, LOCKED_BY_FIELD: owner}

    @staticmethod
    def complete_update() -> Dict[str, Any]:
        return {
            "$set": {STATUS_FIELD: TaskStatus.DONE.value},
            "$unset": {LOCKED_AT_FIELD: "", LOCKED_BY_FIELD: ""}
        }
