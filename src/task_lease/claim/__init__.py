"""
Lease-based task claiming.

Lets many independent workers pull tasks from one shared store without
double-processing and without a lock manager. Each claim is an atomic
conditional write on the store; a claim carries a lease timestamp, and a
processing task whose lease has expired is treated as abandoned and may be
claimed again.

Key Features:
- Bulk cycle: claim a bounded batch per round with one conditional update
- Single cycle: claim one task per round with atomic find-and-modify
- Lease expiry as the only crash recovery mechanism (no heartbeats)
- Deadline around the processing callback
"""

from .engine import ClaimEngine, CycleResult, run_bulk_cycle, run_single_cycle
from .lease_policy import DEFAULT_LEASE_TIMEOUT, LeasePolicy
from ..models import Task, TaskStatus
from .scheduler import CycleScheduler, Schedule

__all__ = [
    'ClaimEngine', 'CycleResult', 'run_bulk_cycle', 'run_single_cycle',
    'DEFAULT_LEASE_TIMEOUT', 'LeasePolicy', 'Task', 'TaskStatus',
    'CycleScheduler', 'Schedule'
]
