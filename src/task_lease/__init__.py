"""
task-lease: lease-based task claiming over a shared atomic store.
"""

from .config import Config
from .claim import ClaimEngine, CycleResult, LeasePolicy, Task, TaskStatus, run_bulk_cycle, run_single_cycle
from .errors import ConfigurationError, ProcessingTimeoutError, StoreUnavailableError, TaskLeaseError

__version__ = "0.1.0"

__all__ = [
    'Config', 'ClaimEngine', 'CycleResult', 'LeasePolicy', 'Task', 'TaskStatus',
    'run_bulk_cycle', 'run_single_cycle',
    'ConfigurationError', 'ProcessingTimeoutError', 'StoreUnavailableError', 'TaskLeaseError'
]
