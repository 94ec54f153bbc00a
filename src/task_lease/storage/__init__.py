"""
Task store backends implementing the atomic store capability interface.
"""

from .base import AtomicTaskStore, ASCENDING, DESCENDING
from .factory import create_task_store
from .memory import InMemoryTaskStore

__all__ = ['AtomicTaskStore', 'ASCENDING', 'DESCENDING', 'InMemoryTaskStore', 'create_task_store']
