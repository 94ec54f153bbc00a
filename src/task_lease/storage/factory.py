"""
Factory for task store backends.
"""

import logging
from typing import Any, Dict

from ..errors import ConfigurationError
from .base import AtomicTaskStore

logger = logging.getLogger(__name__)

SUPPORTED_BACKENDS = ('mongodb', 'memory')


def create_task_store(storage_config: Dict[str, Any]) -> AtomicTaskStore:
    """
    Create an (uninitialized) task store from the storage configuration section.

    Args:
        storage_config: Storage configuration with a 'backend' key

    Returns:
        Task store instance

    Raises:
        ConfigurationError: If the backend is unknown
    """
    backend = storage_config.get('backend', 'mongodb').lower()
    conn_params = {k: v for k, v in storage_config.items() if k != 'backend'}

    if backend == 'mongodb':
        from .mongodb import MongoTaskStore
        store = MongoTaskStore(conn_params)
    elif backend == 'memory':
        from .memory import InMemoryTaskStore
        store = InMemoryTaskStore(conn_params)
    else:
        raise ConfigurationError(
            f"Unsupported storage backend: {backend}. "
            f"Supported backends: {', '.join(SUPPORTED_BACKENDS)}"
        )

    logger.debug(f"Created {type(store).__name__} for backend '{backend}'")
    return store
