"""
Processing callbacks.
"""

import importlib
import logging
import random
import time
from typing import Callable, Optional

from ..errors import ConfigurationError
from ..models import Task

logger = logging.getLogger(__name__)


class SimulatedProcessor:
    """
    Stand-in for business processing: sleeps a random interval, logs the task.

    Optionally fails a random share of tasks so retry behaviour can be observed.
    """

    def __init__(self, min_delay: float = 0.001, max_delay: float = 1.0,
                 failure_rate: float = 0.0, rng: Optional[random.Random] = None):
        if min_delay < 0 or max_delay < min_delay:
            raise ValueError(f"Invalid delay range: {min_delay}..{max_delay}")
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError(f"Failure rate must be between 0 and 1, got {failure_rate}")

        self.min_delay = min_delay
        self.max_delay = max_delay
        self.failure_rate = failure_rate
        self.rng = rng or random.Random()

    def __call__(self, task: Task) -> bool:
        time.sleep(self.rng.uniform(self.min_delay, self.max_delay))
        if self.failure_rate and self.rng.random() < self.failure_rate:
            logger.info(f"Simulated failure for {task}")
            return False
        logger.info(f"Processed {task}")
        return True


def load_processor(reference: str) -> Callable[[Task], object]:
    """
    Resolve a "package.module:callable" reference.

    Args:
        reference: Module path and attribute separated by a colon

    Returns:
        The referenced callable

    Raises:
        ConfigurationError: If the reference is malformed or cannot be imported
    """
    module_name, sep, attr = reference.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"Processor reference must look like 'module:callable', got '{reference}'")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import processor module '{module_name}': {e}") from e

    target = module
    for part in attr.split("."):
        target = getattr(target, part, None)
        if target is None:
            raise ConfigurationError(f"Module '{module_name}' has no attribute '{attr}'")

    if not callable(target):
        raise ConfigurationError(f"Processor '{reference}' is not callable")
    return target
