"""
Exception hierarchy for the task lease system.
"""


class TaskLeaseError(Exception):
    """Base exception for the task lease system."""
    pass


class StoreUnavailableError(TaskLeaseError):
    """A store operation failed outright (connection lost, server error)."""
    pass


class ProcessingTimeoutError(TaskLeaseError):
    """The processing callback did not finish before its deadline."""
    pass


class ConfigurationError(TaskLeaseError):
    """Configuration is missing or invalid."""
    pass
