"""
Configuration loading for task-lease.

Configuration comes from a YAML file (path argument, else
TASK_LEASE_CONFIG_PATH, else ./config.yaml). Values may reference environment
variables as ${VAR} or ${VAR:-default}; a .env file is loaded first. Anything
the file leaves out falls back to DEFAULT_CONFIG.
"""

import copy
import logging
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "TASK_LEASE_CONFIG_PATH"
DEFAULT_CONFIG_PATH = "./config.yaml"

DEFAULT_CONFIG: Dict[str, Any] = {
    'storage': {
        'backend': 'mongodb',
        'host': 'localhost',
        'port': 27017,
        'db_name': 'task-lease',
        'collection': 'tasks',
    },
    'claiming': {
        'mode': 'bulk',
        'batch_size': 10,
        'lease_timeout_seconds': 300,
        'sort_field': '_id',
        'process_timeout_seconds': None,
    },
    'scheduler': {
        'initial_delays_ms': [100, 150, 300],
        'fixed_delay_ms': None,
    },
    'processing': {
        'processor': None,
        'min_delay_ms': 1,
        'max_delay_ms': 1000,
        'failure_rate': 0.0,
    },
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'file': None,
    },
}

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def _expand_env(value: Any) -> Any:
    """Recursively substitute ${VAR} references in string values."""
    if isinstance(value, str):
        def replace(match):
            name, default = match.group(1), match.group(2)
            return os.environ.get(name, default if default is not None else "")
        expanded = _ENV_PATTERN.sub(replace, value)
        # A value that was only a reference to an empty variable means "unset"
        if expanded == "" and _ENV_PATTERN.fullmatch(value):
            return None
        return expanded
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Loaded configuration with typed accessors."""

    def __init__(self, config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None):
        """
        Load configuration.

        Args:
            config_path: YAML file path (defaults to TASK_LEASE_CONFIG_PATH or ./config.yaml)
            overrides: Values merged over the file contents

        Raises:
            ConfigurationError: If the file cannot be parsed
        """
        load_dotenv()
        self.config_path = config_path or os.environ.get(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH)

        file_config: Dict[str, Any] = {}
        path = Path(self.config_path)
        if path.exists():
            try:
                with open(path, 'r') as f:
                    file_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
            if not isinstance(file_config, dict):
                raise ConfigurationError(f"Configuration in {path} must be a mapping")
            logger.debug(f"Loaded configuration from {path}")
        else:
            logger.info(f"Config file {path} not found, using defaults")

        self.config = _deep_merge(DEFAULT_CONFIG, _expand_env(file_config))
        if overrides:
            self.config = _deep_merge(self.config, overrides)

    def _section(self, name: str) -> Dict[str, Any]:
        section = self.config.get(name) or {}
        if not isinstance(section, dict):
            raise ConfigurationError(f"Configuration section '{name}' must be a mapping")
        return section

    def get_storage_config(self) -> Dict[str, Any]:
        return dict(self._section('storage'))

    def get_claiming_config(self) -> Dict[str, Any]:
        return dict(self._section('claiming'))

    def get_scheduler_config(self) -> Dict[str, Any]:
        return dict(self._section('scheduler'))

    def get_processing_config(self) -> Dict[str, Any]:
        return dict(self._section('processing'))

    def get_mode(self) -> str:
        mode = self.get_claiming_config().get('mode', 'bulk')
        if mode not in ('bulk', 'single'):
            raise ConfigurationError(f"claiming.mode must be 'bulk' or 'single', got '{mode}'")
        return mode

    def get_lease_timeout(self) -> timedelta:
        seconds = self._number('claiming', 'lease_timeout_seconds')
        if seconds is None or seconds <= 0:
            raise ConfigurationError(f"claiming.lease_timeout_seconds must be positive, got {seconds}")
        return timedelta(seconds=seconds)

    def get_batch_size(self) -> int:
        batch_size = self._number('claiming', 'batch_size')
        if batch_size is None or int(batch_size) != batch_size or batch_size < 1:
            raise ConfigurationError(f"claiming.batch_size must be a positive integer, got {batch_size}")
        return int(batch_size)

    def get_sort_field(self) -> str:
        return self.get_claiming_config().get('sort_field') or '_id'

    def get_process_timeout(self) -> Optional[float]:
        timeout = self._number('claiming', 'process_timeout_seconds')
        if timeout is not None and timeout <= 0:
            raise ConfigurationError(f"claiming.process_timeout_seconds must be positive, got {timeout}")
        return timeout

    def get_processing_delays(self) -> Tuple[float, float]:
        """Simulated processing delay range, in seconds."""
        min_ms = self._non_negative('processing', 'min_delay_ms')
        max_ms = self._non_negative('processing', 'max_delay_ms')
        if max_ms < min_ms:
            raise ConfigurationError(
                f"processing.max_delay_ms ({max_ms}) is smaller than processing.min_delay_ms ({min_ms})"
            )
        return min_ms / 1000.0, max_ms / 1000.0

    def get_failure_rate(self) -> float:
        rate = self._non_negative('processing', 'failure_rate')
        if rate > 1:
            raise ConfigurationError(f"processing.failure_rate must be between 0 and 1, got {rate}")
        return rate

    def get_initial_delays(self) -> List[float]:
        """Initial delay of each schedule, in seconds."""
        delays = self._section('scheduler').get('initial_delays_ms')
        if delays is None:
            delays = DEFAULT_CONFIG['scheduler']['initial_delays_ms']
        if not isinstance(delays, list) or not delays:
            raise ConfigurationError(f"scheduler.initial_delays_ms must be a non-empty list, got {delays}")

        seconds = []
        for value in delays:
            ms = self._to_number('scheduler.initial_delays_ms', value)
            if ms is None or ms < 0:
                raise ConfigurationError(f"scheduler.initial_delays_ms entries must be non-negative, got {value}")
            seconds.append(ms / 1000.0)
        return seconds

    def get_fixed_delay(self) -> Optional[float]:
        """Delay between repeated cycles in seconds, or None for one-shot schedules."""
        ms = self._number('scheduler', 'fixed_delay_ms')
        if ms is None:
            return None
        if ms < 0:
            raise ConfigurationError(f"scheduler.fixed_delay_ms must be non-negative, got {ms}")
        return ms / 1000.0

    def _non_negative(self, section: str, key: str) -> float:
        """Numeric setting that falls back to its default when unset."""
        value = self._number(section, key)
        if value is None:
            value = DEFAULT_CONFIG[section][key]
        if value < 0:
            raise ConfigurationError(f"{section}.{key} must be non-negative, got {value}")
        return value

    def _number(self, section: str, key: str) -> Optional[float]:
        return self._to_number(f"{section}.{key}", self._section(section).get(key))

    @staticmethod
    def _to_number(name: str, value: Any) -> Optional[float]:
        if value is None:
            return None
        # bool is an int subclass but never a sensible number here
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ConfigurationError(f"{name} must be a number, got '{value}'")
        try:
            return float(value) if isinstance(value, str) else value
        except ValueError as e:
            raise ConfigurationError(f"{name} must be a number, got '{value}'") from e

    def get_task_store(self):
        """Create (not initialize) the configured task store."""
        from .storage.factory import create_task_store
        return create_task_store(self.get_storage_config())

    def configure_logging(self, level: Optional[str] = None, log_file: Optional[str] = None) -> None:
        """Configure root logging from the logging section, with optional overrides."""
        logging_config = self._section('logging')
        level_name = (level or logging_config.get('level') or 'INFO').upper()
        log_level = getattr(logging, level_name, None)
        if not isinstance(log_level, int):
            raise ConfigurationError(f"Unknown log level: {level_name}")

        log_format = logging_config.get('format') or DEFAULT_CONFIG['logging']['format']
        log_file = log_file or logging_config.get('file')

        if log_file:
            logging.basicConfig(level=log_level, format=log_format, filename=log_file, filemode='a')
        else:
            logging.basicConfig(level=log_level, format=log_format)
