"""
Tests for configuration loading.
"""

from datetime import timedelta

import pytest

from task_lease.config import CONFIG_PATH_ENV, DEFAULT_CONFIG, Config
from task_lease.errors import ConfigurationError
from task_lease.storage.memory import InMemoryTaskStore


@pytest.fixture
def write_config(tmp_path):
    def _write(text: str):
        path = tmp_path / "config.yaml"
        path.write_text(text)
        return str(path)
    return _write


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
    monkeypatch.chdir(tmp_path)


class TestLoading:

    def test_missing_file_gives_defaults(self, tmp_path):
        config = Config(str(tmp_path / "absent.yaml"))

        assert config.config == DEFAULT_CONFIG
        assert config.get_mode() == 'bulk'
        assert config.get_batch_size() == 10
        assert config.get_lease_timeout() == timedelta(minutes=5)
        assert config.get_sort_field() == '_id'
        assert config.get_process_timeout() is None

    def test_file_values_merge_over_defaults(self, write_config):
        config = Config(write_config("""
claiming:
  mode: single
  lease_timeout_seconds: 60
storage:
  db_name: jobs
"""))

        assert config.get_mode() == 'single'
        assert config.get_lease_timeout() == timedelta(seconds=60)
        assert config.get_batch_size() == 10
        storage = config.get_storage_config()
        assert storage['db_name'] == 'jobs'
        assert storage['host'] == 'localhost'

    def test_path_from_environment(self, write_config, monkeypatch):
        path = write_config("claiming:\n  batch_size: 3\n")
        monkeypatch.setenv(CONFIG_PATH_ENV, path)

        config = Config()

        assert config.config_path == path
        assert config.get_batch_size() == 3

    def test_overrides_win(self, write_config):
        config = Config(write_config("claiming:\n  batch_size: 3\n"), overrides={'claiming': {'batch_size': 7}})
        assert config.get_batch_size() == 7

    def test_environment_references_expanded(self, write_config, monkeypatch):
        monkeypatch.setenv("TASK_DB_HOST", "mongo.internal")
        monkeypatch.delenv("TASK_DB_PASSWORD", raising=False)
        monkeypatch.delenv("TASK_DB_PORT", raising=False)
        config = Config(write_config("""
storage:
  host: ${TASK_DB_HOST}
  port: ${TASK_DB_PORT:-27019}
  password: ${TASK_DB_PASSWORD}
  connection_string: mongodb://${TASK_DB_HOST}/
"""))

        storage = config.get_storage_config()
        assert storage['host'] == 'mongo.internal'
        assert storage['port'] == '27019'
        assert storage['password'] is None
        assert storage['connection_string'] == 'mongodb://mongo.internal/'

    def test_numeric_strings_accepted(self, write_config, monkeypatch):
        monkeypatch.setenv("LEASE_SECONDS", "90")
        config = Config(write_config("claiming:\n  lease_timeout_seconds: ${LEASE_SECONDS}\n"))
        assert config.get_lease_timeout() == timedelta(seconds=90)

    def test_invalid_yaml(self, write_config):
        with pytest.raises(ConfigurationError):
            Config(write_config("claiming: [unclosed\n"))

    def test_non_mapping_yaml(self, write_config):
        with pytest.raises(ConfigurationError):
            Config(write_config("- just\n- a list\n"))


class TestValidation:

    @pytest.mark.parametrize("yaml_text,accessor", [
        ("claiming:\n  mode: parallel\n", "get_mode"),
        ("claiming:\n  batch_size: 0\n", "get_batch_size"),
        ("claiming:\n  batch_size: 2.5\n", "get_batch_size"),
        ("claiming:\n  lease_timeout_seconds: 0\n", "get_lease_timeout"),
        ("claiming:\n  lease_timeout_seconds: soon\n", "get_lease_timeout"),
        ("claiming:\n  process_timeout_seconds: -1\n", "get_process_timeout"),
        ("claiming: fast\n", "get_claiming_config"),
    ])
    def test_invalid_values(self, write_config, yaml_text, accessor):
        config = Config(write_config(yaml_text))
        with pytest.raises(ConfigurationError):
            getattr(config, accessor)()

    def test_unknown_log_level(self, write_config):
        config = Config(write_config("logging:\n  level: CHATTY\n"))
        with pytest.raises(ConfigurationError):
            config.configure_logging()


class TestProcessingAndSchedulerSettings:

    def test_defaults(self, tmp_path):
        config = Config(str(tmp_path / "absent.yaml"))

        assert config.get_processing_delays() == (0.001, 1.0)
        assert config.get_failure_rate() == 0.0
        assert config.get_initial_delays() == [0.1, 0.15, 0.3]
        assert config.get_fixed_delay() is None

    def test_environment_references_become_numbers(self, write_config, monkeypatch):
        monkeypatch.delenv("WORKER_MAX_DELAY", raising=False)
        monkeypatch.delenv("REPEAT_EVERY_MS", raising=False)
        monkeypatch.setenv("WORKER_FAILURE_RATE", "0.25")
        monkeypatch.setenv("FIRST_DELAY", "20")
        config = Config(write_config("""
processing:
  min_delay_ms: "0"
  max_delay_ms: ${WORKER_MAX_DELAY:-5}
  failure_rate: ${WORKER_FAILURE_RATE}
scheduler:
  initial_delays_ms:
    - ${FIRST_DELAY}
    - 40
  fixed_delay_ms: ${REPEAT_EVERY_MS:-500}
"""))

        assert config.get_processing_delays() == (0.0, 0.005)
        assert config.get_failure_rate() == 0.25
        assert config.get_initial_delays() == [0.02, 0.04]
        assert config.get_fixed_delay() == 0.5

    def test_null_values_fall_back_to_defaults(self, write_config):
        config = Config(write_config("""
processing:
  min_delay_ms: null
  max_delay_ms: null
scheduler:
  initial_delays_ms: null
"""))

        assert config.get_processing_delays() == (0.001, 1.0)
        assert config.get_initial_delays() == [0.1, 0.15, 0.3]

    @pytest.mark.parametrize("yaml_text,accessor", [
        ("processing:\n  max_delay_ms: slow\n", "get_processing_delays"),
        ("processing:\n  min_delay_ms: -1\n", "get_processing_delays"),
        ("processing:\n  min_delay_ms: 50\n  max_delay_ms: 10\n", "get_processing_delays"),
        ("processing:\n  failure_rate: 2\n", "get_failure_rate"),
        ("processing:\n  failure_rate: often\n", "get_failure_rate"),
        ("scheduler:\n  initial_delays_ms: 100\n", "get_initial_delays"),
        ("scheduler:\n  initial_delays_ms: []\n", "get_initial_delays"),
        ("scheduler:\n  initial_delays_ms: [100, soon]\n", "get_initial_delays"),
        ("scheduler:\n  initial_delays_ms: [-5]\n", "get_initial_delays"),
        ("scheduler:\n  fixed_delay_ms: -1\n", "get_fixed_delay"),
        ("scheduler:\n  fixed_delay_ms: true\n", "get_fixed_delay"),
    ])
    def test_invalid_values(self, write_config, yaml_text, accessor):
        config = Config(write_config(yaml_text))
        with pytest.raises(ConfigurationError):
            getattr(config, accessor)()


class TestStoreCreation:

    def test_memory_backend(self, write_config):
        config = Config(write_config("storage:\n  backend: memory\n"))
        assert isinstance(config.get_task_store(), InMemoryTaskStore)

    def test_unknown_backend(self, write_config):
        config = Config(write_config("storage:\n  backend: cassandra\n"))
        with pytest.raises(ConfigurationError):
            config.get_task_store()
