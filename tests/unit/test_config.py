"""Tests for configuration loading."""

import pytest

from procflow.config import load_config
from procflow.tasks import InMemoryTaskSystem, get_task_system
from procflow.tasks.http import HttpTaskSystem


def test_defaults_without_config_file(tmp_path, monkeypatch):
    monkeypatch.setenv("PROCFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("PROCFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.engine.subworkflow_wait_timeout_seconds == 100.0
    assert config.engine.default_retry_delay_seconds == 30.0
    assert config.engine.strict_conditions is False
    assert config.engine.completion_poll_interval_seconds == 0.1
    assert config.task_system.backend == "none"
    assert config.database_url is None


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
engine:
  subworkflow_wait_timeout_seconds: 5
  strict_conditions: true
  completion_poll_interval_seconds: 0.5
task_system:
  backend: http
  base_url: https://tasks.example.com
  api_key: secret
database_url: sqlite:///tmp/procflow.db
log_level: DEBUG
"""
    )
    monkeypatch.setenv("PROCFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("PROCFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.engine.subworkflow_wait_timeout_seconds == 5
    assert config.engine.strict_conditions is True
    assert config.engine.completion_poll_interval_seconds == 0.5
    assert config.task_system.base_url == "https://tasks.example.com"
    assert config.database_url == "sqlite:///tmp/procflow.db"
    assert config.log_level == "DEBUG"


def test_database_url_env_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite:///from-file.db\n")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///from-env.db")
    monkeypatch.delenv("PROCFLOW_DATABASE_URL", raising=False)

    config = load_config(str(config_path))
    assert config.database_url == "sqlite:///from-env.db"

    monkeypatch.setenv("PROCFLOW_DATABASE_URL", "sqlite:///preferred.db")
    assert load_config(str(config_path)).database_url == "sqlite:///preferred.db"


def test_get_task_system_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
task_system:
  backend: http
  base_url: https://tasks.example.com/
"""
    )
    monkeypatch.setenv("PROCFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("PROCFLOW_TASK_SYSTEM", raising=False)

    task_system = get_task_system()
    assert isinstance(task_system, HttpTaskSystem)
    assert task_system._client.base_url.host == "tasks.example.com"


def test_get_task_system_backends(tmp_path, monkeypatch):
    monkeypatch.setenv("PROCFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("PROCFLOW_TASK_SYSTEM", raising=False)

    assert get_task_system() is None
    assert isinstance(get_task_system("inmemory"), InMemoryTaskSystem)

    monkeypatch.setenv("PROCFLOW_TASK_SYSTEM", "InMemory")
    assert isinstance(get_task_system(), InMemoryTaskSystem)

    with pytest.raises(ValueError, match="base_url is required"):
        get_task_system("http")
    with pytest.raises(ValueError, match="Unsupported task system backend"):
        get_task_system("jira")
