from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

from .constants import (
    DEFAULT_COMPLETION_POLL_INTERVAL,
    DEFAULT_RETRY_DELAY_SECONDS,
    DEFAULT_SUBWORKFLOW_WAIT_TIMEOUT,
    DEFAULT_SWEEP_INTERVAL,
)


class EngineConfig(BaseModel):
    """Execution engine settings."""

    subworkflow_wait_timeout_seconds: float = DEFAULT_SUBWORKFLOW_WAIT_TIMEOUT
    default_retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS
    strict_conditions: bool = False
    sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL
    completion_poll_interval_seconds: float = DEFAULT_COMPLETION_POLL_INTERVAL


class TaskSystemConfig(BaseModel):
    """External task system settings."""

    backend: Literal["none", "inmemory", "http"] = "none"
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = 10.0


class ProcflowConfig(BaseModel):
    """Top-level configuration model."""

    engine: EngineConfig = EngineConfig()
    task_system: TaskSystemConfig = TaskSystemConfig()
    database_url: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> ProcflowConfig:
    """Read engine, task system and storage settings for procflow.

    ``path`` wins, then ``PROCFLOW_CONFIG``, then ``procflow.yaml`` in the
    working directory. A missing file yields the defaults. Either
    ``PROCFLOW_DATABASE_URL`` or ``DATABASE_URL`` replaces ``database_url``.
    """

    config_path = path or os.getenv("PROCFLOW_CONFIG", "procflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ProcflowConfig(**data)
    else:
        config = ProcflowConfig()

    env_db_url = os.getenv("PROCFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
