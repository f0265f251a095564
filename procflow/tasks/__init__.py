"""External task system factory and implementations."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ProcflowConfig, load_config
from .base import ExternalTaskInfo, ExternalTaskSystem
from .inmemory import InMemoryTaskSystem


def get_task_system(
    backend: Optional[str] = None, config: Optional[ProcflowConfig] = None
) -> ExternalTaskSystem | None:
    """Factory function to get the configured task system.

    Returns ``None`` for the ``none`` backend; interaction steps then park
    without creating external tasks.
    """

    config = config or load_config()
    backend = (
        backend
        or os.getenv("PROCFLOW_TASK_SYSTEM")
        or config.task_system.backend
    ).lower()

    if backend == "none":
        return None
    elif backend == "inmemory":
        return InMemoryTaskSystem()
    elif backend == "http":
        from .http import HttpTaskSystem

        task_conf = config.task_system
        if not task_conf.base_url:
            raise ValueError("task_system.base_url is required for the http backend")
        return HttpTaskSystem(
            base_url=task_conf.base_url,
            api_key=task_conf.api_key,
            timeout=task_conf.timeout,
        )
    else:
        raise ValueError(f"Unsupported task system backend: {backend}")


__all__ = ["ExternalTaskInfo", "ExternalTaskSystem", "InMemoryTaskSystem", "get_task_system"]
