"""In-memory task system for testing and local runs."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from .base import ExternalTaskInfo, ExternalTaskSystem

logger = logging.getLogger(__name__)


class InMemoryTaskSystem(ExternalTaskSystem):
    """Keeps open tasks in a dict and records closed and cancelled ones."""

    def __init__(self) -> None:
        self.tasks: Dict[str, ExternalTaskInfo] = {}
        self.closed: Dict[str, Dict[str, Any]] = {}
        self.cancelled: Dict[str, Optional[str]] = {}

    async def create_task(self, info: ExternalTaskInfo) -> str:
        task_id = f"TASK-{uuid.uuid4().hex[:8]}"
        self.tasks[task_id] = info
        logger.info(
            f"Created task {task_id} for step {info.step_instance_id} "
            f"(users={info.assigned_users}, roles={info.assigned_roles})"
        )
        return task_id

    async def close_task(self, task_id: str, completion_data: Dict[str, Any]) -> None:
        self.tasks.pop(task_id, None)
        self.closed[task_id] = dict(completion_data)
        logger.info(f"Closed task {task_id}")

    async def update_task(self, task_id: str, updates: Dict[str, Any]) -> None:
        info = self.tasks.get(task_id)
        if info is not None:
            self.tasks[task_id] = info.model_copy(update=updates)
        logger.info(f"Updated task {task_id}")

    async def cancel_task(self, task_id: str, reason: Optional[str] = None) -> None:
        self.tasks.pop(task_id, None)
        self.cancelled[task_id] = reason
        logger.info(f"Cancelled task {task_id}: {reason}")
