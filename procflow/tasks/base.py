"""Base interface for external task management systems."""

from __future__ import annotations

import abc
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ExternalTaskInfo(BaseModel):
    """Information handed to a task system when an interaction step parks."""

    workflow_instance_id: str
    step_instance_id: str
    title: str
    description: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[datetime] = None
    assigned_users: List[str] = Field(default_factory=list)
    assigned_roles: List[str] = Field(default_factory=list)
    form_schema: Optional[Any] = None
    workflow_context: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ExternalTaskSystem(metaclass=abc.ABCMeta):
    """Abstract task system that mirrors interaction steps as user tasks."""

    @abc.abstractmethod
    async def create_task(self, info: ExternalTaskInfo) -> str:
        """Create a task and return its id in the external system."""
        raise NotImplementedError

    @abc.abstractmethod
    async def close_task(self, task_id: str, completion_data: Dict[str, Any]) -> None:
        """Mark a task completed."""
        raise NotImplementedError

    async def update_task(self, task_id: str, updates: Dict[str, Any]) -> None:
        """Update task fields (no-op by default)."""
        pass

    async def cancel_task(self, task_id: str, reason: Optional[str] = None) -> None:
        """Cancel a task (no-op by default)."""
        pass

    async def aclose(self) -> None:
        """Release resources held by the task system (no-op by default)."""
        pass
