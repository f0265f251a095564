"""REST task system client built on httpx."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..utils.clock import utcnow
from .base import ExternalTaskInfo, ExternalTaskSystem

logger = logging.getLogger(__name__)


class HttpTaskSystem(ExternalTaskSystem):
    """Talk to a task service exposing ``/api/tasks`` endpoints.

    ``POST /api/tasks`` creates a task and answers ``{"taskId": ...}``;
    ``PUT /api/tasks/{id}/close``, ``PATCH /api/tasks/{id}`` and
    ``PUT /api/tasks/{id}/cancel`` close, update and cancel it. Non-2xx
    responses raise ``httpx.HTTPStatusError``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def _send(self, method: str, path: str, payload: Dict[str, Any]) -> httpx.Response:
        response = await self._client.request(method, path, json=payload)
        response.raise_for_status()
        return response

    async def create_task(self, info: ExternalTaskInfo) -> str:
        payload = {
            "title": info.title,
            "description": info.description,
            "assignedUsers": info.assigned_users,
            "assignedRoles": info.assigned_roles,
            "dueDate": info.due_date.isoformat() if info.due_date else None,
            "priority": info.priority or "normal",
            "metadata": {
                "workflowInstanceId": info.workflow_instance_id,
                "stepInstanceId": info.step_instance_id,
                "source": "procflow",
                **info.metadata,
            },
            "formDefinition": info.form_schema,
            "context": info.workflow_context,
        }
        response = await self._send("POST", "/api/tasks", payload)
        task_id = str(response.json()["taskId"])
        logger.info(f"Created external task {task_id}")
        return task_id

    async def close_task(self, task_id: str, completion_data: Dict[str, Any]) -> None:
        payload = {
            "status": "completed",
            "completedAt": utcnow().isoformat(),
            "completionData": completion_data,
        }
        await self._send("PUT", f"/api/tasks/{task_id}/close", payload)
        logger.info(f"Closed external task {task_id}")

    async def update_task(self, task_id: str, updates: Dict[str, Any]) -> None:
        await self._send("PATCH", f"/api/tasks/{task_id}", updates)
        logger.info(f"Updated external task {task_id}")

    async def cancel_task(self, task_id: str, reason: Optional[str] = None) -> None:
        payload = {
            "status": "cancelled",
            "reason": reason,
            "cancelledAt": utcnow().isoformat(),
        }
        await self._send("PUT", f"/api/tasks/{task_id}/cancel", payload)
        logger.info(f"Cancelled external task {task_id}")

    async def aclose(self) -> None:
        await self._client.aclose()
