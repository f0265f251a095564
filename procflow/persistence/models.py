"""Data models for persisted workflow state."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..contracts import StepKind, StepStatus, WorkflowStatus
from ..utils.clock import utcnow


class StepInstance(BaseModel):
    """Record of one visit to one step within a workflow instance."""

    id: str = ""
    workflow_instance_id: str
    step_definition_id: str
    step_name: Optional[str] = None
    kind: StepKind
    status: StepStatus = StepStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    # Wake-up time of a scheduled step or a pending business retry.
    due_at: Optional[datetime] = None
    assigned_to: Optional[str] = None
    completed_by: Optional[str] = None
    input_data: dict[str, Any] = Field(default_factory=dict)
    output_data: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    transition_taken: Optional[str] = None
    retry_count: int = 0


class WorkflowInstance(BaseModel):
    """One execution of a workflow definition."""

    id: str = ""
    definition_id: str
    current_step_id: Optional[str] = None
    status: WorkflowStatus = WorkflowStatus.CREATED
    variables: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    correlation_id: Optional[str] = None
    error_message: Optional[str] = None
    cancel_reason: Optional[str] = None
    step_history: list[StepInstance] = Field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status in (WorkflowStatus.RUNNING, WorkflowStatus.WAITING)
