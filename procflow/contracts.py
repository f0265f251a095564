"""Core contracts for procflow: definitions, statuses and step results."""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .exceptions import DefinitionValidationError
from .utils.clock import utcnow

logger = logging.getLogger(__name__)


class StepKind(str, Enum):
    """Kind of workflow step."""

    INTERACTION = "interaction"  # Waits for external user input
    SCHEDULED = "scheduled"  # Waits until a point in time
    BUSINESS = "business"  # Invokes a named service
    DECISION = "decision"  # Selects the next step
    SUBWORKFLOW = "subworkflow"  # Runs a nested workflow

    @classmethod
    def _missing_(cls, value: object) -> Optional["StepKind"]:
        if isinstance(value, str):
            normalized = value.replace("_", "").replace("-", "").lower()
            if normalized.endswith("step"):
                normalized = normalized[: -len("step")]
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class WorkflowStatus(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_WORKFLOW_STATUSES


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    WAITING_FOR_INPUT = "waiting_for_input"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    TIMEOUT = "timeout"


TERMINAL_WORKFLOW_STATUSES = frozenset(
    {WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED}
)
# Step outcomes that park the whole workflow instance.
SUSPENDING_STEP_STATUSES = frozenset(
    {StepStatus.WAITING_FOR_INPUT, StepStatus.SCHEDULED, StepStatus.PENDING}
)


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class Transition(_Model):
    """Deprecated conditional transition; prefer ``next_step_id``."""

    id: Optional[str] = None
    target_step_id: str
    condition: Optional[str] = None
    label: Optional[str] = None


class Route(_Model):
    """Normalized routing rule evaluated after a step completes."""

    target_step_id: str
    condition: Optional[str] = None
    label: Optional[str] = None


def build_routes(step: "StepDefinition") -> List[Route]:
    """Normalize ``next_step_id`` and legacy ``transitions`` into routes.

    ``next_step_id`` always takes precedence; transitions only apply when it
    is absent. Decision steps route through their configuration instead.
    """
    if step.kind == StepKind.DECISION:
        return []
    if step.next_step_id:
        return [Route(target_step_id=step.next_step_id, label="next")]
    return [
        Route(target_step_id=t.target_step_id, condition=t.condition, label=t.label)
        for t in step.transitions
        if t.target_step_id
    ]


class StepDefinition(_Model):
    """One node of a workflow definition."""

    id: str
    name: Optional[str] = None
    kind: StepKind = Field(validation_alias=AliasChoices("kind", "type"))
    configuration: Dict[str, Any] = Field(default_factory=dict)
    next_step_id: Optional[str] = None
    transitions: List[Transition] = Field(default_factory=list)
    routes: List[Route] = Field(default_factory=list)

    @model_validator(mode="after")
    def _normalize_routes(self) -> "StepDefinition":
        if not self.routes:
            self.routes = build_routes(self)
        return self

    @property
    def display_name(self) -> str:
        return self.name or self.id


class WorkflowDefinition(_Model):
    """Immutable template describing a graph of steps."""

    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    version: str = "1"
    steps: List[StepDefinition] = Field(default_factory=list)
    initial_step_id: str
    variables: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @field_validator("version", mode="before")
    @classmethod
    def _coerce_version(cls, v: Any) -> str:
        return str(v)

    @model_validator(mode="after")
    def _check_graph(self) -> "WorkflowDefinition":
        if not self.steps:
            raise DefinitionValidationError(
                f"Workflow definition '{self.id}' must have at least one step", "steps"
            )
        ids: set[str] = set()
        for step in self.steps:
            if step.id in ids:
                raise DefinitionValidationError(
                    f"Duplicate step id '{step.id}' in workflow '{self.id}'", "steps"
                )
            ids.add(step.id)
        if self.initial_step_id not in ids:
            raise DefinitionValidationError(
                f"Initial step '{self.initial_step_id}' not found in workflow steps",
                "initial_step_id",
            )
        for step in self.steps:
            if step.next_step_id and step.next_step_id not in ids:
                raise DefinitionValidationError(
                    f"NextStepId '{step.next_step_id}' in step '{step.id}' not found",
                    "next_step_id",
                )
            for transition in step.transitions:
                if transition.target_step_id not in ids:
                    raise DefinitionValidationError(
                        f"Transition target '{transition.target_step_id}' in step "
                        f"'{step.id}' not found",
                        "transitions",
                    )
            if step.next_step_id and step.transitions:
                logger.debug(
                    f"Step '{step.id}' declares both nextStepId and transitions; "
                    "transitions are ignored"
                )
        return self

    def get_step(self, step_id: Optional[str]) -> Optional[StepDefinition]:
        if not step_id:
            return None
        return next((s for s in self.steps if s.id == step_id), None)


class StepExecutionResult(BaseModel):
    """Outcome every step executor hands back to the engine."""

    success: bool
    status: StepStatus
    next_step_id: Optional[str] = None
    output_data: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    @property
    def is_suspended(self) -> bool:
        return self.status in SUSPENDING_STEP_STATUSES

    @classmethod
    def completed(
        cls,
        output_data: Optional[Dict[str, Any]] = None,
        next_step_id: Optional[str] = None,
    ) -> "StepExecutionResult":
        return cls(
            success=True,
            status=StepStatus.COMPLETED,
            output_data=output_data or {},
            next_step_id=next_step_id,
        )

    @classmethod
    def skipped(cls, next_step_id: Optional[str] = None) -> "StepExecutionResult":
        return cls(success=True, status=StepStatus.SKIPPED, next_step_id=next_step_id)

    @classmethod
    def routed(
        cls,
        next_step_id: str,
        error_message: Optional[str] = None,
        output_data: Optional[Dict[str, Any]] = None,
    ) -> "StepExecutionResult":
        """Handled failure expressed as a normal transition."""
        return cls(
            success=True,
            status=StepStatus.COMPLETED,
            next_step_id=next_step_id,
            error_message=error_message,
            output_data=output_data or {},
        )

    @classmethod
    def waiting(cls, output_data: Optional[Dict[str, Any]] = None) -> "StepExecutionResult":
        return cls(
            success=False,
            status=StepStatus.WAITING_FOR_INPUT,
            output_data=output_data or {},
        )

    @classmethod
    def scheduled(cls) -> "StepExecutionResult":
        return cls(success=False, status=StepStatus.SCHEDULED)

    @classmethod
    def retry(cls, error_message: str) -> "StepExecutionResult":
        return cls(success=False, status=StepStatus.PENDING, error_message=error_message)

    @classmethod
    def failed(cls, error_message: str) -> "StepExecutionResult":
        return cls(success=False, status=StepStatus.FAILED, error_message=error_message)
