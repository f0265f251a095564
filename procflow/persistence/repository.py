"""Repository abstractions for definitions, instances and step instances."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from ..contracts import WorkflowDefinition, WorkflowStatus
from .models import StepInstance, WorkflowInstance


class DefinitionRepository(Protocol):
    """Protocol for workflow definition storage."""

    async def get_by_id(self, definition_id: str) -> WorkflowDefinition | None:
        """Retrieve a definition by id."""

    async def get_by_name_and_version(
        self, name: str, version: str
    ) -> WorkflowDefinition | None:
        """Retrieve a definition by name and version."""

    async def list_definitions(self) -> list[WorkflowDefinition]:
        """Return all stored definitions."""

    async def create(self, definition: WorkflowDefinition) -> str:
        """Persist a new definition and return its id."""

    async def update(self, definition: WorkflowDefinition) -> None:
        """Replace a stored definition."""

    async def delete(self, definition_id: str) -> None:
        """Remove a definition."""


class InstanceRepository(Protocol):
    """Protocol for workflow instance storage."""

    async def get_by_id(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve an instance by id."""

    async def get_by_status(self, status: WorkflowStatus) -> list[WorkflowInstance]:
        """Return instances in ``status``."""

    async def get_by_definition_id(self, definition_id: str) -> list[WorkflowInstance]:
        """Return instances of a definition."""

    async def get_by_correlation_id(self, correlation_id: str) -> WorkflowInstance | None:
        """Retrieve the instance carrying ``correlation_id``."""

    async def list_instances(self) -> list[WorkflowInstance]:
        """Return all stored instances."""

    async def create(self, instance: WorkflowInstance) -> str:
        """Persist a new instance and return its id."""

    async def update(self, instance: WorkflowInstance) -> None:
        """Persist instance changes."""

    async def delete(self, instance_id: str) -> None:
        """Remove an instance."""


class StepInstanceRepository(Protocol):
    """Protocol for step instance storage."""

    async def get_by_id(self, step_instance_id: str) -> StepInstance | None:
        """Retrieve a step instance by id."""

    async def get_by_workflow_instance_id(self, instance_id: str) -> list[StepInstance]:
        """Return the step history of an instance in creation order."""

    async def get_pending(self) -> list[StepInstance]:
        """Return steps that are pending or waiting for input."""

    async def get_scheduled(self, before: datetime) -> list[StepInstance]:
        """Return scheduled steps due at or before ``before``."""

    async def get_due_retries(self, before: datetime) -> list[StepInstance]:
        """Return pending retries due at or before ``before``."""

    async def get_by_assigned_user(self, user_id: str) -> list[StepInstance]:
        """Return steps waiting for input assigned to ``user_id``."""

    async def create(self, step_instance: StepInstance) -> str:
        """Persist a new step instance and return its id."""

    async def update(self, step_instance: StepInstance) -> None:
        """Persist step instance changes."""

    async def delete(self, step_instance_id: str) -> None:
        """Remove a step instance."""


@dataclass(frozen=True)
class RepositorySet:
    """The three repositories an engine needs, sharing one backend."""

    definitions: DefinitionRepository
    instances: InstanceRepository
    steps: StepInstanceRepository
