"""In-memory implementation of the workflow repositories."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Dict

from ..contracts import StepStatus, WorkflowDefinition, WorkflowStatus
from ..utils.clock import ensure_utc, utcnow
from .models import StepInstance, WorkflowInstance
from .repository import (
    DefinitionRepository,
    InstanceRepository,
    RepositorySet,
    StepInstanceRepository,
)

# Stored objects are copied in and out so callers never share state with the
# store, matching the behaviour of the database backends.


class InMemoryDefinitionRepository(DefinitionRepository):
    def __init__(self) -> None:
        self._definitions: Dict[str, WorkflowDefinition] = {}

    async def get_by_id(self, definition_id: str) -> WorkflowDefinition | None:
        definition = self._definitions.get(definition_id)
        return definition.model_copy(deep=True) if definition else None

    async def get_by_name_and_version(
        self, name: str, version: str
    ) -> WorkflowDefinition | None:
        for definition in self._definitions.values():
            if definition.name == name and definition.version == version:
                return definition.model_copy(deep=True)
        return None

    async def list_definitions(self) -> list[WorkflowDefinition]:
        return [d.model_copy(deep=True) for d in self._definitions.values()]

    async def create(self, definition: WorkflowDefinition) -> str:
        if definition.id in self._definitions:
            raise ValueError(f"Workflow definition '{definition.id}' already exists")
        self._definitions[definition.id] = definition.model_copy(deep=True)
        return definition.id

    async def update(self, definition: WorkflowDefinition) -> None:
        definition.updated_at = utcnow()
        self._definitions[definition.id] = definition.model_copy(deep=True)

    async def delete(self, definition_id: str) -> None:
        self._definitions.pop(definition_id, None)


class InMemoryInstanceRepository(InstanceRepository):
    def __init__(self) -> None:
        self._instances: Dict[str, WorkflowInstance] = {}

    async def get_by_id(self, instance_id: str) -> WorkflowInstance | None:
        instance = self._instances.get(instance_id)
        return instance.model_copy(deep=True) if instance else None

    async def get_by_status(self, status: WorkflowStatus) -> list[WorkflowInstance]:
        return [
            i.model_copy(deep=True) for i in self._instances.values() if i.status == status
        ]

    async def get_by_definition_id(self, definition_id: str) -> list[WorkflowInstance]:
        return [
            i.model_copy(deep=True)
            for i in self._instances.values()
            if i.definition_id == definition_id
        ]

    async def get_by_correlation_id(self, correlation_id: str) -> WorkflowInstance | None:
        for instance in self._instances.values():
            if instance.correlation_id == correlation_id:
                return instance.model_copy(deep=True)
        return None

    async def list_instances(self) -> list[WorkflowInstance]:
        return [i.model_copy(deep=True) for i in self._instances.values()]

    async def create(self, instance: WorkflowInstance) -> str:
        instance.id = instance.id or str(uuid.uuid4())
        self._instances[instance.id] = instance.model_copy(deep=True, update={"step_history": []})
        return instance.id

    async def update(self, instance: WorkflowInstance) -> None:
        instance.updated_at = utcnow()
        self._instances[instance.id] = instance.model_copy(deep=True, update={"step_history": []})

    async def delete(self, instance_id: str) -> None:
        self._instances.pop(instance_id, None)


class InMemoryStepInstanceRepository(StepInstanceRepository):
    def __init__(self) -> None:
        self._steps: Dict[str, StepInstance] = {}

    def _select(self, predicate) -> list[StepInstance]:
        return [s.model_copy(deep=True) for s in self._steps.values() if predicate(s)]

    async def get_by_id(self, step_instance_id: str) -> StepInstance | None:
        step = self._steps.get(step_instance_id)
        return step.model_copy(deep=True) if step else None

    async def get_by_workflow_instance_id(self, instance_id: str) -> list[StepInstance]:
        return self._select(lambda s: s.workflow_instance_id == instance_id)

    async def get_pending(self) -> list[StepInstance]:
        return self._select(
            lambda s: s.status in (StepStatus.PENDING, StepStatus.WAITING_FOR_INPUT)
        )

    async def get_scheduled(self, before: datetime) -> list[StepInstance]:
        before = ensure_utc(before)
        return self._select(
            lambda s: s.status == StepStatus.SCHEDULED
            and s.due_at is not None
            and s.due_at <= before
        )

    async def get_due_retries(self, before: datetime) -> list[StepInstance]:
        before = ensure_utc(before)
        return self._select(
            lambda s: s.status == StepStatus.PENDING
            and s.due_at is not None
            and s.due_at <= before
        )

    async def get_by_assigned_user(self, user_id: str) -> list[StepInstance]:
        return self._select(
            lambda s: s.assigned_to == user_id and s.status == StepStatus.WAITING_FOR_INPUT
        )

    async def create(self, step_instance: StepInstance) -> str:
        step_instance.id = step_instance.id or str(uuid.uuid4())
        self._steps[step_instance.id] = step_instance.model_copy(deep=True)
        return step_instance.id

    async def update(self, step_instance: StepInstance) -> None:
        self._steps[step_instance.id] = step_instance.model_copy(deep=True)

    async def delete(self, step_instance_id: str) -> None:
        self._steps.pop(step_instance_id, None)


def create_inmemory_repositories() -> RepositorySet:
    """Return a fresh in-memory backend. Data does not survive the process."""
    return RepositorySet(
        definitions=InMemoryDefinitionRepository(),
        instances=InMemoryInstanceRepository(),
        steps=InMemoryStepInstanceRepository(),
    )
