from datetime import datetime, timedelta, timezone

import pytest

from procflow.contracts import StepDefinition, StepKind, StepStatus
from procflow.exceptions import DefinitionValidationError
from procflow.executors import InteractionStepExecutor
from procflow.persistence.models import StepInstance, WorkflowInstance
from procflow.tasks import InMemoryTaskSystem

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _context(configuration):
    step = StepDefinition.model_validate(
        {"id": "review", "name": "Manager review", "type": "interaction", "configuration": configuration}
    )
    instance = WorkflowInstance(id="wf-1", definition_id="approval", variables={"amount": 150})
    step_instance = StepInstance(
        id="si-1", workflow_instance_id="wf-1", step_definition_id="review", kind=StepKind.INTERACTION
    )
    return step_instance, step, instance


class BrokenTaskSystem(InMemoryTaskSystem):
    async def create_task(self, info):
        raise ConnectionError("task service down")


@pytest.mark.asyncio
async def test_waits_and_assigns_first_user_without_task_system():
    step_instance, step, instance = _context({"assignedUsers": ["alice", "bob"]})

    result = await InteractionStepExecutor().execute(step_instance, step, instance)

    assert result.status == StepStatus.WAITING_FOR_INPUT
    assert result.is_suspended
    assert result.output_data == {}
    assert step_instance.assigned_to == "alice"


@pytest.mark.asyncio
async def test_creates_external_task():
    tasks = InMemoryTaskSystem()
    executor = InteractionStepExecutor(tasks, clock=lambda: NOW)
    step_instance, step, instance = _context(
        {
            "assignedUsers": ["alice"],
            "assignedRoles": ["managers"],
            "priority": "high",
            "timeoutMinutes": 60,
            "customData": {"department": "finance"},
        }
    )

    result = await executor.execute(step_instance, step, instance)

    task_id = result.output_data["externalTaskId"]
    assert task_id in tasks.tasks, f"Task {task_id} was not created"
    assert result.output_data["taskCreatedAt"] == NOW.isoformat()
    info = tasks.tasks[task_id]
    assert info.title == "Manager review"
    assert info.step_instance_id == "si-1"
    assert info.due_date == NOW + timedelta(minutes=60)
    assert info.assigned_roles == ["managers"]
    assert info.workflow_context == {"amount": 150}
    assert info.metadata["stepId"] == "review"
    assert info.metadata["department"] == "finance"


@pytest.mark.asyncio
async def test_task_creation_failure_still_waits():
    executor = InteractionStepExecutor(BrokenTaskSystem())
    step_instance, step, instance = _context({})

    result = await executor.execute(step_instance, step, instance)

    assert result.status == StepStatus.WAITING_FOR_INPUT
    assert result.output_data == {"externalTaskError": "task service down"}


@pytest.mark.asyncio
async def test_invalid_configuration_raises():
    step_instance, step, instance = _context({"timeoutMinutes": "soon"})
    with pytest.raises(DefinitionValidationError, match="Invalid configuration for step 'review'"):
        await InteractionStepExecutor().execute(step_instance, step, instance)
