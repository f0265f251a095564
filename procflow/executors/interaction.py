"""Executor for interaction steps that wait for user input."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from ..constants import (
    EXTERNAL_TASK_CREATED_KEY,
    EXTERNAL_TASK_ERROR_KEY,
    EXTERNAL_TASK_ID_KEY,
)
from ..contracts import StepDefinition, StepExecutionResult, StepKind
from ..persistence.models import StepInstance, WorkflowInstance
from ..steps import InteractionStepConfig, load_step_config
from ..tasks.base import ExternalTaskInfo, ExternalTaskSystem
from ..utils.clock import utcnow
from .base import StepExecutor

logger = logging.getLogger(__name__)


class InteractionStepExecutor(StepExecutor):
    """Park the workflow until ``complete_interaction_step`` is called.

    When a task system is configured a matching task is created there;
    failing to create it is logged and recorded but never fails the step.
    """

    kind = StepKind.INTERACTION

    def __init__(
        self,
        task_system: Optional[ExternalTaskSystem] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.task_system = task_system
        self.clock = clock

    def _task_info(
        self,
        config: InteractionStepConfig,
        step_instance: StepInstance,
        step: StepDefinition,
        workflow_instance: WorkflowInstance,
    ) -> ExternalTaskInfo:
        due_date = None
        if config.timeout_minutes is not None:
            due_date = self.clock() + timedelta(minutes=config.timeout_minutes)
        return ExternalTaskInfo(
            workflow_instance_id=workflow_instance.id,
            step_instance_id=step_instance.id,
            title=step.display_name,
            description=f"Workflow: {workflow_instance.definition_id}\nStep: {step.display_name}",
            priority=config.priority,
            due_date=due_date,
            assigned_users=config.assigned_users,
            assigned_roles=config.assigned_roles,
            form_schema=config.form_schema,
            workflow_context=dict(workflow_instance.variables),
            metadata={
                "stepType": step.kind.value,
                "stepId": step.id,
                "workflowDefinitionId": workflow_instance.definition_id,
                **config.custom_data,
            },
        )

    async def execute(
        self,
        step_instance: StepInstance,
        step: StepDefinition,
        workflow_instance: WorkflowInstance,
    ) -> StepExecutionResult:
        config = load_step_config(InteractionStepConfig, step)
        if config.assigned_users:
            step_instance.assigned_to = config.assigned_users[0]

        output: Dict[str, Any] = {}
        if self.task_system is not None:
            info = self._task_info(config, step_instance, step, workflow_instance)
            try:
                task_id = await self.task_system.create_task(info)
            except Exception as exc:
                logger.warning(
                    f"Failed to create external task for step {step_instance.id}: {exc}"
                )
                output[EXTERNAL_TASK_ERROR_KEY] = str(exc)
            else:
                output[EXTERNAL_TASK_ID_KEY] = task_id
                output[EXTERNAL_TASK_CREATED_KEY] = self.clock().isoformat()
                logger.info(f"External task {task_id} created for step {step_instance.id}")

        return StepExecutionResult.waiting(output)
