"""Executor that runs another workflow as a nested step."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict

from ..constants import DEFAULT_SUBWORKFLOW_WAIT_TIMEOUT, SUBWORKFLOW_INSTANCE_KEY
from ..contracts import StepDefinition, StepExecutionResult, StepKind, StepStatus, WorkflowStatus
from ..persistence.models import StepInstance, WorkflowInstance
from ..steps import SubWorkflowStepConfig, load_step_config
from .base import StepExecutor

if TYPE_CHECKING:
    from ..engine import WorkflowEngine

logger = logging.getLogger(__name__)


class SubWorkflowStepExecutor(StepExecutor):
    """Start a child instance through the engine and optionally wait for it.

    The child gets correlation id ``"{parent}:sub:{step}"``. A failed,
    cancelled or timed out child routes to ``error_next_step_id`` when set and
    fails the step otherwise.
    """

    kind = StepKind.SUBWORKFLOW

    def __init__(
        self,
        engine: "WorkflowEngine",
        default_timeout: float = DEFAULT_SUBWORKFLOW_WAIT_TIMEOUT,
    ):
        self.engine = engine
        self.default_timeout = default_timeout

    @staticmethod
    def _on_error(
        config: SubWorkflowStepConfig, message: str, status: StepStatus = StepStatus.FAILED
    ) -> StepExecutionResult:
        if config.error_next_step_id:
            return StepExecutionResult.routed(config.error_next_step_id, error_message=message)
        return StepExecutionResult(success=False, status=status, error_message=message)

    async def execute(
        self,
        step_instance: StepInstance,
        step: StepDefinition,
        workflow_instance: WorkflowInstance,
    ) -> StepExecutionResult:
        config = load_step_config(SubWorkflowStepConfig, step)
        parent_vars = workflow_instance.variables
        child_vars: Dict[str, Any] = {}
        for child_name, parent_ref in config.input_mapping.items():
            parent_name = parent_ref.lstrip("$")
            if parent_name in parent_vars:
                child_vars[child_name] = parent_vars[parent_name]

        try:
            child_id = await self.engine.start_instance(
                config.workflow_definition_id,
                child_vars,
                correlation_id=f"{workflow_instance.id}:sub:{step_instance.id}",
                created_by=workflow_instance.created_by,
            )
        except Exception as exc:
            logger.warning(f"Sub-workflow start failed for step {step_instance.id}: {exc}")
            return self._on_error(config, str(exc))

        logger.info(f"Step {step_instance.id} started sub-workflow {child_id}")
        if not config.wait_for_completion:
            return StepExecutionResult.completed({SUBWORKFLOW_INSTANCE_KEY: child_id})

        timeout = config.wait_timeout_seconds or self.default_timeout
        try:
            child = await self.engine.wait_for_completion(child_id, timeout)
        except asyncio.TimeoutError:
            return self._on_error(
                config,
                f"Sub-workflow {child_id} did not complete within {timeout} seconds",
                StepStatus.TIMEOUT,
            )

        if child.status != WorkflowStatus.COMPLETED:
            return self._on_error(
                config, f"Sub-workflow {child_id} did not complete successfully ({child.status.value})"
            )

        output: Dict[str, Any] = {}
        for child_name, parent_name in config.output_mapping.items():
            if child_name in child.variables:
                output[parent_name] = child.variables[child_name]
        return StepExecutionResult.completed(output)
