"""Executor for steps that wait until a point in time."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Mapping

from ..contracts import StepDefinition, StepExecutionResult, StepKind
from ..exceptions import ExpressionError, NoScheduleSource
from ..expressions import ExpressionEvaluator
from ..persistence.models import StepInstance, WorkflowInstance
from ..steps import ScheduledStepConfig, load_step_config
from ..utils.clock import ensure_utc, to_datetime, utcnow
from .base import StepExecutor

logger = logging.getLogger(__name__)


class ScheduledStepExecutor(StepExecutor):
    kind = StepKind.SCHEDULED

    def __init__(
        self, evaluator: ExpressionEvaluator, clock: Callable[[], datetime] = utcnow
    ):
        self.evaluator = evaluator
        self.clock = clock

    def _target(
        self, config: ScheduledStepConfig, step: StepDefinition, variables: Mapping[str, Any]
    ) -> datetime:
        if config.target_datetime is not None:
            return ensure_utc(config.target_datetime)
        if config.date_variable and config.date_variable in variables:
            return to_datetime(variables[config.date_variable])
        if config.schedule_expression:
            return to_datetime(self.evaluator.evaluate(config.schedule_expression, variables))
        raise NoScheduleSource(step.id)

    async def execute(
        self,
        step_instance: StepInstance,
        step: StepDefinition,
        workflow_instance: WorkflowInstance,
    ) -> StepExecutionResult:
        config = load_step_config(ScheduledStepConfig, step)
        try:
            target = self._target(config, step, workflow_instance.variables)
        except NoScheduleSource as exc:
            return StepExecutionResult.failed(str(exc))
        except (ExpressionError, TypeError, ValueError) as exc:
            return StepExecutionResult.failed(f"Invalid schedule for step '{step.id}': {exc}")

        if target <= self.clock():
            if config.skip_if_past:
                logger.info(f"Step {step_instance.id} target {target} has passed; skipping")
                return StepExecutionResult.skipped(step.next_step_id)
            return StepExecutionResult.completed(next_step_id=step.next_step_id)

        step_instance.due_at = target
        logger.info(f"Step {step_instance.id} scheduled for {target.isoformat()}")
        return StepExecutionResult.scheduled()
