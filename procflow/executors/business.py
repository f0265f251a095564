"""Executor for steps that invoke a registered service."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Mapping

from ..constants import DEFAULT_RETRY_DELAY_SECONDS
from ..contracts import StepDefinition, StepExecutionResult, StepKind
from ..persistence.models import StepInstance, WorkflowInstance
from ..services.registry import ServiceInvoker
from ..steps import BusinessStepConfig, load_step_config
from ..utils.clock import utcnow
from ..utils.retry import compute_retry_at
from .base import MISSING, StepExecutor, read_field, resolve_bindings

logger = logging.getLogger(__name__)


def map_outputs(result: Any, output_mapping: Mapping[str, str]) -> Dict[str, Any]:
    """Copy named result fields to workflow variable names; absent fields are skipped."""
    output: Dict[str, Any] = {}
    if result is None:
        return output
    for field, variable in output_mapping.items():
        value = read_field(result, field)
        if value is not MISSING:
            output[variable] = value
    return output


class BusinessStepExecutor(StepExecutor):
    """Call ``service_name.method_name`` and map its result into variables.

    Failures consume the configured retry budget first: each retry is parked
    as a ``pending`` step with ``due_at`` set and picked up again by the
    sweeper. Once the budget is spent the step routes to
    ``error_next_step_id`` when configured, or fails.
    """

    kind = StepKind.BUSINESS

    def __init__(
        self,
        services: ServiceInvoker,
        default_retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.services = services
        self.default_retry_delay = default_retry_delay
        self.clock = clock

    async def execute(
        self,
        step_instance: StepInstance,
        step: StepDefinition,
        workflow_instance: WorkflowInstance,
    ) -> StepExecutionResult:
        config = load_step_config(BusinessStepConfig, step)
        params = resolve_bindings(config.input_mapping, workflow_instance.variables)
        try:
            result = await self.services.invoke(config.service_name, config.method_name, params)
        except Exception as exc:
            return self._handle_error(config, step_instance, exc)
        return StepExecutionResult.completed(map_outputs(result, config.output_mapping))

    def _handle_error(
        self, config: BusinessStepConfig, step_instance: StepInstance, exc: Exception
    ) -> StepExecutionResult:
        message = str(exc) or type(exc).__name__
        if step_instance.retry_count < (config.retry_count or 0):
            step_instance.retry_count += 1
            delay = (
                config.retry_delay_seconds
                if config.retry_delay_seconds is not None
                else self.default_retry_delay
            )
            step_instance.due_at = compute_retry_at(
                step_instance.retry_count,
                delay,
                config.retry_backoff_multiplier,
                now=self.clock(),
            )
            logger.warning(
                f"Step {step_instance.id} failed ({message}); retry "
                f"{step_instance.retry_count}/{config.retry_count} due at "
                f"{step_instance.due_at.isoformat()}"
            )
            return StepExecutionResult.retry(message)

        if config.error_next_step_id:
            logger.warning(
                f"Step {step_instance.id} failed ({message}); routing to "
                f"'{config.error_next_step_id}'"
            )
            return StepExecutionResult.routed(config.error_next_step_id, error_message=message)

        logger.error(f"Step {step_instance.id} failed: {message}")
        return StepExecutionResult.failed(message)
