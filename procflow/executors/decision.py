"""Executor for routing-only decision steps."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from ..contracts import Route, StepDefinition, StepExecutionResult, StepKind
from ..exceptions import ExpressionError, NoRouteMatched, ServiceInvocationError
from ..expressions import ExpressionEvaluator
from ..persistence.models import StepInstance, WorkflowInstance
from ..routing import select_route
from ..services.registry import ServiceInvoker
from ..steps import DecisionStepConfig, load_step_config
from .base import MISSING, StepExecutor, read_field, resolve_bindings

logger = logging.getLogger(__name__)


class DecisionStepExecutor(StepExecutor):
    kind = StepKind.DECISION

    def __init__(self, evaluator: ExpressionEvaluator, services: ServiceInvoker):
        self.evaluator = evaluator
        self.services = services

    def _decide_by_conditions(
        self, config: DecisionStepConfig, variables: Mapping[str, Any]
    ) -> Optional[str]:
        routes = [
            Route(target_step_id=r.next_step_id, condition=r.condition, label=r.name)
            for r in config.routes
        ]
        route = select_route(routes, variables, self.evaluator)
        return route.target_step_id if route else None

    async def _decide_by_service(
        self, config: DecisionStepConfig, step: StepDefinition, variables: Mapping[str, Any]
    ) -> Optional[str]:
        if not config.service_name or not config.method_name:
            raise ServiceInvocationError(
                config.service_name or "",
                config.method_name,
                f"Decision step '{step.id}' needs serviceName and methodName",
            )
        params = resolve_bindings(config.input_mapping, variables)
        result = await self.services.invoke(config.service_name, config.method_name, params)

        if isinstance(result, str):
            return result or None
        if result is None:
            return None
        for key in ("nextStepId", "next_step_id"):
            value = read_field(result, key)
            if value is not MISSING and value:
                return str(value)
        for key in ("routeName", "route_name"):
            name = read_field(result, key)
            if name is not MISSING and name:
                wanted = str(name).lower()
                match = next(
                    (r for r in config.routes if r.name and r.name.lower() == wanted), None
                )
                return match.next_step_id if match else None
        return None

    async def execute(
        self,
        step_instance: StepInstance,
        step: StepDefinition,
        workflow_instance: WorkflowInstance,
    ) -> StepExecutionResult:
        config = load_step_config(DecisionStepConfig, step)
        variables = workflow_instance.variables

        if config.decision_type == "service":
            try:
                selected = await self._decide_by_service(config, step, variables)
            except Exception as exc:
                logger.error(f"Service-based decision failed for step {step_instance.id}: {exc}")
                return StepExecutionResult.failed(f"Service-based decision failed: {exc}")
        else:
            try:
                selected = self._decide_by_conditions(config, variables)
            except ExpressionError as exc:
                return StepExecutionResult.failed(str(exc))

        selected = selected or config.default_next_step_id
        if not selected:
            return StepExecutionResult.failed(str(NoRouteMatched(step.id)))
        logger.debug(f"Decision step {step_instance.id} selected '{selected}'")
        return StepExecutionResult.completed(next_step_id=selected)
