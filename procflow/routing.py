"""Next-step resolution shared by every engine entry point."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional

from .contracts import Route, StepDefinition, StepExecutionResult
from .expressions import ExpressionEvaluator


def select_route(
    routes: Iterable[Route],
    variables: Mapping[str, Any],
    evaluator: ExpressionEvaluator,
) -> Optional[Route]:
    """Return the first route whose condition is empty or true."""
    for route in routes:
        if not route.condition or evaluator.evaluate_condition(route.condition, variables):
            return route
    return None


def resolve_next_step(
    result: StepExecutionResult,
    step: StepDefinition,
    variables: Mapping[str, Any],
    evaluator: ExpressionEvaluator,
) -> Optional[str]:
    """Pick the step that follows ``step``.

    An explicit ``result.next_step_id`` wins, then the step's routes in
    declared order. ``None`` means the workflow is complete.
    """
    if result.next_step_id:
        return result.next_step_id
    route = select_route(step.routes, variables, evaluator)
    return route.target_step_id if route else None
