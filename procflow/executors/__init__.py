"""Step executors, one per step kind."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import StepExecutor, read_field, resolve_bindings
from .business import BusinessStepExecutor
from .decision import DecisionStepExecutor
from .interaction import InteractionStepExecutor
from .scheduled import ScheduledStepExecutor
from .subworkflow import SubWorkflowStepExecutor

if TYPE_CHECKING:
    from ..engine import WorkflowEngine


def build_default_executors(engine: "WorkflowEngine") -> list[StepExecutor]:
    """Return the five standard executors wired to ``engine``'s collaborators."""

    return [
        InteractionStepExecutor(engine.task_system),
        ScheduledStepExecutor(engine.evaluator),
        BusinessStepExecutor(
            engine.services, default_retry_delay=engine.config.default_retry_delay_seconds
        ),
        DecisionStepExecutor(engine.evaluator, engine.services),
        SubWorkflowStepExecutor(
            engine, default_timeout=engine.config.subworkflow_wait_timeout_seconds
        ),
    ]


__all__ = [
    "StepExecutor",
    "InteractionStepExecutor",
    "ScheduledStepExecutor",
    "BusinessStepExecutor",
    "DecisionStepExecutor",
    "SubWorkflowStepExecutor",
    "build_default_executors",
    "read_field",
    "resolve_bindings",
]
