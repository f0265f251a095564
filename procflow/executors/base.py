"""Base class and helpers shared by the step executors."""

from __future__ import annotations

import abc
from typing import Any, Dict, Mapping

from pydantic import BaseModel

from ..contracts import StepDefinition, StepExecutionResult, StepKind
from ..persistence.models import StepInstance, WorkflowInstance

MISSING = object()


class StepExecutor(metaclass=abc.ABCMeta):
    """Runs one kind of step and reports the outcome to the engine.

    Executors may set scheduling fields (``due_at``, ``assigned_to``,
    ``retry_count``) on the step instance; the engine persists it after
    ``execute`` returns.
    """

    kind: StepKind

    def can_execute(self, kind: StepKind | str) -> bool:
        try:
            return StepKind(kind) == self.kind
        except ValueError:
            return False

    @abc.abstractmethod
    async def execute(
        self,
        step_instance: StepInstance,
        step: StepDefinition,
        workflow_instance: WorkflowInstance,
    ) -> StepExecutionResult:
        """Execute ``step`` for ``workflow_instance``."""
        raise NotImplementedError


def resolve_bindings(mapping: Mapping[str, Any], variables: Mapping[str, Any]) -> Dict[str, Any]:
    """Build call parameters from an input mapping.

    ``"$name"`` values reference workflow variables and are omitted when the
    variable is unset; any other value is passed through as a literal.
    """
    params: Dict[str, Any] = {}
    for name, source in mapping.items():
        if isinstance(source, str) and source.startswith("$"):
            variable = source[1:]
            if variable in variables:
                params[name] = variables[variable]
        else:
            params[name] = source
    return params


def read_field(value: Any, path: str) -> Any:
    """Read a possibly dotted field from mappings, models or objects.

    Returns ``MISSING`` when any segment is absent.
    """
    current = value
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, BaseModel):
            if part in type(current).model_fields:
                current = getattr(current, part)
            else:
                # Fall back to the serialized form so aliases match too.
                dumped = current.model_dump(by_alias=True)
                if part not in dumped:
                    return MISSING
                current = dumped[part]
        elif not part.startswith("_") and hasattr(current, part):
            current = getattr(current, part)
        else:
            return MISSING
    return current
