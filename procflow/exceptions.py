"""Exception hierarchy for procflow.

All errors raised by the engine and its default collaborators derive from
``ProcflowError`` so callers can catch the whole family at once::

    ProcflowError
      ├── NotFoundError
      │     ├── DefinitionNotFound
      │     ├── InstanceNotFound
      │     └── StepNotFound
      ├── InvalidState
      ├── ExecutorNotFound
      ├── DefinitionValidationError
      ├── ServiceInvocationError
      ├── ExpressionError
      ├── NoRouteMatched
      └── NoScheduleSource
"""

from __future__ import annotations

from typing import Optional


class ProcflowError(Exception):
    """Base exception for procflow."""


class NotFoundError(ProcflowError):
    """Raised when a definition, instance or step id is unknown."""


class DefinitionNotFound(NotFoundError):
    def __init__(self, definition_id: str):
        self.definition_id = definition_id
        super().__init__(f"Workflow definition '{definition_id}' not found")


class InstanceNotFound(NotFoundError):
    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Workflow instance '{instance_id}' not found")


class StepNotFound(NotFoundError):
    def __init__(self, step_instance_id: str):
        self.step_instance_id = step_instance_id
        super().__init__(f"Step instance '{step_instance_id}' not found")


class InvalidState(ProcflowError):
    """Raised when an operation is not allowed in the current status."""

    def __init__(self, message: str, status: Optional[str] = None):
        self.status = status
        super().__init__(message)


class ExecutorNotFound(ProcflowError):
    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"No executor found for step type '{kind}'")


class DefinitionValidationError(ProcflowError):
    """Raised when a workflow definition is malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class ServiceInvocationError(ProcflowError):
    """Raised when a named service or method cannot be invoked."""

    def __init__(self, service_name: str, method_name: Optional[str], message: str):
        self.service_name = service_name
        self.method_name = method_name
        super().__init__(message)


class ExpressionError(ProcflowError):
    """Raised by strict expression evaluation."""

    def __init__(self, expression: str, message: str):
        self.expression = expression
        super().__init__(f"Failed to evaluate expression '{expression}': {message}")


class NoRouteMatched(ProcflowError):
    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(
            f"No matching route found for decision step '{step_id}' "
            "and no default route specified"
        )


class NoScheduleSource(ProcflowError):
    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"No valid schedule configuration found for step '{step_id}'")
