"""Kind-specific step configuration models.

Each step definition carries a free-form ``configuration`` mapping that the
matching executor validates into one of the models below. Keys are accepted
in snake_case or camelCase.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar

from pydantic import Field, ValidationError

from .contracts import StepDefinition, _Model
from .exceptions import DefinitionValidationError


class InteractionStepConfig(_Model):
    form_schema: Optional[Any] = None
    assigned_users: List[str] = Field(default_factory=list)
    assigned_roles: List[str] = Field(default_factory=list)
    timeout_minutes: Optional[int] = None
    priority: Optional[str] = None
    custom_data: Dict[str, Any] = Field(default_factory=dict)


class ScheduledStepConfig(_Model):
    target_datetime: Optional[datetime] = None
    date_variable: Optional[str] = None
    schedule_expression: Optional[str] = None
    skip_if_past: bool = False


class BusinessStepConfig(_Model):
    service_name: str
    method_name: str
    input_mapping: Dict[str, Any] = Field(default_factory=dict)
    # result field -> workflow variable
    output_mapping: Dict[str, str] = Field(default_factory=dict)
    retry_count: Optional[int] = None
    retry_delay_seconds: Optional[float] = None
    retry_backoff_multiplier: float = 1.0
    error_next_step_id: Optional[str] = None


class DecisionRoute(_Model):
    name: Optional[str] = None
    next_step_id: str
    condition: Optional[str] = None


class DecisionStepConfig(_Model):
    decision_type: Literal["conditions", "service"] = "conditions"
    routes: List[DecisionRoute] = Field(default_factory=list)
    default_next_step_id: Optional[str] = None
    service_name: Optional[str] = None
    method_name: Optional[str] = None
    input_mapping: Dict[str, Any] = Field(default_factory=dict)


class SubWorkflowStepConfig(_Model):
    workflow_definition_id: str
    # child variable -> parent variable (optionally ``$``-prefixed)
    input_mapping: Dict[str, str] = Field(default_factory=dict)
    # child variable -> parent variable
    output_mapping: Dict[str, str] = Field(default_factory=dict)
    wait_for_completion: bool = True
    wait_timeout_seconds: Optional[float] = None
    error_next_step_id: Optional[str] = None


ConfigT = TypeVar("ConfigT", bound=_Model)


def load_step_config(config_cls: Type[ConfigT], step: StepDefinition) -> ConfigT:
    """Validate ``step.configuration`` as ``config_cls``."""
    try:
        return config_cls.model_validate(step.configuration)
    except ValidationError as exc:
        raise DefinitionValidationError(
            f"Invalid configuration for step '{step.id}': {exc}", "configuration"
        ) from exc
