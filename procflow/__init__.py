"""procflow: declarative multi-step process orchestration."""

from .config import load_config
from .contracts import (
    StepDefinition,
    StepExecutionResult,
    StepKind,
    StepStatus,
    WorkflowDefinition,
    WorkflowStatus,
)
from .engine import WorkflowEngine
from .loader import load_definition, parse_definition
from .persistence import get_repositories
from .services import REGISTRY, register_service
from .sweeper import ScheduledStepSweeper
from .tasks import get_task_system

__version__ = "0.1.0"
__all__ = [
    "StepDefinition",
    "StepExecutionResult",
    "StepKind",
    "StepStatus",
    "WorkflowDefinition",
    "WorkflowStatus",
    "WorkflowEngine",
    "ScheduledStepSweeper",
    "load_config",
    "load_definition",
    "parse_definition",
    "get_repositories",
    "get_task_system",
    "REGISTRY",
    "register_service",
]
