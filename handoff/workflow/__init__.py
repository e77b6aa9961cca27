from .models import (
    AutonomyLevel,
    ExecutionPlan,
    ExecutionStep,
    Outcome,
    Priority,
    Request,
    StepMode,
    StepStatus,
    WorkflowResult,
    WorkflowState,
    WorkflowStatus,
)
from .transitions import VALID_TRANSITIONS, validate_transition

__all__ = [
    "AutonomyLevel",
    "ExecutionPlan",
    "ExecutionStep",
    "Outcome",
    "Priority",
    "Request",
    "StepMode",
    "StepStatus",
    "VALID_TRANSITIONS",
    "WorkflowResult",
    "WorkflowState",
    "WorkflowStatus",
    "validate_transition",
]
