"""Workflow state-machine transitions defined as data."""

from .exceptions import InvalidTransitionError
from .models import TERMINAL_STATUSES, WorkflowStatus

_S = WorkflowStatus

VALID_TRANSITIONS: frozenset[tuple[WorkflowStatus, WorkflowStatus]] = frozenset(
    {
        (_S.PLANNED, _S.RUNNING),                 # dispatch begins
        (_S.RUNNING, _S.WAITING_FOR_AGENT),       # step handed to an agent
        (_S.RUNNING, _S.COMPLETED),               # remaining steps all skipped
        (_S.RUNNING, _S.FAILED),                  # remaining steps unreachable
        (_S.WAITING_FOR_AGENT, _S.VALIDATING),    # result or timeout received
        (_S.VALIDATING, _S.RUNNING),              # gate passed, more steps
        (_S.VALIDATING, _S.WAITING_FOR_AGENT),    # gate settled, siblings in flight
        (_S.VALIDATING, _S.COMPLETED),            # last step passed
        (_S.VALIDATING, _S.RETRYING),             # gate failed, budget left
        (_S.VALIDATING, _S.FAILED),               # budget exhausted or escalated
        (_S.RETRYING, _S.WAITING_FOR_AGENT),      # re-dispatch
    }
    | {(status, _S.ABORTED) for status in _S if status not in TERMINAL_STATUSES}
)


def validate_transition(
    workflow_id: str,
    from_status: WorkflowStatus,
    to_status: WorkflowStatus,
) -> None:
    """Raise InvalidTransitionError if the transition is not allowed."""
    if (from_status, to_status) not in VALID_TRANSITIONS:
        raise InvalidTransitionError(workflow_id, from_status, to_status)
