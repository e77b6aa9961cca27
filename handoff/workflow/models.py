"""Domain models for the handoff workflow system."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from handoff.agents.types import AgentResult
    from handoff.routing.conditions import Condition


class Priority(Enum):
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class AutonomyLevel(Enum):
    NONE = "none"
    GUIDED = "guided"
    HIGH = "high"


class StepMode(Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONDITIONAL = "conditional"


class WorkflowStatus(Enum):
    PLANNED = "planned"
    RUNNING = "running"
    WAITING_FOR_AGENT = "waiting_for_agent"
    VALIDATING = "validating"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


TERMINAL_STATUSES = frozenset({
    WorkflowStatus.COMPLETED,
    WorkflowStatus.FAILED,
    WorkflowStatus.ABORTED,
})


class StepStatus(Enum):
    TODO = "todo"
    WAITING = "waiting"
    VALIDATING = "validating"
    RETRYING = "retrying"
    DONE = "done"
    SKIPPED = "skipped"
    DEGRADED = "degraded"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Steps in these states no longer block dependents.
SETTLED_STEP_STATUSES = frozenset({
    StepStatus.DONE,
    StepStatus.SKIPPED,
    StepStatus.DEGRADED,
})


class Outcome(Enum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"
    ESCALATED = "escalated"
    ABORTED = "aborted"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Request:
    text: str
    priority: Priority = Priority.NORMAL
    constraints: frozenset[str] = frozenset()
    received_at: datetime = field(default_factory=_utcnow)
    target_files: tuple[str, ...] = ()
    tech_stack: tuple[str, ...] = ()
    extras: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ExecutionStep:
    step_id: str
    agent_id: str
    category: str
    mode: StepMode = StepMode.SEQUENTIAL
    depends_on: tuple[str, ...] = ()
    critical: bool = True
    condition: Condition | None = None


@dataclass(frozen=True)
class ExecutionPlan:
    steps: tuple[ExecutionStep, ...]
    request_text: str = ""
    ambiguous: bool = False

    def step(self, step_id: str) -> ExecutionStep:
        for step in self.steps:
            if step.step_id == step_id:
                return step
        raise KeyError(f"Unknown step: {step_id}")

    @property
    def agent_ids(self) -> list[str]:
        return [s.agent_id for s in self.steps]

    @property
    def is_single_step(self) -> bool:
        return len(self.steps) == 1


@dataclass
class StateTransition:
    from_status: WorkflowStatus
    to_status: WorkflowStatus
    timestamp: datetime
    reason: str | None = None


@dataclass
class WorkflowState:
    workflow_id: str
    plan: ExecutionPlan
    status: WorkflowStatus = WorkflowStatus.PLANNED
    current_step_index: int = 0
    completed_agents: list[str] = field(default_factory=list)
    pending_agents: list[str] = field(default_factory=list)
    results: dict[str, AgentResult] = field(default_factory=dict)
    retry_counts: dict[str, int] = field(default_factory=dict)
    step_status: dict[str, StepStatus] = field(default_factory=dict)
    assignments: dict[str, str] = field(default_factory=dict)
    transitions: list[StateTransition] = field(default_factory=list)
    trail: list[str] = field(default_factory=list)
    abort_reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def snapshot(self) -> dict:
        """Plain-dict progress view, safe to hand to callbacks."""
        total = len(self.plan.steps)
        settled = sum(
            1 for s in self.step_status.values() if s in SETTLED_STEP_STATUSES
        )
        return {
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "current_step_index": self.current_step_index,
            "completed_steps": settled,
            "total_steps": total,
            "progress_pct": round(100 * settled / total) if total else 100,
            "completed_agents": list(self.completed_agents),
            "pending_agents": list(self.pending_agents),
            "step_status": {k: v.value for k, v in self.step_status.items()},
        }


@dataclass
class FailureReport:
    kind: str
    message: str
    step_id: str | None = None
    agent_id: str | None = None
    violated_gates: list[str] = field(default_factory=list)
    trail: list[str] = field(default_factory=list)


@dataclass
class SuggestedHandoff:
    from_agent: str
    to_agent: str
    label: str
    auto_send: bool


@dataclass
class WorkflowResult:
    workflow_id: str
    status: WorkflowStatus
    outcome: Outcome
    deliverables: dict = field(default_factory=dict)
    results: dict[str, AgentResult] = field(default_factory=dict)
    failure: FailureReport | None = None
    skipped_steps: list[str] = field(default_factory=list)
    degraded_steps: list[str] = field(default_factory=list)
    handoffs: list[SuggestedHandoff] = field(default_factory=list)
    clarification: str | None = None
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.outcome in (Outcome.SUCCESS, Outcome.PARTIAL_SUCCESS)
