"""Data types crossing the agent invocation boundary."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from handoff.workflow.exceptions import MalformedAgentResult

# Execution-context fields every package may carry; request extras add more.
TARGET_FILES = "target_files"
TECH_STACK = "tech_stack"
PREVIOUS_OUTPUTS = "previous_outputs"


class AgentStatus(Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


@dataclass
class AgentResult:
    agent_id: str
    status: AgentStatus
    deliverables: dict = field(default_factory=dict)
    diagnostics: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status is AgentStatus.SUCCESS

    def to_dict(self) -> dict:
        return {
            "agentId": self.agent_id,
            "status": self.status.value,
            "deliverables": copy.deepcopy(self.deliverables),
            "diagnostics": list(self.diagnostics),
        }

    @classmethod
    def from_dict(cls, data: Any, agent_id: str = "?") -> AgentResult:
        """Parse a serialized result, raising MalformedAgentResult on contract breaks."""
        if not isinstance(data, Mapping):
            raise MalformedAgentResult(agent_id, f"expected an object, got {type(data).__name__}")
        agent_id = data.get("agentId", agent_id)
        if not isinstance(agent_id, str) or not agent_id:
            raise MalformedAgentResult("?", "agentId must be a non-empty string")
        try:
            status = AgentStatus(data.get("status"))
        except ValueError:
            raise MalformedAgentResult(agent_id, f"unknown status {data.get('status')!r}") from None
        deliverables = data.get("deliverables", {})
        if deliverables is None:
            deliverables = {}
        if not isinstance(deliverables, Mapping):
            raise MalformedAgentResult(agent_id, "deliverables must be an object")
        diagnostics = data.get("diagnostics", [])
        if not isinstance(diagnostics, list) or not all(isinstance(d, str) for d in diagnostics):
            raise MalformedAgentResult(agent_id, "diagnostics must be a list of strings")
        return cls(
            agent_id=agent_id,
            status=status,
            deliverables=dict(deliverables),
            diagnostics=list(diagnostics),
        )


def _freeze(data: Mapping | None) -> Mapping:
    return MappingProxyType({key: copy.deepcopy(value) for key, value in (data or {}).items()})


@dataclass(frozen=True)
class RequestContext:
    original_request: str
    task_type: str
    priority: str
    constraints: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "original_request": self.original_request,
            "task_type": self.task_type,
            "priority": self.priority,
            "constraints": list(self.constraints),
        }


@dataclass(frozen=True)
class ExecutionContext:
    """Read-only view over execution data; absent fields are not serialized.

    Every value is deep-copied on construction, so two contexts never share
    a mutable payload.
    """

    fields: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        data = {}
        for key, value in self.fields.items():
            data[key] = _freeze(value) if key == PREVIOUS_OUTPUTS else copy.deepcopy(value)
        object.__setattr__(self, "fields", MappingProxyType(data))

    @property
    def target_files(self) -> tuple[str, ...]:
        return tuple(self.fields.get(TARGET_FILES, ()))

    @property
    def tech_stack(self) -> tuple[str, ...]:
        return tuple(self.fields.get(TECH_STACK, ()))

    @property
    def previous_outputs(self) -> Mapping[str, Any]:
        return self.fields.get(PREVIOUS_OUTPUTS, MappingProxyType({}))

    def keys(self) -> set[str]:
        return set(self.fields)

    def to_dict(self) -> dict:
        out: dict[str, Any] = {}
        for key in sorted(self.fields):
            value = self.fields[key]
            if key == PREVIOUS_OUTPUTS:
                value = {k: copy.deepcopy(value[k]) for k in sorted(value)}
            elif isinstance(value, tuple):
                value = list(value)
            else:
                value = copy.deepcopy(value)
            out[key] = value
        return out


@dataclass(frozen=True)
class AgentContext:
    target_agent: str
    handoff_reason: str
    expected_output: tuple[str, ...] = ()
    handoff_instructions: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "target_agent": self.target_agent,
            "handoff_reason": self.handoff_reason,
            "expected_output": list(self.expected_output),
            "handoff_instructions": list(self.handoff_instructions),
        }


@dataclass(frozen=True)
class ContextPackage:
    request_context: RequestContext
    execution_context: ExecutionContext
    agent_context: AgentContext | None = None

    def to_dict(self) -> dict:
        return {
            "requestContext": self.request_context.to_dict(),
            "executionContext": self.execution_context.to_dict(),
            "agentContext": self.agent_context.to_dict() if self.agent_context else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> ContextPackage:
        rc = data["requestContext"]
        ac = data.get("agentContext")
        return cls(
            request_context=RequestContext(
                original_request=rc["original_request"],
                task_type=rc["task_type"],
                priority=rc["priority"],
                constraints=tuple(rc.get("constraints", ())),
            ),
            execution_context=ExecutionContext(
                {
                    k: tuple(v) if k in (TARGET_FILES, TECH_STACK) else v
                    for k, v in data.get("executionContext", {}).items()
                }
            ),
            agent_context=AgentContext(
                target_agent=ac["target_agent"],
                handoff_reason=ac["handoff_reason"],
                expected_output=tuple(ac.get("expected_output", ())),
                handoff_instructions=tuple(ac.get("handoff_instructions", ())),
            ) if ac else None,
        )
