"""Quality gates applied to every agent result before the workflow advances."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol, runtime_checkable

from handoff.agents.types import AgentResult, AgentStatus

OUTPUT_FORMAT = "output-format"
COMPLETENESS = "completeness"
SANITY = "sanity"
USER_READINESS = "user-readiness"

GATE_ORDER = (OUTPUT_FORMAT, COMPLETENESS, SANITY, USER_READINESS)

_PLACEHOLDER_RE = re.compile(
    r"\{\{[^}]*\}\}|<\s*(?:placeholder|insert[^>]*|todo)\s*>|\[(?:INSERT|TBD|TODO)[^\]]*\]"
    r"|\bTODO\b|\bFIXME\b|\bTBD\b|\bXXX\b|\bLorem ipsum\b",
)
_NEGATION_RE = re.compile(r"^(?:do\s+not|don't|never|avoid)\s+", re.IGNORECASE)


@dataclass
class GateCheck:
    passed: bool
    message: str = ""


@dataclass
class QualityGateResult:
    passed: bool
    violated_gates: list[str] = field(default_factory=list)
    details: dict[str, str] = field(default_factory=dict)


@runtime_checkable
class QualityGate(Protocol):
    name: str

    def check(self, result: AgentResult, expected: tuple[str, ...]) -> GateCheck: ...


def _strings(value: Any) -> Iterable[str]:
    """Every string nested anywhere inside a deliverable payload."""
    if isinstance(value, str):
        yield value
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from _strings(item)
    elif isinstance(value, (list, tuple, set, frozenset)):
        for item in value:
            yield from _strings(item)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict, set)) and not value:
        return True
    return isinstance(value, str) and not value.strip()


class OutputFormatGate:
    """The result has the declared shape of an AgentResult."""

    name = OUTPUT_FORMAT

    def check(self, result: AgentResult, expected: tuple[str, ...]) -> GateCheck:
        if not isinstance(result, AgentResult):
            return GateCheck(False, f"expected AgentResult, got {type(result).__name__}")
        if not isinstance(result.status, AgentStatus):
            return GateCheck(False, f"unknown status {result.status!r}")
        if not isinstance(result.deliverables, Mapping):
            return GateCheck(False, "deliverables must be a mapping")
        if not all(isinstance(k, str) for k in result.deliverables):
            return GateCheck(False, "deliverable names must be strings")
        if not isinstance(result.diagnostics, list) or not all(
            isinstance(d, str) for d in result.diagnostics
        ):
            return GateCheck(False, "diagnostics must be a list of strings")
        return GateCheck(True)


class CompletenessGate:
    """Every requested deliverable is present and non-empty."""

    name = COMPLETENESS

    def check(self, result: AgentResult, expected: tuple[str, ...]) -> GateCheck:
        missing = [name for name in expected if _is_empty(result.deliverables.get(name))]
        if missing:
            return GateCheck(False, f"missing deliverables: {', '.join(missing)}")
        return GateCheck(True)


class SanityGate:
    """No unresolved placeholders and no self-contradicting instructions."""

    name = SANITY

    def check(self, result: AgentResult, expected: tuple[str, ...]) -> GateCheck:
        for text in _strings(result.deliverables):
            m = _PLACEHOLDER_RE.search(text)
            if m:
                return GateCheck(False, f"unresolved placeholder {m.group(0)!r}")

        instructions = {
            line.split(":", 1)[1].strip().lower().rstrip(".")
            for line in result.diagnostics
            if line.lower().startswith("handoff:") and ":" in line
        }
        for instruction in instructions:
            m = _NEGATION_RE.match(instruction)
            if m:
                positive = instruction[m.end():]
                if positive in instructions or f"do {positive}" in instructions:
                    return GateCheck(False, f"conflicting instructions about {positive!r}")
        return GateCheck(True)


class UserReadinessGate:
    """A human-readable summary accompanies any artifact."""

    name = USER_READINESS

    def __init__(self, summary_key: str = "summary") -> None:
        self.summary_key = summary_key

    def check(self, result: AgentResult, expected: tuple[str, ...]) -> GateCheck:
        artifacts = [k for k in result.deliverables if k != self.summary_key]
        if not artifacts:
            return GateCheck(True)
        summary = result.deliverables.get(self.summary_key)
        if not isinstance(summary, str) or not summary.strip():
            return GateCheck(False, f"artifacts delivered without a '{self.summary_key}'")
        return GateCheck(True)


class QualityGateEvaluator:
    """Runs the four gates in fixed order and reports every violation.

    Gates only read the result; nothing here mutates it or workflow state.
    An output-format failure stops evaluation, since the later gates
    assume a well-formed result.
    """

    def __init__(self, summary_key: str = "summary", gates: list[QualityGate] | None = None) -> None:
        self._gates: list[QualityGate] = gates or [
            OutputFormatGate(),
            CompletenessGate(),
            SanityGate(),
            UserReadinessGate(summary_key),
        ]

    @property
    def gates(self) -> list[QualityGate]:
        return list(self._gates)

    def evaluate(self, result: AgentResult, expected: Iterable[str] = ()) -> QualityGateResult:
        expected = tuple(expected)
        violated: list[str] = []
        details: dict[str, str] = {}
        for gate in self._gates:
            check = gate.check(result, expected)
            if check.passed:
                continue
            violated.append(gate.name)
            details[gate.name] = check.message
            if gate.name == OUTPUT_FORMAT:
                break
        return QualityGateResult(passed=not violated, violated_gates=violated, details=details)
