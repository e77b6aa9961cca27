"""Predicates over a workflow's results map.

Used by conditional plan steps ("if tests fail, ...") and by optional
handoff-edge conditions in the registry.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping

if TYPE_CHECKING:
    from handoff.agents.types import AgentResult

FAILURE = "failure"
SUCCESS = "success"

_FAILURE_WORDS = re.compile(r"\b(fail|fails|failed|failing|break|breaks|broke|error|errors)\b", re.I)
_SUCCESS_WORDS = re.compile(r"\b(pass|passes|passed|succeed|succeeds|succeeded|green|work|works)\b", re.I)

# Deliverable keys an agent may use to report failures found in the work it inspected.
_FAILURE_COUNT_KEYS = ("failed", "failures", "failed_tests", "errors")


def result_failed(result: AgentResult) -> bool:
    """True when the result reports a failure, either of itself or of what it checked."""
    if not result.success:
        return True
    for key in _FAILURE_COUNT_KEYS:
        if result.deliverables.get(key):
            return True
    return False


@dataclass(frozen=True)
class Condition:
    """Outcome expectation for one agent's result."""

    agent_id: str
    expect: str = FAILURE

    def __post_init__(self) -> None:
        if self.expect not in (FAILURE, SUCCESS):
            raise ValueError(f"Condition expect must be '{FAILURE}' or '{SUCCESS}', got {self.expect!r}")

    def __call__(self, results: Mapping[str, AgentResult]) -> bool:
        result = results.get(self.agent_id)
        # Evaluated only once the inspected step has settled; no result means it never delivered.
        failed = True if result is None else result_failed(result)
        return failed if self.expect == FAILURE else not failed

    def negate(self) -> Condition:
        return Condition(self.agent_id, SUCCESS if self.expect == FAILURE else FAILURE)

    def describe(self) -> str:
        return f"{self.agent_id} {'failed' if self.expect == FAILURE else 'succeeded'}"

    @classmethod
    def from_phrase(cls, agent_id: str, phrase: str) -> Condition:
        """Build a condition from natural wording such as "tests fail"."""
        if _FAILURE_WORDS.search(phrase):
            return cls(agent_id, FAILURE)
        if _SUCCESS_WORDS.search(phrase):
            return cls(agent_id, SUCCESS)
        # An unqualified "if <thing>," reads as "if <thing> turns up problems".
        return cls(agent_id, FAILURE)

    @classmethod
    def from_config(cls, data) -> Condition:
        """Parse ``{agent: id, outcome: failure|success}`` or ``"id failed"``."""
        if isinstance(data, Mapping):
            try:
                return cls(str(data["agent"]), str(data.get("outcome", FAILURE)))
            except KeyError as e:
                raise ValueError(f"Condition is missing key {e}") from None
        if isinstance(data, str) and data.strip():
            agent_id, _, phrase = data.strip().partition(" ")
            return cls.from_phrase(agent_id, phrase)
        raise ValueError(f"Unsupported condition: {data!r}")
