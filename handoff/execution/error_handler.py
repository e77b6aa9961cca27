"""Failure classification and the retry / reroute / escalate policy table."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from handoff.agents.types import AgentResult, AgentStatus
from handoff.execution.gates import OUTPUT_FORMAT, QualityGateResult
from handoff.workflow.exceptions import (
    AgentInvocationTimeout,
    ClassificationAmbiguous,
    MalformedAgentResult,
)
from handoff.workflow.models import AutonomyLevel

logger = logging.getLogger(__name__)

# Diagnostics lines with this prefix mean the agent is blocked on caller input.
NEEDS_INPUT_PREFIX = "needs-input:"


class FailureClass(Enum):
    TIMEOUT = "timeout"
    MALFORMED_OUTPUT = "malformed_output"
    QUALITY_GATE = "quality_gate"
    AGENT_FAILED = "agent_failed"
    MISSING_INPUT = "missing_input"
    AMBIGUOUS_CLASSIFICATION = "ambiguous_classification"
    CANCELLED = "cancelled"


TRANSIENT_FAILURES = frozenset({FailureClass.TIMEOUT, FailureClass.MALFORMED_OUTPUT})


class Resolution(Enum):
    RETRY_SAME_AGENT = "retry_same_agent"
    RETRY_ALTERNATE_AGENT = "retry_alternate_agent"
    ESCALATE = "escalate"
    ABORT = "abort"


@dataclass(frozen=True)
class ErrorDecision:
    resolution: Resolution
    reason: str
    budget_exhausted: bool = False
    alternate_agent: str | None = None


def needs_input(result: AgentResult | None) -> list[str]:
    """Inputs an agent said it was missing, from ``needs-input:`` diagnostics."""
    if result is None:
        return []
    return [
        line[len(NEEDS_INPUT_PREFIX):].strip()
        for line in result.diagnostics
        if line.lower().startswith(NEEDS_INPUT_PREFIX)
    ]


def classify_failure(
    error: BaseException | None = None,
    result: AgentResult | None = None,
    gate_result: QualityGateResult | None = None,
    missing_inputs: Iterable[str] = (),
) -> FailureClass | None:
    """Map one attempt's outcome to a FailureClass, or None if it succeeded."""
    if error is not None:
        if isinstance(error, asyncio.CancelledError):
            return FailureClass.CANCELLED
        if isinstance(error, (AgentInvocationTimeout, TimeoutError)):
            return FailureClass.TIMEOUT
        if isinstance(error, MalformedAgentResult):
            return FailureClass.MALFORMED_OUTPUT
        if isinstance(error, ClassificationAmbiguous):
            return FailureClass.AMBIGUOUS_CLASSIFICATION
        return FailureClass.AGENT_FAILED
    if list(missing_inputs) or needs_input(result):
        return FailureClass.MISSING_INPUT
    if gate_result is not None and not gate_result.passed:
        if OUTPUT_FORMAT in gate_result.violated_gates:
            return FailureClass.MALFORMED_OUTPUT
        return FailureClass.QUALITY_GATE
    if result is not None and result.status is AgentStatus.FAILURE:
        return FailureClass.AGENT_FAILED
    return None


class ErrorHandler:
    """Resolves a classified failure into the next action for its step.

    ``retry_count`` is the number of retries already spent on the step, so
    the step has been dispatched ``retry_count + 1`` times. A step is never
    dispatched more than ``budget + 1`` times: when an alternate agent is
    available, the last retry goes to it instead of the primary. The primary
    therefore gets ``budget`` dispatches rather than ``budget + 1`` whenever
    an alternate exists.
    """

    def resolve(
        self,
        failure_class: FailureClass,
        retry_count: int,
        budget: int,
        *,
        autonomy: AutonomyLevel = AutonomyLevel.GUIDED,
        alternate: str | None = None,
    ) -> ErrorDecision:
        if failure_class is FailureClass.CANCELLED:
            return ErrorDecision(Resolution.ABORT, "cancelled")
        if failure_class is FailureClass.AMBIGUOUS_CLASSIFICATION:
            return ErrorDecision(Resolution.ESCALATE, "request could not be classified")
        if failure_class is FailureClass.MISSING_INPUT:
            return ErrorDecision(Resolution.ESCALATE, "required input is missing")

        if retry_count >= budget:
            logger.warning(
                "Retry budget exhausted after %d attempt(s) (%s)",
                retry_count + 1, failure_class.value,
            )
            return ErrorDecision(
                Resolution.ESCALATE,
                f"retry budget of {budget} exhausted ({failure_class.value})",
                budget_exhausted=True,
            )

        if autonomy is AutonomyLevel.NONE and failure_class not in TRANSIENT_FAILURES:
            return ErrorDecision(
                Resolution.ESCALATE,
                f"agent has no decision autonomy ({failure_class.value})",
            )

        if alternate is not None and retry_count == budget - 1:
            return ErrorDecision(
                Resolution.RETRY_ALTERNATE_AGENT,
                f"primary agent failed {retry_count + 1} time(s) ({failure_class.value})",
                alternate_agent=alternate,
            )

        return ErrorDecision(
            Resolution.RETRY_SAME_AGENT,
            f"retry {retry_count + 1} of {budget} ({failure_class.value})",
        )
