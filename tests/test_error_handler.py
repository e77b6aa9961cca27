"""Tests for failure classification and the retry policy table."""

from __future__ import annotations

import asyncio
import logging

import pytest

from handoff.agents.types import AgentResult, AgentStatus
from handoff.execution.error_handler import (
    TRANSIENT_FAILURES,
    ErrorHandler,
    FailureClass,
    Resolution,
    classify_failure,
    needs_input,
)
from handoff.execution.gates import QualityGateResult
from handoff.workflow.exceptions import (
    AgentInvocationFailed,
    AgentInvocationTimeout,
    ClassificationAmbiguous,
    MalformedAgentResult,
)
from handoff.workflow.models import AutonomyLevel


def _result(status: AgentStatus = AgentStatus.SUCCESS, diagnostics: list[str] | None = None) -> AgentResult:
    return AgentResult(
        agent_id="test-executor",
        status=status,
        deliverables={"summary": "ran"},
        diagnostics=diagnostics or [],
    )


def _gates(*violated: str) -> QualityGateResult:
    return QualityGateResult(passed=not violated, violated_gates=list(violated))


# ===========================================================================
# Classification
# ===========================================================================


class TestClassifyFailure:
    @pytest.mark.parametrize(
        "error,expected",
        [
            (asyncio.CancelledError(), FailureClass.CANCELLED),
            (AgentInvocationTimeout("a", 1.0), FailureClass.TIMEOUT),
            (TimeoutError(), FailureClass.TIMEOUT),
            (MalformedAgentResult("a", "not json"), FailureClass.MALFORMED_OUTPUT),
            (ClassificationAmbiguous("huh"), FailureClass.AMBIGUOUS_CLASSIFICATION),
            (AgentInvocationFailed("a", "boom"), FailureClass.AGENT_FAILED),
            (RuntimeError("boom"), FailureClass.AGENT_FAILED),
        ],
    )
    def test_errors(self, error, expected):
        assert classify_failure(error=error) is expected

    def test_success(self):
        assert classify_failure(result=_result(), gate_result=_gates()) is None

    def test_partial_is_not_a_failure(self):
        assert classify_failure(result=_result(AgentStatus.PARTIAL), gate_result=_gates()) is None

    def test_failure_status(self):
        assert classify_failure(result=_result(AgentStatus.FAILURE)) is FailureClass.AGENT_FAILED

    def test_gate_failure(self):
        failure = classify_failure(result=_result(), gate_result=_gates("completeness"))
        assert failure is FailureClass.QUALITY_GATE

    def test_output_format_counts_as_malformed(self):
        failure = classify_failure(result=_result(), gate_result=_gates("output-format"))
        assert failure is FailureClass.MALFORMED_OUTPUT

    def test_missing_inputs(self):
        assert classify_failure(missing_inputs=["target_files"]) is FailureClass.MISSING_INPUT

    def test_needs_input_diagnostic_beats_gates(self):
        result = _result(AgentStatus.FAILURE, ["needs-input: which browser?"])
        failure = classify_failure(result=result, gate_result=_gates("completeness"))
        assert failure is FailureClass.MISSING_INPUT

    def test_needs_input_lines(self):
        result = _result(diagnostics=["Needs-Input: base url", "ran 3 tests"])
        assert needs_input(result) == ["base url"]
        assert needs_input(None) == []


# ===========================================================================
# Resolution table
# ===========================================================================


class TestResolve:
    def test_cancelled_aborts(self):
        decision = ErrorHandler().resolve(FailureClass.CANCELLED, 0, 2)
        assert decision.resolution is Resolution.ABORT

    @pytest.mark.parametrize(
        "failure", [FailureClass.AMBIGUOUS_CLASSIFICATION, FailureClass.MISSING_INPUT],
    )
    def test_escalates_without_retrying(self, failure):
        decision = ErrorHandler().resolve(failure, 0, 5, alternate="qa-orchestrator")
        assert decision.resolution is Resolution.ESCALATE
        assert not decision.budget_exhausted

    @pytest.mark.parametrize("failure", sorted(TRANSIENT_FAILURES, key=lambda f: f.value))
    def test_transient_retries_same_agent(self, failure):
        decision = ErrorHandler().resolve(failure, 0, 2)
        assert decision.resolution is Resolution.RETRY_SAME_AGENT

    def test_budget_exhausted(self, caplog):
        with caplog.at_level(logging.WARNING, logger="handoff.execution.error_handler"):
            decision = ErrorHandler().resolve(FailureClass.QUALITY_GATE, 2, 2)
        assert decision.resolution is Resolution.ESCALATE
        assert decision.budget_exhausted
        assert "exhausted" in caplog.text

    def test_zero_budget_never_retries(self):
        decision = ErrorHandler().resolve(FailureClass.TIMEOUT, 0, 0, alternate="x")
        assert decision.resolution is Resolution.ESCALATE
        assert decision.budget_exhausted

    def test_alternate_takes_last_retry(self):
        handler = ErrorHandler()
        first = handler.resolve(FailureClass.AGENT_FAILED, 0, 2, alternate="qa-orchestrator")
        last = handler.resolve(FailureClass.AGENT_FAILED, 1, 2, alternate="qa-orchestrator")
        assert first.resolution is Resolution.RETRY_SAME_AGENT
        assert last.resolution is Resolution.RETRY_ALTERNATE_AGENT
        assert last.alternate_agent == "qa-orchestrator"

    def test_no_autonomy_escalates_non_transient(self):
        decision = ErrorHandler().resolve(
            FailureClass.QUALITY_GATE, 0, 2, autonomy=AutonomyLevel.NONE,
        )
        assert decision.resolution is Resolution.ESCALATE
        assert not decision.budget_exhausted

    def test_no_autonomy_still_retries_timeouts(self):
        decision = ErrorHandler().resolve(FailureClass.TIMEOUT, 0, 2, autonomy=AutonomyLevel.NONE)
        assert decision.resolution is Resolution.RETRY_SAME_AGENT


class TestRetryBound:
    """Walk the policy the way the engine does and count dispatches."""

    @staticmethod
    def _dispatches(budget: int, alternate: str | None) -> tuple[int, list[Resolution]]:
        handler = ErrorHandler()
        retries, dispatches, seen = 0, 1, []
        current_alternate = alternate
        while True:
            decision = handler.resolve(
                FailureClass.QUALITY_GATE, retries, budget, alternate=current_alternate,
            )
            seen.append(decision.resolution)
            if decision.resolution not in (
                Resolution.RETRY_SAME_AGENT, Resolution.RETRY_ALTERNATE_AGENT,
            ):
                return dispatches, seen
            if decision.resolution is Resolution.RETRY_ALTERNATE_AGENT:
                current_alternate = None
            retries += 1
            dispatches += 1

    @pytest.mark.parametrize("budget", [0, 1, 2, 3, 5])
    @pytest.mark.parametrize("alternate", [None, "qa-orchestrator"])
    def test_never_more_than_budget_plus_one(self, budget, alternate):
        dispatches, seen = self._dispatches(budget, alternate)
        assert dispatches == budget + 1
        assert seen[-1] is Resolution.ESCALATE
        assert seen.count(Resolution.RETRY_ALTERNATE_AGENT) == (1 if alternate and budget else 0)

    @pytest.mark.parametrize("budget", [1, 2, 3])
    def test_alternate_takes_the_primarys_last_slot(self, budget):
        """With an alternate, the primary runs ``budget`` times and the alternate once."""
        _, seen = self._dispatches(budget, "qa-orchestrator")
        primary_dispatches = 1 + seen.count(Resolution.RETRY_SAME_AGENT)
        assert primary_dispatches == budget
        assert seen[-2:] == [Resolution.RETRY_ALTERNATE_AGENT, Resolution.ESCALATE]
