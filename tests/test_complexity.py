"""Tests for turning classified requests into execution plans."""

from __future__ import annotations

import pytest

from handoff.routing.classifier import Candidate, RankedCandidates
from handoff.routing.complexity import ComplexityAssessor, has_sequencing, ordered_segments
from handoff.routing.conditions import Condition
from handoff.workflow.exceptions import ClassificationAmbiguous
from handoff.workflow.models import Request, StepMode


def _candidates(text: str, *pairs: tuple[str, str, str]) -> RankedCandidates:
    """Build candidates from (category, agent_id, evidence) triples found in text."""
    return RankedCandidates(
        tuple(
            Candidate(category=cat, agent_id=agent, confidence=1.0, position=text.index(evidence))
            for cat, agent, evidence in pairs
        )
    )


def _plan_for(classifier, registry, text: str):
    request = Request(text=text)
    return ComplexityAssessor().assess(classifier.classify(request, registry), request)


# ===========================================================================
# Segmenting
# ===========================================================================


class TestOrderedSegments:
    def test_then_splits(self):
        text = "analyze coverage, then generate tests"
        assert [text[s:e] for s, e in ordered_segments(text)] == [
            "analyze coverage", " generate tests",
        ]

    def test_leading_clause_orders_first_part_first(self):
        text = "once coverage is analyzed, generate tests"
        first, second = [text[s:e] for s, e in ordered_segments(text)]
        assert "coverage" in first
        assert "generate" in second

    def test_trailing_after_reverses_order(self):
        text = "generate tests after you analyze coverage"
        first, second = [text[s:e] for s, e in ordered_segments(text)]
        assert "analyze coverage" in first
        assert "generate tests" in second

    def test_finally_needs_punctuation(self):
        assert has_sequencing("generate tests. finally, run the suite")
        assert not has_sequencing("generate tests that finally pass")

    def test_no_markers(self):
        assert not has_sequencing("generate tests for the checkout page")


# ===========================================================================
# Plans
# ===========================================================================


class TestSingleStep:
    def test_single_category(self, classifier, registry):
        plan = _plan_for(classifier, registry, "generate tests for the checkout page")
        assert plan.is_single_step
        step = plan.steps[0]
        assert step.agent_id == "test-generator"
        assert step.category == "generation"
        assert step.mode is StepMode.SEQUENTIAL
        assert step.depends_on == ()
        assert step.critical

    def test_ambiguous_flag_carried(self, classifier, registry):
        plan = _plan_for(classifier, registry, "can you take a look at this?")
        assert plan.ambiguous
        assert plan.agent_ids == ["qa-orchestrator"]


class TestSequential:
    def test_then_orders_by_text_not_rule_order(self, classifier, registry):
        plan = _plan_for(classifier, registry, "analyze coverage, then generate tests for the gaps")
        assert plan.agent_ids == ["coverage-analyst", "test-generator"]
        first, second = plan.steps
        assert first.depends_on == ()
        assert second.depends_on == (first.step_id,)
        assert second.mode is StepMode.SEQUENTIAL

    def test_trailing_after(self):
        text = "generate tests after you analyze coverage"
        candidates = _candidates(
            text,
            ("generation", "test-generator", "generate tests"),
            ("coverage", "coverage-analyst", "analyze coverage"),
        )
        plan = ComplexityAssessor().assess(candidates, Request(text=text))
        assert plan.agent_ids == ["coverage-analyst", "test-generator"]
        assert plan.steps[1].depends_on == ("step-1",)


class TestParallel:
    def test_same_segment_runs_in_parallel(self, classifier, registry):
        plan = _plan_for(classifier, registry, "generate tests and analyze coverage")
        assert sorted(plan.agent_ids) == ["coverage-analyst", "test-generator"]
        assert all(s.mode is StepMode.PARALLEL for s in plan.steps)
        assert all(s.depends_on == () for s in plan.steps)

    def test_join_barrier_before_next_segment(self, classifier, registry):
        plan = _plan_for(
            classifier, registry, "generate tests and analyze coverage, then run the suite",
        )
        *parallel, last = plan.steps
        assert last.agent_id == "test-executor"
        assert set(last.depends_on) == {s.step_id for s in parallel}


class TestConditional:
    def test_if_fail_then_heal(self, classifier, registry):
        plan = _plan_for(classifier, registry, "run the tests; if they fail, heal them")
        executor, healer = plan.steps
        assert executor.agent_id == "test-executor"
        assert not executor.critical
        assert healer.agent_id == "test-healer"
        assert healer.mode is StepMode.CONDITIONAL
        assert healer.depends_on == (executor.step_id,)
        assert healer.condition == Condition("test-executor", "failure")

    def test_otherwise_branch_gets_negated_condition(self):
        text = "run the tests; if they pass, generate tests; otherwise heal them"
        candidates = _candidates(
            text,
            ("execution", "test-executor", "run the tests"),
            ("generation", "test-generator", "generate tests"),
            ("healing", "test-healer", "heal"),
        )
        plan = ComplexityAssessor().assess(candidates, Request(text=text))
        _, then_step, else_step = plan.steps
        assert then_step.condition == Condition("test-executor", "success")
        assert else_step.condition == Condition("test-executor", "failure")
        assert then_step.depends_on == else_step.depends_on == ("step-1",)

    def test_condition_without_branch_agents_falls_back_to_segments(self):
        text = "run the tests; if you can, be quick"
        candidates = _candidates(text, ("execution", "test-executor", "run the tests"))
        plan = ComplexityAssessor().assess(candidates, Request(text=text))
        assert plan.is_single_step
        assert plan.steps[0].critical

    def test_undecidable_branches_go_to_fallback(self, classifier, registry):
        """Branches with nothing planned to inspect must never run unconditionally."""
        text = "if the build breaks, heal the tests; otherwise generate tests for checkout"
        request = Request(text=text)
        candidates = classifier.classify(request, registry)
        assert set(candidates.categories) == {"healing", "generation"}

        plan = ComplexityAssessor("qa-orchestrator").assess(candidates, request)

        assert plan.ambiguous
        assert plan.agent_ids == ["qa-orchestrator"]
        assert plan.steps[0].condition is None

    def test_single_undecidable_branch_goes_to_fallback(self, classifier, registry):
        request = Request(text="if the build breaks, heal the tests")
        plan = ComplexityAssessor("qa-orchestrator").assess(
            classifier.classify(request, registry), request,
        )
        assert plan.agent_ids == ["qa-orchestrator"]
        assert plan.ambiguous

    def test_undecidable_branches_without_fallback(self, classifier, registry):
        request = Request(text="if the build breaks, heal the tests; otherwise generate tests")
        with pytest.raises(ClassificationAmbiguous, match="the build breaks"):
            ComplexityAssessor().assess(classifier.classify(request, registry), request)


class TestPlanShape:
    def test_one_step_per_agent(self):
        text = "write tests, then generate tests"
        candidates = _candidates(
            text,
            ("generation", "test-generator", "write tests"),
            ("more-generation", "test-generator", "generate tests"),
        )
        plan = ComplexityAssessor().assess(candidates, Request(text=text))
        assert plan.agent_ids == ["test-generator"]

    def test_deterministic(self, classifier, registry):
        text = "analyze coverage, then generate tests and run the suite"
        assert _plan_for(classifier, registry, text) == _plan_for(classifier, registry, text)

    def test_step_ids_follow_plan_order(self, classifier, registry):
        plan = _plan_for(classifier, registry, "analyze coverage, then generate tests")
        assert [s.step_id for s in plan.steps] == ["step-1", "step-2"]
