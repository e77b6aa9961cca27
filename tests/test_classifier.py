"""Tests for the rule-table classifier."""

from __future__ import annotations

import pytest

from handoff.routing.classifier import (
    AMBIGUOUS,
    ClassificationRule,
    Classifier,
    RuleTableClassifier,
    load_rules,
)
from handoff.workflow.exceptions import (
    ClassificationAmbiguous,
    RegistryLoadError,
    RuleTargetUnresolved,
)
from handoff.workflow.models import Request


def _classify(classifier, registry, text: str):
    return classifier.classify(Request(text=text), registry)


class TestSingleMatch:
    def test_generation_request(self, classifier, registry):
        ranked = _classify(classifier, registry, "generate tests for the checkout page")
        assert len(ranked) == 1
        cand = ranked[0]
        assert cand.category == "generation"
        assert cand.agent_id == "test-generator"
        assert cand.evidence == ("generate tests",)
        assert cand.position == 0
        assert not ranked.ambiguous

    def test_confidence_is_share_of_matched_patterns(self, classifier, registry):
        one = _classify(classifier, registry, "generate tests for checkout")[0]
        both = _classify(classifier, registry, "generate tests, or write unit tests")[0]
        assert one.confidence == 0.5
        assert both.confidence == 1.0

    def test_case_insensitive(self, classifier, registry):
        ranked = _classify(classifier, registry, "GENERATE TESTS NOW")
        assert ranked.categories == ["generation"]

    def test_satisfies_protocol(self, classifier):
        assert isinstance(classifier, Classifier)


class TestMultipleMatches:
    def test_independent_categories_in_declaration_order(self, classifier, registry):
        ranked = _classify(classifier, registry, "analyze coverage, then generate tests for the gaps")
        assert ranked.categories == ["generation", "coverage"]
        positions = {c.category: c.position for c in ranked}
        assert positions["coverage"] < positions["generation"]

    def test_overlapping_evidence_adds_no_category(self, registry):
        classifier = RuleTableClassifier(
            [
                ClassificationRule((r"run tests",), "execution", "test-executor"),
                ClassificationRule((r"tests",), "generation", "test-generator"),
            ]
        )
        ranked = _classify(classifier, registry, "run tests")
        assert ranked.categories == ["execution"]

    def test_independent_evidence_for_later_rule(self, registry):
        classifier = RuleTableClassifier(
            [
                ClassificationRule((r"run tests",), "execution", "test-executor"),
                ClassificationRule((r"tests",), "generation", "test-generator"),
            ]
        )
        ranked = _classify(classifier, registry, "run tests and add more tests")
        assert ranked.categories == ["execution", "generation"]
        assert ranked[1].position == len("run tests and add more ")

    def test_first_rule_wins_per_category(self, registry):
        classifier = RuleTableClassifier(
            [
                ClassificationRule((r"tests",), "generation", "test-generator"),
                ClassificationRule((r"unit",), "generation", "qa-orchestrator"),
            ]
        )
        ranked = _classify(classifier, registry, "unit tests please")
        assert [(c.category, c.agent_id) for c in ranked] == [("generation", "test-generator")]


class TestDeterminism:
    @pytest.mark.parametrize(
        "text",
        [
            "generate tests for the checkout page",
            "analyze coverage, then generate tests for the gaps",
            "run the tests; if they fail, heal them",
            "completely unrelated request",
        ],
    )
    def test_same_input_same_candidates(self, classifier, registry, text):
        first = _classify(classifier, registry, text)
        for _ in range(5):
            assert _classify(classifier, registry, text) == first


class TestFallback:
    def test_no_match_routes_to_fallback(self, classifier, registry):
        ranked = _classify(classifier, registry, "what's for lunch?")
        assert ranked.ambiguous
        assert ranked.categories == [AMBIGUOUS]
        assert ranked[0].agent_id == "qa-orchestrator"
        assert ranked[0].confidence == 0.0

    def test_no_match_without_fallback(self, registry):
        classifier = RuleTableClassifier([ClassificationRule(("tests",), "generation", "test-generator")])
        with pytest.raises(ClassificationAmbiguous) as exc_info:
            _classify(classifier, registry, "hello")
        assert exc_info.value.text == "hello"


class TestValidation:
    def test_unknown_rule_agent(self, registry):
        classifier = RuleTableClassifier([ClassificationRule(("x",), "c", "ghost")])
        with pytest.raises(RuleTargetUnresolved) as exc_info:
            classifier.validate(registry)
        assert exc_info.value.agent_id == "ghost"

    def test_unknown_fallback(self, registry):
        classifier = RuleTableClassifier([], fallback_agent="ghost")
        with pytest.raises(RuleTargetUnresolved):
            classifier.validate(registry)

    def test_rule_without_patterns(self):
        with pytest.raises(ValueError):
            ClassificationRule((), "c", "a")


class TestLoadRules:
    def test_from_mapping(self, qa_config):
        classifier = load_rules(qa_config)
        assert classifier.fallback_agent == "qa-orchestrator"
        assert [r.category for r in classifier.rules] == [
            "generation", "coverage", "healing", "execution",
        ]

    def test_single_pattern_string(self):
        classifier = load_rules([{"pattern": "deploy", "category": "ops", "agent": "ops"}])
        assert classifier.rules[0].patterns == ("deploy",)

    @pytest.mark.parametrize(
        "rule",
        [
            {"category": "c", "agent": "a"},
            {"patterns": ["x"], "agent": "a"},
            {"patterns": ["x"], "category": "c"},
            {"patterns": ["(unclosed"], "category": "c", "agent": "a"},
            "not a mapping",
        ],
    )
    def test_bad_rules(self, rule):
        with pytest.raises(RegistryLoadError):
            load_rules([rule])

    def test_rules_must_be_a_list(self):
        with pytest.raises(RegistryLoadError):
            load_rules({"rules": "generate"})
