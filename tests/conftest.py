"""Shared test configuration."""

from __future__ import annotations

import copy

import pytest

from handoff.agents.registry import AgentRegistry, load_registry
from handoff.execution.config import EngineConfig
from handoff.routing.classifier import RuleTableClassifier, load_rules


def pytest_addoption(parser):
    parser.addoption(
        "--run-slow", action="store_true", default=False, help="Run slow SDK tests"
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-slow"):
        return
    skip_slow = pytest.mark.skip(reason="Need --run-slow to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


QA_CONFIG = {
    "fallback_agent": "qa-orchestrator",
    "agents": [
        {
            "id": "qa-orchestrator",
            "capabilities": ["triage"],
            "deliverables": ["summary"],
            "handoffs": [{"label": "Generate tests", "agent": "test-generator"}],
        },
        {
            "id": "test-generator",
            "capabilities": ["generation"],
            "autonomy": "high",
            "deliverables": ["test_files", "summary"],
            "scope": {"includes": ["target_files", "tech_stack", "previous_outputs"]},
            "handoffs": [
                {"label": "Run the generated tests", "agent": "test-executor"},
            ],
        },
        {
            "id": "coverage-analyst",
            "capabilities": ["coverage"],
            "autonomy": "high",
            "deliverables": ["coverage_gaps", "summary"],
            "alternates": ["qa-orchestrator"],
            "scope": {"includes": ["target_files", "tech_stack"]},
            "handoffs": [
                {"label": "Generate tests for the gaps", "agent": "test-generator", "send": True},
            ],
        },
        {
            "id": "test-executor",
            "capabilities": ["execution"],
            "deliverables": ["test_report", "summary"],
            "scope": {"includes": ["target_files", "previous_outputs"]},
            "handoffs": [
                {
                    "label": "Heal the failing tests",
                    "agent": "test-healer",
                    "condition": {"agent": "test-executor", "outcome": "failure"},
                },
            ],
        },
        {
            "id": "test-healer",
            "capabilities": ["healing"],
            "autonomy": "none",
            "deliverables": ["patches", "summary"],
            "default_prompt": "Only touch test code.",
            "scope": {"includes": ["target_files", "previous_outputs.test-executor"]},
            "handoffs": [{"label": "Re-run the healed tests", "agent": "test-executor"}],
        },
    ],
    "rules": [
        {
            "category": "generation",
            "agent": "test-generator",
            "patterns": [r"generate (?:\w+ )*?tests?", r"write (?:\w+ )*?tests?"],
        },
        {
            "category": "coverage",
            "agent": "coverage-analyst",
            "patterns": [r"analy[sz]e (?:the )?coverage", r"coverage (?:gaps?|report)"],
        },
        {
            "category": "healing",
            "agent": "test-healer",
            "patterns": [r"\bheal\b", r"fix (?:the )?(?:flaky|failing|broken) tests?"],
        },
        {
            "category": "execution",
            "agent": "test-executor",
            "patterns": [r"(?:run|execute) (?:the )?(?:\w+ )?(?:tests?|suite)"],
        },
    ],
}


@pytest.fixture
def qa_config() -> dict:
    return copy.deepcopy(QA_CONFIG)


@pytest.fixture
def registry(qa_config) -> AgentRegistry:
    return load_registry(qa_config)


@pytest.fixture
def classifier(qa_config, registry) -> RuleTableClassifier:
    classifier = load_rules(qa_config)
    classifier.validate(registry)
    return classifier


@pytest.fixture
def fast_config() -> EngineConfig:
    return EngineConfig(step_timeout_seconds=2.0, cancel_grace_seconds=0.05)
