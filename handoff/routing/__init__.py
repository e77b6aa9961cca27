"""Request classification and execution planning."""

from handoff.routing.classifier import (
    AMBIGUOUS,
    Candidate,
    ClassificationRule,
    Classifier,
    RankedCandidates,
    RuleTableClassifier,
    load_rules,
)
from handoff.routing.complexity import ComplexityAssessor
from handoff.routing.conditions import Condition

__all__ = [
    "AMBIGUOUS",
    "Candidate",
    "ClassificationRule",
    "Classifier",
    "ComplexityAssessor",
    "Condition",
    "RankedCandidates",
    "RuleTableClassifier",
    "load_rules",
]
