"""Request classification as an ordered rule table.

Rules are evaluated top to bottom and the first matching rule wins for its
category. A request can match several categories as long as the evidence for
each is independent (non-overlapping spans of the request text); all of
them are returned, which is what the complexity assessor uses to decide
between a single step and a multi-step plan.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Protocol, runtime_checkable

from handoff.workflow.exceptions import (
    ClassificationAmbiguous,
    RegistryLoadError,
    RuleTargetUnresolved,
)
from handoff.workflow.models import Request

if TYPE_CHECKING:
    from handoff.agents.registry import AgentRegistry

logger = logging.getLogger(__name__)

AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class Candidate:
    category: str
    agent_id: str
    confidence: float
    position: int = 0
    evidence: tuple[str, ...] = ()

    @property
    def ambiguous(self) -> bool:
        return self.category == AMBIGUOUS


@dataclass(frozen=True)
class RankedCandidates:
    candidates: tuple[Candidate, ...] = ()

    def __iter__(self):
        return iter(self.candidates)

    def __len__(self) -> int:
        return len(self.candidates)

    def __getitem__(self, index: int) -> Candidate:
        return self.candidates[index]

    @property
    def categories(self) -> list[str]:
        return [c.category for c in self.candidates]

    @property
    def ambiguous(self) -> bool:
        return any(c.ambiguous for c in self.candidates)


@dataclass(frozen=True)
class ClassificationRule:
    patterns: tuple[str, ...]
    category: str
    agent_id: str
    _compiled: tuple[re.Pattern, ...] = field(default=(), repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.patterns:
            raise ValueError(f"Rule for '{self.category}' has no patterns")
        try:
            compiled = tuple(re.compile(p, re.IGNORECASE) for p in self.patterns)
        except re.error as e:
            raise ValueError(f"Rule for '{self.category}' has a bad pattern: {e}") from None
        object.__setattr__(self, "_compiled", compiled)

    def match_spans(self, text: str) -> list[tuple[int, int]]:
        spans = []
        for pattern in self._compiled:
            for m in pattern.finditer(text):
                if m.end() > m.start():
                    spans.append((m.start(), m.end()))
        return sorted(spans)

    def matched_pattern_count(self, text: str) -> int:
        return sum(1 for p in self._compiled if p.search(text))


@runtime_checkable
class Classifier(Protocol):
    """Anything that maps a request to ranked (category, agent) candidates."""

    def classify(self, request: Request, registry: AgentRegistry) -> RankedCandidates: ...


def _overlaps(span: tuple[int, int], claimed: list[tuple[int, int]]) -> bool:
    return any(span[0] < end and start < span[1] for start, end in claimed)


class RuleTableClassifier:
    """Deterministic classifier driven by an ordered rule table."""

    def __init__(
        self,
        rules: Iterable[ClassificationRule],
        fallback_agent: str | None = None,
    ) -> None:
        self._rules = tuple(rules)
        self._fallback_agent = fallback_agent

    @property
    def rules(self) -> tuple[ClassificationRule, ...]:
        return self._rules

    @property
    def fallback_agent(self) -> str | None:
        return self._fallback_agent

    def validate(self, registry: AgentRegistry) -> None:
        """Fail fast if any rule (or the fallback) targets an unknown agent."""
        for rule in self._rules:
            if rule.agent_id not in registry:
                raise RuleTargetUnresolved(rule.category, rule.agent_id)
        if self._fallback_agent is not None and self._fallback_agent not in registry:
            raise RuleTargetUnresolved(AMBIGUOUS, self._fallback_agent)

    def classify(self, request: Request, registry: AgentRegistry) -> RankedCandidates:
        text = request.text
        claimed: list[tuple[int, int]] = []
        seen_categories: set[str] = set()
        candidates: list[Candidate] = []

        for rule in self._rules:
            if rule.category in seen_categories:
                continue
            spans = rule.match_spans(text)
            if not spans:
                continue
            fresh = [s for s in spans if not _overlaps(s, claimed)]
            if not fresh:
                # Every hit re-uses text another category already claimed.
                continue
            if rule.agent_id not in registry:
                raise RuleTargetUnresolved(rule.category, rule.agent_id)
            seen_categories.add(rule.category)
            claimed.extend(fresh)
            candidates.append(
                Candidate(
                    category=rule.category,
                    agent_id=rule.agent_id,
                    confidence=round(rule.matched_pattern_count(text) / len(rule.patterns), 3),
                    position=fresh[0][0],
                    evidence=tuple(text[s:e] for s, e in fresh),
                )
            )

        if candidates:
            return RankedCandidates(tuple(candidates))

        if self._fallback_agent is None:
            raise ClassificationAmbiguous(text)
        logger.info("No rule matched %r; routing to fallback %s", text, self._fallback_agent)
        return RankedCandidates(
            (Candidate(category=AMBIGUOUS, agent_id=self._fallback_agent, confidence=0.0),)
        )


def rule_from_mapping(data: Mapping) -> ClassificationRule:
    if not isinstance(data, Mapping):
        raise RegistryLoadError(f"Classification rule must be a mapping, got {data!r}")
    patterns = data.get("patterns", data.get("pattern"))
    if isinstance(patterns, str):
        patterns = [patterns]
    category = data.get("category")
    agent_id = data.get("agent")
    if not patterns or not category or not agent_id:
        raise RegistryLoadError(
            f"Classification rule needs 'patterns', 'category' and 'agent': {dict(data)!r}"
        )
    try:
        return ClassificationRule(tuple(str(p) for p in patterns), str(category), str(agent_id))
    except ValueError as e:
        raise RegistryLoadError(str(e)) from None


def load_rules(data: Any, fallback_agent: str | None = None) -> RuleTableClassifier:
    """Build a classifier from ``{rules: [...], fallback_agent: id}`` or a list of rules."""
    if isinstance(data, Mapping):
        fallback_agent = data.get("fallback_agent", fallback_agent)
        data = data.get("rules", [])
    if not isinstance(data, list):
        raise RegistryLoadError("Classification rules must be a list")
    return RuleTableClassifier([rule_from_mapping(r) for r in data], fallback_agent)
