"""Turns classification candidates into an execution plan.

A single category with no sequencing language becomes a one-step plan.
Otherwise the request text is cut into ordered segments at sequencing
markers ("then", "after that", "once X, Y", "Y after X", ...). Steps found
in the same segment run in parallel behind a join barrier; each segment
depends on every step of the segment before it. An explicit
"if <condition>, <then>; otherwise <else>" adds conditional steps whose
unchosen branch is skipped at runtime. A branch whose condition has no
planned step to inspect cannot be decided, so such requests go to the
fallback agent as an ambiguous plan.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace

from handoff.routing.classifier import AMBIGUOUS, Candidate, RankedCandidates
from handoff.routing.conditions import Condition
from handoff.workflow.exceptions import ClassificationAmbiguous
from handoff.workflow.models import ExecutionPlan, ExecutionStep, Request, StepMode

logger = logging.getLogger(__name__)

Span = tuple[int, int]

_STRONG_MARKERS = (
    r"then|after\s+(?:that|this|which)|afterwards|followed\s+by|subsequently"
)
_SEQUENCE_SPLIT_RE = re.compile(
    rf"(?:[,;.]\s*|\s+)(?:and\s+)?(?:{_STRONG_MARKERS})\b[,]?"
    r"|[,;.]\s*(?:and\s+)?(?:next|finally)\b[,]?",
    re.IGNORECASE,
)
_LEADING_CLAUSE_RE = re.compile(
    r"^\s*(?:once|after|when)\b(?P<first>[^,;]+)[,;](?P<second>.+)$",
    re.IGNORECASE | re.DOTALL,
)
_TRAILING_AFTER_RE = re.compile(
    r"^(?P<second>.+?)\s+(?:after|once)\s+(?!that\b|this\b|which\b)(?P<first>\S.*)$",
    re.IGNORECASE | re.DOTALL,
)
_CONDITIONAL_RE = re.compile(
    r"\bif\b(?P<cond>[^,;]+)[,;]\s*(?:then\b\s*)?(?P<then>.+?)"
    r"(?:(?:[,;.]\s*|\s+)(?:otherwise|else)\b[,;]?\s*(?P<else>.*))?$",
    re.IGNORECASE | re.DOTALL,
)


def _split_clause(text: str, start: int, end: int) -> list[Span]:
    """Order one marker-free piece that may read "once X, Y" or "Y after X"."""
    piece = text[start:end]
    m = _LEADING_CLAUSE_RE.match(piece)
    if m:
        return [
            (start + m.start("first"), start + m.end("first")),
            (start + m.start("second"), start + m.end("second")),
        ]
    m = _TRAILING_AFTER_RE.match(piece)
    if m:
        return [
            (start + m.start("first"), start + m.end("first")),
            (start + m.start("second"), start + m.end("second")),
        ]
    return [(start, end)]


def ordered_segments(text: str, start: int = 0, end: int | None = None) -> list[Span]:
    """Split ``text[start:end]`` into spans listed in execution order."""
    end = len(text) if end is None else end
    pieces: list[Span] = []
    cursor = start
    for m in _SEQUENCE_SPLIT_RE.finditer(text, start, end):
        pieces.append((cursor, m.start()))
        cursor = m.end()
    pieces.append((cursor, end))

    segments: list[Span] = []
    for s, e in pieces:
        if e > s:
            segments.extend(_split_clause(text, s, e))
    return segments


def has_sequencing(text: str) -> bool:
    return len(ordered_segments(text)) > 1


def _group_by_segment(
    candidates: list[Candidate], segments: list[Span],
) -> list[list[Candidate]]:
    groups: list[list[Candidate]] = [[] for _ in segments]
    for cand in candidates:
        index = None
        for i, (s, e) in enumerate(segments):
            if s <= cand.position < e:
                index = i
                break
        if index is None:
            # Evidence sits inside a marker; attach it to the closest preceding segment.
            preceding = [i for i, (s, _) in enumerate(segments) if s <= cand.position]
            index = preceding[-1] if preceding else 0
        groups[index].append(cand)
    return [g for g in groups if g]


class ComplexityAssessor:
    """Decides between a single-step and a multi-step execution plan."""

    def __init__(self, fallback_agent: str | None = None) -> None:
        self.fallback_agent = fallback_agent

    def assess(self, candidates: RankedCandidates, request: Request) -> ExecutionPlan:
        text = request.text
        unique = self._dedupe(list(candidates))

        cond = _CONDITIONAL_RE.search(text)
        if cond is not None and unique and not candidates.ambiguous:
            plan = self._conditional_plan(unique, text, cond, candidates.ambiguous)
            if plan is not None:
                return plan

        segments = ordered_segments(text)
        groups = _group_by_segment(unique, segments) if unique else []
        builder = _PlanBuilder()
        for group in groups:
            builder.add_group(group)
        plan = builder.build(text, candidates.ambiguous)
        logger.debug(
            "Assessed %r: %d step(s), sequencing=%s",
            text, len(plan.steps), len(segments) > 1,
        )
        return plan

    @staticmethod
    def _dedupe(candidates: list[Candidate]) -> list[Candidate]:
        seen: set[str] = set()
        unique = []
        for cand in sorted(candidates, key=lambda c: c.position):
            if cand.agent_id in seen:
                continue
            seen.add(cand.agent_id)
            unique.append(cand)
        return unique

    def _conditional_plan(
        self,
        candidates: list[Candidate],
        text: str,
        cond: re.Match,
        ambiguous: bool,
    ) -> ExecutionPlan | None:
        cond_span = cond.span("cond")
        then_span = cond.span("then")
        else_span = cond.span("else") if cond.group("else") is not None else None

        def within(cand: Candidate, span: Span | None) -> bool:
            return span is not None and span[0] <= cand.position < span[1]

        base = [c for c in candidates if c.position < cond.start() or within(c, cond_span)]
        then_branch = [c for c in candidates if within(c, then_span)]
        else_branch = [c for c in candidates if within(c, else_span)]
        if not (then_branch or else_branch):
            return None
        if not base:
            return self._undecidable(text, cond.group("cond").strip())

        builder = _PlanBuilder()
        base_before = [c for c in base if c.position < cond.start()]
        for group in _group_by_segment(base_before, ordered_segments(text, 0, cond.start())):
            builder.add_group(group)
        subject = [c for c in base if within(c, cond_span)]
        if subject:
            builder.add_group(subject)

        inspected = builder.last_group[0]
        builder.mark_non_critical(inspected.step_id)
        condition = Condition.from_phrase(inspected.agent_id, cond.group("cond"))
        anchor = [s.step_id for s in builder.last_group]

        builder.add_branch(then_branch, condition, anchor)
        builder.add_branch(else_branch, condition.negate(), anchor)
        return builder.build(text, ambiguous)

    def _undecidable(self, text: str, condition: str) -> ExecutionPlan:
        if self.fallback_agent is None:
            raise ClassificationAmbiguous(text, f"Nothing in the plan decides {condition!r}")
        logger.warning(
            "No step decides %r in %r; routing to fallback agent %s",
            condition, text, self.fallback_agent,
        )
        step = ExecutionStep(step_id="step-1", agent_id=self.fallback_agent, category=AMBIGUOUS)
        return ExecutionPlan(steps=(step,), request_text=text, ambiguous=True)


class _PlanBuilder:
    def __init__(self) -> None:
        self._steps: list[ExecutionStep] = []
        self.last_group: list[ExecutionStep] = []

    def _next_id(self) -> str:
        return f"step-{len(self._steps) + 1}"

    def add_group(self, group: list[Candidate]) -> None:
        mode = StepMode.PARALLEL if len(group) > 1 else StepMode.SEQUENTIAL
        depends_on = tuple(s.step_id for s in self.last_group)
        added = []
        for cand in group:
            step = ExecutionStep(
                step_id=self._next_id(),
                agent_id=cand.agent_id,
                category=cand.category,
                mode=mode,
                depends_on=depends_on,
            )
            self._steps.append(step)
            added.append(step)
        self.last_group = added

    def add_branch(self, branch: list[Candidate], condition: Condition, anchor: list[str]) -> None:
        depends_on = tuple(anchor)
        for cand in branch:
            step = ExecutionStep(
                step_id=self._next_id(),
                agent_id=cand.agent_id,
                category=cand.category,
                mode=StepMode.CONDITIONAL,
                depends_on=depends_on,
                condition=condition,
            )
            self._steps.append(step)
            depends_on = (step.step_id,)

    def mark_non_critical(self, step_id: str) -> None:
        self._steps = [
            replace(s, critical=False) if s.step_id == step_id else s
            for s in self._steps
        ]
        self.last_group = [
            next(s for s in self._steps if s.step_id == old.step_id) for old in self.last_group
        ]

    def build(self, text: str, ambiguous: bool) -> ExecutionPlan:
        return ExecutionPlan(steps=tuple(self._steps), request_text=text, ambiguous=ambiguous)
