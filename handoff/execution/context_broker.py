"""Builds, merges and scope-filters the context package passed across handoffs."""

from __future__ import annotations

import copy
from dataclasses import replace
from typing import Iterable

from handoff.agents.registry import AgentDescriptor, HandoffEdge, Scope
from handoff.agents.types import (
    PREVIOUS_OUTPUTS,
    TARGET_FILES,
    TECH_STACK,
    AgentContext,
    AgentResult,
    ContextPackage,
    ExecutionContext,
    RequestContext,
)
from handoff.execution.gates import QualityGateResult
from handoff.workflow.exceptions import ContextConflict
from handoff.workflow.models import Request

# Diagnostics lines an agent addresses to whoever comes next.
HANDOFF_PREFIX = "handoff:"


def handoff_instructions_from(results: Iterable[AgentResult]) -> list[str]:
    """Collect explicit ``handoff:`` instructions from triggering results."""
    instructions = []
    for result in results:
        for line in result.diagnostics:
            if line.lower().startswith(HANDOFF_PREFIX):
                text = line[len(HANDOFF_PREFIX):].strip()
                if text:
                    instructions.append(text)
    return instructions


class ContextBroker:
    """Creates per-step context packages.

    The broker keeps one unfiltered *working* package per workflow: the
    request context plus every merged output. Each step receives a copy of
    it minimized to the target agent's declared scope, with an agent
    context rebuilt for that step. Packages are never mutated; every
    operation returns a new one.
    """

    def build_initial(self, request: Request, task_type: str = "") -> ContextPackage:
        fields = dict(request.extras)
        fields[TARGET_FILES] = tuple(request.target_files)
        fields[TECH_STACK] = tuple(request.tech_stack)
        fields[PREVIOUS_OUTPUTS] = {}
        return ContextPackage(
            request_context=RequestContext(
                original_request=request.text,
                task_type=task_type,
                priority=request.priority.value,
                constraints=tuple(sorted(request.constraints)),
            ),
            execution_context=ExecutionContext(fields),
        )

    def merge(self, package: ContextPackage, result: AgentResult) -> ContextPackage:
        """Fold a completed step's deliverables into ``previous_outputs``."""
        previous = dict(package.execution_context.previous_outputs)
        if result.agent_id in previous:
            raise ContextConflict(result.agent_id)
        previous[result.agent_id] = copy.deepcopy(result.deliverables)
        fields = dict(package.execution_context.fields)
        fields[PREVIOUS_OUTPUTS] = previous
        return replace(package, execution_context=ExecutionContext(fields))

    def minimize(self, context: ExecutionContext, scope: Scope) -> ExecutionContext:
        """Drop every field the scope does not include. Kept values are copies."""
        kept = {}
        for name, value in context.fields.items():
            if name == PREVIOUS_OUTPUTS:
                whole = scope.permits(name)
                if not whole and not scope.permits_any_under(name):
                    continue
                kept[name] = {
                    agent_id: output
                    for agent_id, output in value.items()
                    if (whole and not scope.excluded(f"{name}.{agent_id}"))
                    or (not whole and scope.permits(f"{name}.{agent_id}"))
                }
            elif scope.permits(name):
                kept[name] = value
        return ExecutionContext(kept)

    def handoff(
        self,
        package: ContextPackage,
        target: AgentDescriptor,
        reason: str,
        instructions: Iterable[str] = (),
    ) -> ContextPackage:
        """Hand the working package to ``target``: minimize, then attach a fresh agent context."""
        return ContextPackage(
            request_context=package.request_context,
            execution_context=self.minimize(package.execution_context, target.scope),
            agent_context=AgentContext(
                target_agent=target.id,
                handoff_reason=reason,
                expected_output=tuple(target.deliverables),
                handoff_instructions=tuple(instructions),
            ),
        )

    def propagate(
        self,
        prior: ContextPackage,
        step_result: AgentResult,
        next_agent: AgentDescriptor,
        edge: HandoffEdge | None = None,
    ) -> tuple[ContextPackage, ContextPackage]:
        """Merge ``step_result`` into the working package and hand it to ``next_agent``.

        Returns ``(working, handed_off)``: the new unfiltered working package
        and the minimized package for the next agent.
        """
        working = self.merge(prior, step_result)
        reason, instructions = self.agent_brief(next_agent, edge, [step_result])
        return working, self.handoff(working, next_agent, reason, instructions)

    @staticmethod
    def agent_brief(
        target: AgentDescriptor,
        edge: HandoffEdge | None,
        triggering: Iterable[AgentResult] = (),
        category: str = "",
    ) -> tuple[str, list[str]]:
        """Handoff reason and instructions for ``target``.

        The edge label is the reason when an edge exists; the agent's default
        prompt becomes the first instruction. Explicit ``handoff:`` lines
        from the triggering results follow.
        """
        if edge is not None and edge.label:
            reason = edge.label
        elif category:
            reason = f"Routed as {category}"
        else:
            reason = target.default_prompt or f"Handoff to {target.id}"
        instructions = []
        if target.default_prompt and reason != target.default_prompt:
            instructions.append(target.default_prompt)
        instructions.extend(handoff_instructions_from(triggering))
        return reason, instructions

    def augment_for_retry(
        self,
        package: ContextPackage,
        attempt: int,
        result: AgentResult | None = None,
        gate_result: QualityGateResult | None = None,
        error: str | None = None,
    ) -> ContextPackage:
        """Append what went wrong in the failed attempt to the handoff instructions."""
        notes = []
        if error:
            notes.append(f"retry {attempt}: previous attempt failed: {error}")
        if result is not None and not result.success:
            notes.append(f"retry {attempt}: previous attempt reported {result.status.value}")
        if gate_result is not None:
            for gate in gate_result.violated_gates:
                detail = gate_result.details.get(gate, "")
                notes.append(f"retry {attempt}: fix {gate} violation" + (f": {detail}" if detail else ""))
        if result is not None:
            notes.extend(f"retry {attempt}: {d}" for d in result.diagnostics)
        if not notes:
            notes.append(f"retry {attempt}: previous attempt was rejected")
        ctx = package.agent_context
        return replace(
            package,
            agent_context=replace(
                ctx, handoff_instructions=ctx.handoff_instructions + tuple(notes),
            ),
        )
