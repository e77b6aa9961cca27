"""Workflow engine: drives one execution plan to a terminal state.

The engine is the single writer of its WorkflowState. Steps run as asyncio
tasks and only ever wait on their agent outside the lock; everything they
learn is folded into the state under ``self._lock``, after checking that
the workflow has not been aborted in the meantime.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from handoff.agents.pool import AgentPool
from handoff.agents.registry import AgentDescriptor, AgentRegistry, HandoffEdge
from handoff.agents.types import AgentResult, AgentStatus, ContextPackage
from handoff.execution.config import EngineConfig
from handoff.execution.context_broker import ContextBroker
from handoff.execution.error_handler import (
    ErrorDecision,
    ErrorHandler,
    FailureClass,
    Resolution,
    classify_failure,
    needs_input,
)
from handoff.execution.gates import OUTPUT_FORMAT, QualityGateEvaluator, QualityGateResult
from handoff.execution.scheduler import Scheduler
from handoff.workflow.exceptions import (
    AgentInvocationFailed,
    AgentInvocationTimeout,
    HandoffError,
    MalformedAgentResult,
    RetryBudgetExhausted,
    WorkflowAborted,
)
from handoff.workflow.models import (
    ExecutionPlan,
    ExecutionStep,
    FailureReport,
    Outcome,
    Request,
    StateTransition,
    StepStatus,
    SuggestedHandoff,
    WorkflowResult,
    WorkflowState,
    WorkflowStatus,
)
from handoff.workflow.transitions import validate_transition

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[dict], None]

_S = WorkflowStatus


@dataclass
class _Attempt:
    """What one dispatch of a step came back with."""

    agent_id: str
    package: ContextPackage
    result: AgentResult | None = None
    error: HandoffError | None = None
    missing: list[str] = field(default_factory=list)


def _blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict, set, frozenset, Mapping)):
        return len(value) == 0
    return False


class WorkflowEngine:
    """Runs an ExecutionPlan against the agent pool.

    Usage:
        engine = WorkflowEngine(plan, request, registry, pool)
        result = await engine.run()

    ``cancel()`` may be awaited from any other task while ``run()`` is in
    progress; it moves the workflow to ``aborted`` and cancels every
    in-flight step.
    """

    def __init__(
        self,
        plan: ExecutionPlan,
        request: Request,
        registry: AgentRegistry,
        pool: AgentPool,
        broker: ContextBroker | None = None,
        evaluator: QualityGateEvaluator | None = None,
        error_handler: ErrorHandler | None = None,
        config: EngineConfig | None = None,
        workflow_id: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._registry = registry
        self._pool = pool
        self._request = request
        self._broker = broker or ContextBroker()
        self._evaluator = evaluator or QualityGateEvaluator(self._config.summary_key)
        self._errors = error_handler or ErrorHandler()
        self._on_progress = on_progress

        for step in plan.steps:
            registry.lookup(step.agent_id)
            pool.get_agent(step.agent_id)

        self.workflow_id = workflow_id or f"wf-{uuid.uuid4().hex[:12]}"
        self._state = WorkflowState(
            workflow_id=self.workflow_id,
            plan=plan,
            pending_agents=list(plan.agent_ids),
            step_status={s.step_id: StepStatus.TODO for s in plan.steps},
        )
        self._scheduler = Scheduler(plan.steps)
        self._lock = asyncio.Lock()
        self._cancel_event = asyncio.Event()
        self._tasks: dict[str, asyncio.Task] = {}
        self._working = self._broker.build_initial(
            request, task_type=",".join(dict.fromkeys(s.category for s in plan.steps)),
        )
        self._outcome: Outcome | None = None
        self._failure: FailureReport | None = None
        self._clarification: str | None = None
        self._handoffs: list[SuggestedHandoff] = []
        self._partial = False
        self._started = False

    @property
    def state(self) -> WorkflowState:
        return self._state

    @property
    def plan(self) -> ExecutionPlan:
        return self._state.plan

    @property
    def working_package(self) -> ContextPackage:
        """The unfiltered package holding every merged output so far."""
        return self._working

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self) -> WorkflowResult:
        """Drive the plan until the workflow reaches a terminal status."""
        if self._started:
            raise RuntimeError(f"Workflow {self.workflow_id} has already been run")
        self._started = True
        start = time.monotonic()

        async with self._lock:
            if not self._state.is_terminal:
                self._transition(_S.RUNNING, "plan accepted")

        cancel_wait = asyncio.ensure_future(self._cancel_event.wait())
        try:
            while True:
                async with self._lock:
                    self._reap()
                    if self._state.is_terminal:
                        break
                    self._dispatch_ready()
                    if not self._tasks:
                        self._finish_idle()
                        break
                    waiting = list(self._tasks.values())
                await asyncio.wait([*waiting, cancel_wait], return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            async with self._lock:
                if not self._state.is_terminal:
                    self._abort("run cancelled")
            raise
        finally:
            cancel_wait.cancel()
            leftovers = [t for t in self._tasks.values() if not t.done()]
            for task in leftovers:
                task.cancel()
            if leftovers:
                await asyncio.wait(leftovers, timeout=self._config.cancel_grace_seconds)

        return self._build_result(time.monotonic() - start)

    async def cancel(self, reason: str = "cancelled by caller") -> bool:
        """Abort the workflow. Returns False if it had already terminated."""
        async with self._lock:
            if self._state.is_terminal:
                return False
            self._abort(reason)
            pending = [t for t in self._tasks.values() if not t.done()]
        if pending:
            await asyncio.wait(pending, timeout=self._config.cancel_grace_seconds)
        return True

    # ------------------------------------------------------------------
    # State bookkeeping (all called with the lock held)
    # ------------------------------------------------------------------

    def _transition(self, to_status: WorkflowStatus, reason: str | None = None) -> None:
        current = self._state.status
        validate_transition(self.workflow_id, current, to_status)
        self._state.status = to_status
        self._state.transitions.append(
            StateTransition(current, to_status, datetime.now(timezone.utc), reason)
        )
        logger.debug(
            "Workflow %s: %s -> %s (%s)",
            self.workflow_id, current.value, to_status.value, reason or "",
        )
        if self._on_progress:
            self._on_progress(self._state.snapshot())

    def _set_step(self, step_id: str, status: StepStatus) -> None:
        self._state.step_status[step_id] = status

    def _note(self, line: str) -> None:
        self._state.trail.append(line)

    def _drop_pending(self, agent_id: str) -> None:
        if agent_id in self._state.pending_agents:
            self._state.pending_agents.remove(agent_id)

    def _reap(self) -> None:
        for step_id, task in list(self._tasks.items()):
            if not task.done():
                continue
            del self._tasks[step_id]
            if task.cancelled():
                continue
            error = task.exception()
            if error is not None:
                raise error

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _resolve_ready(self) -> list[ExecutionStep]:
        """Ready steps, after skipping conditional steps whose condition is false."""
        while True:
            ready = self._scheduler.get_ready_steps()
            unmet = [
                s for s in ready
                if s.condition is not None and not s.condition(self._state.results)
            ]
            if not unmet:
                return ready
            for step in unmet:
                self._scheduler.mark_skipped(step.step_id)
                self._set_step(step.step_id, StepStatus.SKIPPED)
                self._drop_pending(step.agent_id)
                self._note(f"{step.step_id} [{step.agent_id}]: skipped, {step.condition.describe()} is false")
                logger.debug("Workflow %s: skipped %s", self.workflow_id, step.step_id)

    def _dispatch_ready(self) -> None:
        for step in self._resolve_ready():
            self._scheduler.mark_in_progress(step.step_id)
            package = self._package_for(step, self._registry.lookup(step.agent_id))
            if self._state.status is _S.RUNNING:
                self._transition(_S.WAITING_FOR_AGENT, f"dispatch {step.step_id} to {step.agent_id}")
            self._set_step(step.step_id, StepStatus.WAITING)
            self._state.assignments[step.step_id] = step.agent_id
            index = self._state.plan.steps.index(step)
            self._state.current_step_index = max(self._state.current_step_index, index)
            self._tasks[step.step_id] = asyncio.create_task(
                self._run_step(step, step.agent_id, package),
                name=f"{self.workflow_id}:{step.step_id}",
            )

    def _finish_idle(self) -> None:
        """Nothing in flight and nothing ready: the plan is over."""
        if self._scheduler.has_failures():
            blocked = sorted(self._scheduler.blocked_ids)
            self._outcome = Outcome.FAILED
            self._failure = FailureReport(
                kind="blocked",
                message=f"Steps can no longer run: {', '.join(blocked)}",
                trail=list(self._state.trail),
            )
            self._transition(_S.FAILED, "remaining steps are blocked")
        else:
            self._complete()

    def _complete(self) -> None:
        degraded = self._scheduler.degraded_ids
        self._outcome = Outcome.PARTIAL_SUCCESS if degraded or self._partial else Outcome.SUCCESS
        self._transition(_S.COMPLETED, f"plan finished ({self._outcome.value})")
        logger.info("Workflow %s completed: %s", self.workflow_id, self._outcome.value)

    def _advance(self) -> None:
        """Leave ``validating`` after a step settled without failing the workflow."""
        if self._scheduler.in_progress_ids:
            self._transition(_S.WAITING_FOR_AGENT, "parallel steps still in flight")
        elif self._resolve_ready():
            self._transition(_S.RUNNING, "next step ready")
        elif self._scheduler.has_failures():
            self._finish_idle()
        else:
            self._complete()

    # ------------------------------------------------------------------
    # Context packages
    # ------------------------------------------------------------------

    def _upstream_agents(self, step: ExecutionStep) -> list[str]:
        return [
            self._state.assignments.get(dep, self._state.plan.step(dep).agent_id)
            for dep in step.depends_on
        ]

    def _package_for(self, step: ExecutionStep, descriptor: AgentDescriptor) -> ContextPackage:
        upstream = self._upstream_agents(step)
        edge: HandoffEdge | None = None
        for agent_id in upstream:
            edge = self._registry.edge_between(agent_id, step.agent_id)
            if edge is not None:
                break
        triggering = [self._state.results[a] for a in upstream if a in self._state.results]
        reason, instructions = self._broker.agent_brief(
            descriptor, edge, triggering, category=step.category,
        )
        return self._broker.handoff(self._working, descriptor, reason, instructions)

    def _pick_alternate(self, step: ExecutionStep) -> str | None:
        if self._state.assignments.get(step.step_id) != step.agent_id:
            return None
        for alt in self._registry.alternates_for(step.agent_id):
            if alt in self._state.plan.agent_ids or alt in self._state.results:
                continue
            if alt in self._pool:
                return alt
        return None

    # ------------------------------------------------------------------
    # Step execution
    # ------------------------------------------------------------------

    async def _run_step(self, step: ExecutionStep, agent_id: str, package: ContextPackage) -> None:
        while True:
            attempt = await self._attempt(agent_id, package)
            async with self._lock:
                if self._state.is_terminal:
                    logger.debug(
                        "Workflow %s: dropping late result of %s", self.workflow_id, step.step_id,
                    )
                    return
                redispatch = self._settle(step, attempt)
            if redispatch is None:
                return
            agent_id, package = redispatch
            if self._config.retry_delay_seconds > 0:
                await asyncio.sleep(self._config.retry_delay_seconds)
            if self._state.is_terminal:
                return

    async def _attempt(self, agent_id: str, package: ContextPackage) -> _Attempt:
        attempt = _Attempt(agent_id=agent_id, package=package)
        descriptor = self._registry.lookup(agent_id)
        fields = package.execution_context.fields
        attempt.missing = [name for name in descriptor.requires if _blank(fields.get(name))]
        if attempt.missing:
            return attempt

        agent = self._pool.get_agent(agent_id)
        timeout = self._config.step_timeout_seconds
        try:
            async with asyncio.timeout(timeout):
                raw = await agent.invoke(package)
            attempt.result = self._normalize(agent_id, raw)
        except TimeoutError:
            attempt.error = AgentInvocationTimeout(agent_id, timeout)
        except HandoffError as e:
            attempt.error = e
        except Exception as e:
            logger.warning("Agent %s raised %s", agent_id, type(e).__name__, exc_info=True)
            attempt.error = AgentInvocationFailed(agent_id, f"{type(e).__name__}: {e}")
        return attempt

    @staticmethod
    def _normalize(agent_id: str, raw: Any) -> AgentResult:
        if isinstance(raw, AgentResult):
            result = raw
        elif isinstance(raw, Mapping):
            result = AgentResult.from_dict(raw, agent_id=agent_id)
        else:
            raise MalformedAgentResult(agent_id, f"agent returned {type(raw).__name__}")
        if result.agent_id != agent_id:
            raise MalformedAgentResult(agent_id, f"result is labelled {result.agent_id!r}")
        return result

    def _settle(
        self, step: ExecutionStep, attempt: _Attempt,
    ) -> tuple[str, ContextPackage] | None:
        """Validate one attempt and act on it. Returns the next dispatch, if any."""
        state = self._state
        received = "timed out" if isinstance(attempt.error, AgentInvocationTimeout) else "answered"
        self._transition(_S.VALIDATING, f"{attempt.agent_id} {received} for {step.step_id}")
        self._set_step(step.step_id, StepStatus.VALIDATING)

        gate_result = None
        if attempt.result is not None:
            expected = self._registry.lookup(attempt.agent_id).deliverables
            gate_result = self._evaluator.evaluate(attempt.result, expected)

        failure = classify_failure(attempt.error, attempt.result, gate_result, attempt.missing)
        if failure is None:
            self._accept(step, attempt.result)
            return None
        if state.plan.ambiguous and failure in (FailureClass.AGENT_FAILED, FailureClass.QUALITY_GATE):
            failure = FailureClass.AMBIGUOUS_CLASSIFICATION

        retries = state.retry_counts.get(step.step_id, 0)
        self._note(self._describe_failure(step, attempt, failure, gate_result, retries + 1))
        decision = self._errors.resolve(
            failure,
            retries,
            self._config.retry_budget,
            autonomy=self._registry.lookup(attempt.agent_id).autonomy,
            alternate=self._pick_alternate(step),
        )

        if decision.resolution in (Resolution.RETRY_SAME_AGENT, Resolution.RETRY_ALTERNATE_AGENT):
            return self._retry(step, attempt, decision, gate_result, retries + 1)
        if decision.resolution is Resolution.ABORT:
            self._abort(decision.reason)
            return None
        if decision.budget_exhausted and not step.critical:
            self._degrade(step, attempt, gate_result)
            return None
        self._fail(step, attempt, failure, decision, gate_result, retries + 1)
        return None

    def _describe_failure(
        self,
        step: ExecutionStep,
        attempt: _Attempt,
        failure: FailureClass,
        gate_result: QualityGateResult | None,
        number: int,
    ) -> str:
        if attempt.error is not None:
            detail = str(attempt.error)
        elif attempt.missing:
            detail = f"missing inputs: {', '.join(attempt.missing)}"
        elif gate_result is not None and not gate_result.passed:
            detail = "; ".join(
                f"{g}: {gate_result.details.get(g, '')}" for g in gate_result.violated_gates
            )
        else:
            detail = "; ".join(attempt.result.diagnostics) if attempt.result else ""
        return f"{step.step_id} attempt {number} [{attempt.agent_id}]: {failure.value}: {detail}"

    def _retry(
        self,
        step: ExecutionStep,
        attempt: _Attempt,
        decision: ErrorDecision,
        gate_result: QualityGateResult | None,
        retry_number: int,
    ) -> tuple[str, ContextPackage]:
        self._state.retry_counts[step.step_id] = retry_number
        self._transition(_S.RETRYING, decision.reason)
        self._set_step(step.step_id, StepStatus.RETRYING)
        error = str(attempt.error) if attempt.error is not None else None

        if decision.resolution is Resolution.RETRY_ALTERNATE_AGENT:
            agent_id = decision.alternate_agent
            logger.warning(
                "Workflow %s: rerouting %s from %s to %s (%s)",
                self.workflow_id, step.step_id, attempt.agent_id, agent_id, decision.reason,
            )
            descriptor = self._registry.lookup(agent_id)
            package = self._package_for(step, descriptor)
            package = self._broker.handoff(
                self._working,
                descriptor,
                f"Rerouted from {attempt.agent_id}: {package.agent_context.handoff_reason}",
                package.agent_context.handoff_instructions,
            )
            self._state.assignments[step.step_id] = agent_id
        else:
            agent_id = attempt.agent_id
            logger.warning(
                "Workflow %s: retrying %s on %s (%s)",
                self.workflow_id, step.step_id, agent_id, decision.reason,
            )
            # Fresh copy of the working context; the agent may have mutated its own.
            package = replace(
                attempt.package,
                execution_context=self._broker.minimize(
                    self._working.execution_context, self._registry.lookup(agent_id).scope,
                ),
            )

        package = self._broker.augment_for_retry(
            package, retry_number, attempt.result, gate_result, error=error,
        )
        self._transition(_S.WAITING_FOR_AGENT, f"re-dispatch {step.step_id} to {agent_id}")
        return agent_id, package

    def _record(self, step: ExecutionStep, result: AgentResult) -> None:
        self._working = self._broker.merge(self._working, result)
        self._state.results[result.agent_id] = result
        self._state.completed_agents.append(result.agent_id)
        self._drop_pending(step.agent_id)
        self._suggest_handoffs(result.agent_id)

    def _accept(self, step: ExecutionStep, result: AgentResult) -> None:
        self._record(step, result)
        if result.status is AgentStatus.PARTIAL:
            self._partial = True
            self._note(f"{step.step_id} [{result.agent_id}]: partial result accepted")
        self._scheduler.mark_complete(step.step_id)
        self._set_step(step.step_id, StepStatus.DONE)
        self._advance()

    def _degrade(
        self, step: ExecutionStep, attempt: _Attempt, gate_result: QualityGateResult | None,
    ) -> None:
        result = attempt.result
        well_formed = gate_result is None or OUTPUT_FORMAT not in gate_result.violated_gates
        if result is not None and well_formed and result.agent_id not in self._state.results:
            self._record(step, result)
        else:
            self._drop_pending(step.agent_id)
        logger.warning(
            "Workflow %s: non-critical step %s gave up, continuing degraded",
            self.workflow_id, step.step_id,
        )
        self._note(f"{step.step_id} [{attempt.agent_id}]: degraded")
        self._scheduler.mark_degraded(step.step_id)
        self._set_step(step.step_id, StepStatus.DEGRADED)
        self._advance()

    def _fail(
        self,
        step: ExecutionStep,
        attempt: _Attempt,
        failure: FailureClass,
        decision: ErrorDecision,
        gate_result: QualityGateResult | None,
        attempts: int,
    ) -> None:
        state = self._state
        if attempt.result is not None and attempt.result.agent_id not in state.results:
            state.results[attempt.result.agent_id] = attempt.result
        self._scheduler.mark_failed(step.step_id)
        self._set_step(step.step_id, StepStatus.FAILED)

        if decision.budget_exhausted:
            message = str(RetryBudgetExhausted(step.step_id, attempts, state.trail))
            kind = "retry_budget_exhausted"
            self._outcome = Outcome.FAILED
        else:
            message = f"{step.step_id} escalated: {decision.reason}"
            kind = failure.value
            self._outcome = Outcome.ESCALATED
            self._clarification = self._clarification_for(failure, attempt, decision)

        logger.warning("Workflow %s: %s", self.workflow_id, message)
        self._failure = FailureReport(
            kind=kind,
            message=message,
            step_id=step.step_id,
            agent_id=attempt.agent_id,
            violated_gates=list(gate_result.violated_gates) if gate_result else [],
            trail=list(state.trail),
        )
        self._transition(_S.FAILED, message)
        self._cancel_in_flight(exclude=step.step_id)

    def _clarification_for(
        self, failure: FailureClass, attempt: _Attempt, decision: ErrorDecision,
    ) -> str:
        if failure is FailureClass.MISSING_INPUT:
            missing = attempt.missing or needs_input(attempt.result)
            return (
                f"{attempt.agent_id} cannot continue without: {', '.join(missing)}. "
                "Please provide it and resubmit the request."
            )
        if failure is FailureClass.AMBIGUOUS_CLASSIFICATION:
            return (
                f"Could not determine what kind of task this is: {self._request.text!r}. "
                "Please say which kind of work you need."
            )
        return f"{attempt.agent_id} needs a decision before continuing: {decision.reason}."

    def _suggest_handoffs(self, agent_id: str) -> None:
        for edge in self._registry.edges_from(agent_id):
            if edge.to_agent in self._state.plan.agent_ids:
                continue
            if edge.condition is not None and not edge.condition(self._state.results):
                continue
            self._handoffs.append(
                SuggestedHandoff(edge.from_agent, edge.to_agent, edge.label, edge.auto_send)
            )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def _cancel_in_flight(self, exclude: str | None = None) -> None:
        for step_id, task in self._tasks.items():
            if step_id == exclude or task.done():
                continue
            task.cancel()
            self._set_step(step_id, StepStatus.CANCELLED)

    def _abort(self, reason: str) -> None:
        self._state.abort_reason = reason
        self._transition(_S.ABORTED, reason)
        self._outcome = Outcome.ABORTED
        self._failure = FailureReport(
            kind="aborted",
            message=str(WorkflowAborted(self.workflow_id, reason)),
            trail=list(self._state.trail),
        )
        logger.warning("Workflow %s aborted: %s", self.workflow_id, reason)
        self._cancel_in_flight()
        self._cancel_event.set()

    # ------------------------------------------------------------------
    # Result
    # ------------------------------------------------------------------

    def _build_result(self, elapsed: float) -> WorkflowResult:
        state = self._state
        plan_order = [s.step_id for s in state.plan.steps]
        return WorkflowResult(
            workflow_id=self.workflow_id,
            status=state.status,
            outcome=self._outcome or Outcome.FAILED,
            deliverables={
                agent_id: copy.deepcopy(state.results[agent_id].deliverables)
                for agent_id in state.completed_agents
            },
            results=dict(state.results),
            failure=self._failure,
            skipped_steps=[s for s in plan_order if s in self._scheduler.skipped_ids],
            degraded_steps=[s for s in plan_order if s in self._scheduler.degraded_ids],
            handoffs=list(self._handoffs),
            clarification=self._clarification,
            duration_seconds=elapsed,
        )
