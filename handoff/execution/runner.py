"""Orchestrator: classify a request, plan it, and run the workflow."""

from __future__ import annotations

import logging
import uuid
from typing import Callable

from handoff.agents.pool import AgentPool
from handoff.agents.registry import AgentRegistry
from handoff.execution.config import EngineConfig
from handoff.execution.context_broker import ContextBroker
from handoff.execution.engine import WorkflowEngine
from handoff.execution.error_handler import ErrorHandler
from handoff.execution.gates import QualityGateEvaluator
from handoff.routing.classifier import Classifier, RankedCandidates
from handoff.routing.complexity import ComplexityAssessor
from handoff.workflow.models import ExecutionPlan, Request, WorkflowResult

logger = logging.getLogger(__name__)


class Orchestrator:
    """Entry point that turns requests into finished workflows.

    Each ``handle()`` call owns one WorkflowEngine for the lifetime of the
    workflow; running engines can be cancelled by workflow id.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        pool: AgentPool,
        classifier: Classifier,
        assessor: ComplexityAssessor | None = None,
        broker: ContextBroker | None = None,
        evaluator: QualityGateEvaluator | None = None,
        error_handler: ErrorHandler | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self._registry = registry
        self._pool = pool
        self._classifier = classifier
        self._assessor = assessor or ComplexityAssessor(getattr(classifier, "fallback_agent", None))
        self._config = config or EngineConfig()
        self._broker = broker or ContextBroker()
        self._evaluator = evaluator or QualityGateEvaluator(self._config.summary_key)
        self._error_handler = error_handler or ErrorHandler()
        self._active: dict[str, WorkflowEngine] = {}

    @property
    def registry(self) -> AgentRegistry:
        return self._registry

    def plan(self, request: Request) -> tuple[RankedCandidates, ExecutionPlan]:
        """Classify and assess a request without running anything."""
        candidates = self._classifier.classify(request, self._registry)
        plan = self._assessor.assess(candidates, request)
        logger.debug(
            "Planned %d step(s) for %r: %s",
            len(plan.steps), request.text, ", ".join(plan.agent_ids),
        )
        return candidates, plan

    def active_workflows(self) -> list[str]:
        return list(self._active)

    async def handle(
        self,
        request: Request,
        workflow_id: str | None = None,
        on_progress: Callable | None = None,
    ) -> WorkflowResult:
        """Run a request end to end and return its resolution summary."""
        _, plan = self.plan(request)
        workflow_id = workflow_id or f"wf-{uuid.uuid4().hex[:12]}"
        if workflow_id in self._active:
            raise ValueError(f"Workflow {workflow_id} is already running")

        engine = WorkflowEngine(
            plan,
            request,
            self._registry,
            self._pool,
            broker=self._broker,
            evaluator=self._evaluator,
            error_handler=self._error_handler,
            config=self._config,
            workflow_id=workflow_id,
            on_progress=on_progress,
        )
        self._active[workflow_id] = engine
        try:
            return await engine.run()
        finally:
            del self._active[workflow_id]

    async def cancel(self, workflow_id: str, reason: str = "cancelled by caller") -> bool:
        """Abort a running workflow. Returns False if it is unknown or finished."""
        engine = self._active.get(workflow_id)
        if engine is None:
            return False
        return await engine.cancel(reason)

    def engine(self, workflow_id: str) -> WorkflowEngine | None:
        return self._active.get(workflow_id)
