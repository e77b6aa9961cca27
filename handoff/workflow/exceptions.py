"""Workflow exception types."""


class HandoffError(Exception):
    """Base class for every error raised by the handoff engine."""


# -- load time ---------------------------------------------------------------


class RegistryLoadError(HandoffError):
    """Raised when agent or rule configuration is malformed or broken."""


class MalformedDescriptor(RegistryLoadError):
    """Raised when a descriptor record is missing fields or has bad values."""


class DuplicateAgentError(RegistryLoadError):
    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Duplicate agent id: {agent_id}")


class HandoffTargetUnresolved(RegistryLoadError):
    """Raised when a handoff edge (or alternate) points at an unknown agent."""

    def __init__(self, from_agent: str, to_agent: str, label: str = ""):
        self.from_agent = from_agent
        self.to_agent = to_agent
        self.label = label
        suffix = f" ({label})" if label else ""
        super().__init__(
            f"Handoff from {from_agent} targets unknown agent {to_agent}{suffix}"
        )


class SelfHandoffCycle(RegistryLoadError):
    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Agent {agent_id} lists itself as its only handoff target")


class RuleTargetUnresolved(RegistryLoadError):
    def __init__(self, category: str, agent_id: str):
        self.category = category
        self.agent_id = agent_id
        super().__init__(
            f"Classification rule for '{category}' targets unknown agent {agent_id}"
        )


# -- lookups -----------------------------------------------------------------


class AgentNotFound(HandoffError, LookupError):
    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"No agent registered with id: {agent_id}")


class AgentNotBound(HandoffError, LookupError):
    """Raised when a plan references an agent with no invocable implementation."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"No implementation bound for agent: {agent_id}")


# -- runtime -----------------------------------------------------------------


class ClassificationAmbiguous(HandoffError):
    def __init__(self, text: str, reason: str = "No classification rule matched request"):
        self.text = text
        self.reason = reason
        super().__init__(f"{reason}: {text!r}")


class AgentInvocationTimeout(HandoffError):
    def __init__(self, agent_id: str, timeout: float):
        self.agent_id = agent_id
        self.timeout = timeout
        super().__init__(f"Agent {agent_id} timed out after {timeout}s")


class AgentInvocationFailed(HandoffError):
    def __init__(self, agent_id: str, reason: str):
        self.agent_id = agent_id
        self.reason = reason
        super().__init__(f"Agent {agent_id} invocation failed: {reason}")


class MalformedAgentResult(AgentInvocationFailed):
    """Raised when an agent's serialized result does not match the contract."""


class QualityGateViolation(HandoffError):
    def __init__(self, agent_id: str, violated_gates: list[str]):
        self.agent_id = agent_id
        self.violated_gates = list(violated_gates)
        super().__init__(
            f"Agent {agent_id} output violated gates: {', '.join(violated_gates)}"
        )


class RetryBudgetExhausted(HandoffError):
    def __init__(self, step_id: str, attempts: int, trail: list[str] | None = None):
        self.step_id = step_id
        self.attempts = attempts
        self.trail = list(trail or [])
        super().__init__(f"Step {step_id} exhausted its retry budget after {attempts} attempts")


class WorkflowAborted(HandoffError):
    def __init__(self, workflow_id: str, reason: str):
        self.workflow_id = workflow_id
        self.reason = reason
        super().__init__(f"Workflow {workflow_id} aborted: {reason}")


class InvalidTransitionError(HandoffError):
    """Raised when an invalid workflow state transition is attempted."""

    def __init__(self, workflow_id: str, from_status, to_status):
        self.workflow_id = workflow_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for workflow {workflow_id}: "
            f"{from_status.value} → {to_status.value}"
        )


class ContextConflict(HandoffError):
    """Raised when a merge would overwrite an existing previous output."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"previous_outputs already holds a result for {agent_id}")
