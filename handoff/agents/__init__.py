"""Agent catalog and invocation boundary."""

from handoff.agents.mocks import BlockingAgent, EchoAgent, MockAgent, ScriptedAgent
from handoff.agents.pool import AgentPool
from handoff.agents.protocol import Agent
from handoff.agents.registry import (
    AgentDescriptor,
    AgentRegistry,
    HandoffEdge,
    Scope,
    load_registry,
)
from handoff.agents.types import (
    AgentContext,
    AgentResult,
    AgentStatus,
    ContextPackage,
    ExecutionContext,
    RequestContext,
)

__all__ = [
    "Agent",
    "AgentContext",
    "AgentDescriptor",
    "AgentPool",
    "AgentRegistry",
    "AgentResult",
    "AgentStatus",
    "BlockingAgent",
    "ContextPackage",
    "EchoAgent",
    "ExecutionContext",
    "HandoffEdge",
    "MockAgent",
    "RequestContext",
    "ScriptedAgent",
    "Scope",
    "load_registry",
]
