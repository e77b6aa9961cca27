"""Convenience functions for common orchestration patterns."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

from handoff.agents.pool import AgentPool
from handoff.agents.registry import AgentRegistry
from handoff.execution.config import Settings, load_settings
from handoff.execution.runner import Orchestrator
from handoff.workflow.models import Request, WorkflowResult


def create_pool(
    registry: AgentRegistry,
    model: str = "sonnet",
    max_turns: int = 25,
    working_dir: Path | None = None,
) -> AgentPool:
    """Create an AgentPool with real agents backed by ClaudeCodeExecutor."""
    from handoff.agents.claude_code import ClaudeCodeAgent, ClaudeCodeExecutor

    executor = ClaudeCodeExecutor(model=model, max_turns=max_turns)
    pool = AgentPool()
    for descriptor in registry.descriptors():
        pool.register(
            descriptor.id,
            ClaudeCodeAgent(
                descriptor.id,
                executor=executor,
                description=descriptor.description,
                working_dir=working_dir,
            ),
        )
    return pool


def create_test_pool(registry: AgentRegistry) -> AgentPool:
    """Create an AgentPool with echo agents for fast dry runs."""
    from handoff.agents.mocks import EchoAgent

    pool = AgentPool()
    for agent_id in registry.ids():
        pool.register(agent_id, EchoAgent(agent_id))
    return pool


def create_orchestrator(
    settings: Settings,
    pool: AgentPool | None = None,
    mock: bool = False,
    model: str = "sonnet",
) -> Orchestrator:
    if pool is None:
        pool = create_test_pool(settings.registry) if mock else create_pool(settings.registry, model=model)
    return Orchestrator(
        registry=settings.registry,
        pool=pool,
        classifier=settings.classifier,
        config=settings.config,
    )


async def route_request(
    text: str,
    config_path: str | Path,
    on_progress: Callable | None = None,
    mock: bool = False,
    model: str = "sonnet",
    **request_fields,
) -> WorkflowResult:
    """Convenience function to route one request with the agents of a config file.

    Uses real ClaudeCodeExecutor agents by default. Pass mock=True for
    fast testing without burning tokens.
    """
    orchestrator = create_orchestrator(load_settings(config_path), mock=mock, model=model)
    return await orchestrator.handle(Request(text=text, **request_fields), on_progress=on_progress)
