"""Protocol definition for invocable agents."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from handoff.agents.types import AgentResult, ContextPackage


@runtime_checkable
class Agent(Protocol):
    name: str
    description: str

    async def invoke(self, package: ContextPackage) -> AgentResult | dict: ...
