"""Mock agents for testing and dry runs."""

from __future__ import annotations

import asyncio

from handoff.agents.types import AgentResult, AgentStatus, ContextPackage


class MockAgent:
    """Returns a configurable canned result and records what it was sent."""

    description: str = "Mock agent for testing"

    def __init__(self, agent_id: str, result: AgentResult | dict | None = None) -> None:
        self.name = agent_id
        self._result = result or AgentResult(
            agent_id=agent_id,
            status=AgentStatus.SUCCESS,
            deliverables={"summary": f"{agent_id} finished"},
        )
        self.call_count: int = 0
        self.packages: list[ContextPackage] = []

    @property
    def last_package(self) -> ContextPackage | None:
        return self.packages[-1] if self.packages else None

    async def invoke(self, package: ContextPackage) -> AgentResult | dict:
        self.call_count += 1
        self.packages.append(package)
        return self._result


class ScriptedAgent(MockAgent):
    """Plays back a list of results (or exceptions to raise), repeating the last."""

    description = "Scripted mock agent"

    def __init__(self, agent_id: str, script: list) -> None:
        if not script:
            raise ValueError("ScriptedAgent needs at least one scripted outcome")
        super().__init__(agent_id)
        self._script = list(script)

    async def invoke(self, package: ContextPackage) -> AgentResult | dict:
        self.call_count += 1
        self.packages.append(package)
        outcome = self._script[min(self.call_count, len(self._script)) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class BlockingAgent(MockAgent):
    """Waits on an event before answering; for timeout and cancellation tests.

    With ``ignore_cancel=True`` the agent swallows the cancellation notice and
    still answers once released, imitating a remote agent that cannot be
    interrupted.
    """

    description = "Blocking mock agent"

    def __init__(
        self,
        agent_id: str,
        release: asyncio.Event | None = None,
        result: AgentResult | dict | None = None,
        ignore_cancel: bool = False,
    ) -> None:
        super().__init__(agent_id, result)
        self.release = release or asyncio.Event()
        self.started = asyncio.Event()
        self.cancelled = False
        self._ignore_cancel = ignore_cancel

    async def invoke(self, package: ContextPackage) -> AgentResult | dict:
        self.call_count += 1
        self.packages.append(package)
        self.started.set()
        while True:
            try:
                await self.release.wait()
                return self._result
            except asyncio.CancelledError:
                self.cancelled = True
                if not self._ignore_cancel:
                    raise


class EchoAgent:
    """Answers every package with its expected deliverables filled in."""

    description: str = "Echoes expected deliverables for dry runs"

    def __init__(self, agent_id: str) -> None:
        self.name = agent_id
        self.call_count = 0

    async def invoke(self, package: ContextPackage) -> AgentResult | dict:
        self.call_count += 1
        ctx = package.agent_context
        deliverables = {
            name: f"{name} from {self.name}" for name in (ctx.expected_output if ctx else ())
        }
        deliverables["summary"] = (
            f"{self.name} handled: {package.request_context.original_request}"
        )
        return AgentResult(
            agent_id=self.name,
            status=AgentStatus.SUCCESS,
            deliverables=deliverables,
        )
