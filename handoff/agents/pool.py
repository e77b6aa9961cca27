"""Binds registry agent ids to invocable implementations."""

from __future__ import annotations

from handoff.agents.protocol import Agent
from handoff.workflow.exceptions import AgentNotBound


class AgentPool:
    """Maps agent ids to agent implementations."""

    def __init__(self) -> None:
        self._agents: dict[str, Agent] = {}

    def register(self, agent_id: str, agent: Agent) -> None:
        self._agents[agent_id] = agent

    def get_agent(self, agent_id: str) -> Agent:
        if agent_id not in self._agents:
            raise AgentNotBound(agent_id)
        return self._agents[agent_id]

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def list_agents(self) -> dict[str, Agent]:
        return dict(self._agents)
