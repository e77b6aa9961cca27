"""Static catalog of agent descriptors and the handoff graph between them.

The registry is built once, validated as a whole, and is read-only
afterwards. Broken references are load-time errors so that no workflow ever
discovers an orphan handoff mid-run.
"""

from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml

from handoff.routing.conditions import Condition
from handoff.workflow.exceptions import (
    AgentNotFound,
    DuplicateAgentError,
    HandoffTargetUnresolved,
    MalformedDescriptor,
    RegistryLoadError,
    SelfHandoffCycle,
)
from handoff.workflow.models import AutonomyLevel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Scope:
    """Glob patterns over execution-context field names an agent may see."""

    includes: tuple[str, ...] = ("*",)
    excludes: tuple[str, ...] = ()

    def excluded(self, name: str) -> bool:
        return any(fnmatch.fnmatchcase(name, p) for p in self.excludes)

    def permits(self, name: str) -> bool:
        if self.excluded(name):
            return False
        return any(fnmatch.fnmatchcase(name, p) for p in self.includes)

    def permits_any_under(self, prefix: str) -> bool:
        """True if some include pattern reaches into ``prefix.<name>`` entries."""
        return any(p.startswith(f"{prefix}.") for p in self.includes)


@dataclass(frozen=True)
class HandoffEdge:
    from_agent: str
    to_agent: str
    label: str
    condition: Condition | None = None
    auto_send: bool = False


@dataclass(frozen=True)
class AgentDescriptor:
    id: str
    capabilities: frozenset[str] = frozenset()
    scope: Scope = field(default_factory=Scope)
    autonomy: AutonomyLevel = AutonomyLevel.GUIDED
    handoffs: tuple[HandoffEdge, ...] = ()
    description: str = ""
    deliverables: tuple[str, ...] = ()
    requires: tuple[str, ...] = ()
    alternates: tuple[str, ...] = ()
    default_prompt: str = ""


def _as_tuple(value: Any, what: str, agent_id: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple, set, frozenset)) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise MalformedDescriptor(f"Agent {agent_id}: '{what}' must be a list of strings")


def descriptor_from_mapping(data: Mapping) -> AgentDescriptor:
    """Build an AgentDescriptor from one configuration record."""
    if not isinstance(data, Mapping):
        raise MalformedDescriptor(f"Agent record must be a mapping, got {type(data).__name__}")
    agent_id = data.get("id")
    if not isinstance(agent_id, str) or not agent_id.strip():
        raise MalformedDescriptor(f"Agent record without a valid id: {dict(data)!r}")

    autonomy_raw = data.get("autonomy", data.get("decision_autonomy", AutonomyLevel.GUIDED.value))
    try:
        autonomy = AutonomyLevel(autonomy_raw)
    except ValueError:
        raise MalformedDescriptor(
            f"Agent {agent_id}: unknown autonomy level {autonomy_raw!r}"
        ) from None

    scope_raw = data.get("scope") or {}
    if not isinstance(scope_raw, Mapping):
        raise MalformedDescriptor(f"Agent {agent_id}: 'scope' must be a mapping")
    includes = _as_tuple(scope_raw.get("includes", ["*"]), "scope.includes", agent_id)
    excludes = _as_tuple(scope_raw.get("excludes"), "scope.excludes", agent_id)

    edges = []
    for edge in data.get("handoffs") or []:
        if not isinstance(edge, Mapping) or not edge.get("agent"):
            raise MalformedDescriptor(f"Agent {agent_id}: handoff entries need an 'agent'")
        condition = None
        if edge.get("condition") is not None:
            try:
                condition = Condition.from_config(edge["condition"])
            except ValueError as e:
                raise MalformedDescriptor(f"Agent {agent_id}: {e}") from None
        edges.append(
            HandoffEdge(
                from_agent=agent_id,
                to_agent=str(edge["agent"]),
                label=str(edge.get("label", "")),
                condition=condition,
                auto_send=bool(edge.get("send", edge.get("auto_send", False))),
            )
        )

    return AgentDescriptor(
        id=agent_id,
        capabilities=frozenset(_as_tuple(data.get("capabilities"), "capabilities", agent_id)),
        scope=Scope(includes=includes, excludes=excludes),
        autonomy=autonomy,
        handoffs=tuple(edges),
        description=str(data.get("description", "")),
        deliverables=_as_tuple(data.get("deliverables"), "deliverables", agent_id),
        requires=_as_tuple(data.get("requires"), "requires", agent_id),
        alternates=_as_tuple(data.get("alternates"), "alternates", agent_id),
        default_prompt=str(data.get("default_prompt", "")),
    )


class AgentRegistry:
    """Validated, read-only catalog of agents and handoff edges."""

    def __init__(self, descriptors: dict[str, AgentDescriptor]) -> None:
        self._agents = dict(descriptors)

    @classmethod
    def load(cls, descriptors: Iterable[AgentDescriptor | Mapping]) -> AgentRegistry:
        """Validate descriptors as a whole and build the registry.

        Raises:
            DuplicateAgentError: two descriptors share an id.
            HandoffTargetUnresolved: an edge or alternate names an unknown agent.
            SelfHandoffCycle: an agent's only handoff target is itself.
            MalformedDescriptor: a record is structurally invalid.
        """
        agents: dict[str, AgentDescriptor] = {}
        for item in descriptors:
            desc = item if isinstance(item, AgentDescriptor) else descriptor_from_mapping(item)
            if desc.id in agents:
                raise DuplicateAgentError(desc.id)
            agents[desc.id] = desc

        for desc in agents.values():
            for edge in desc.handoffs:
                if edge.from_agent != desc.id:
                    raise MalformedDescriptor(
                        f"Agent {desc.id} declares an edge from {edge.from_agent}"
                    )
                if edge.to_agent not in agents:
                    raise HandoffTargetUnresolved(desc.id, edge.to_agent, edge.label)
                if edge.condition is not None and edge.condition.agent_id not in agents:
                    raise HandoffTargetUnresolved(desc.id, edge.condition.agent_id, edge.label)
            if desc.handoffs and all(e.to_agent == desc.id for e in desc.handoffs):
                raise SelfHandoffCycle(desc.id)
            for alt in desc.alternates:
                if alt not in agents:
                    raise HandoffTargetUnresolved(desc.id, alt, "alternate")
                if alt == desc.id:
                    raise MalformedDescriptor(f"Agent {desc.id} lists itself as an alternate")

        logger.debug("Loaded agent registry with %d agents", len(agents))
        return cls(agents)

    def lookup(self, agent_id: str) -> AgentDescriptor:
        try:
            return self._agents[agent_id]
        except KeyError:
            raise AgentNotFound(agent_id) from None

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def __len__(self) -> int:
        return len(self._agents)

    def ids(self) -> list[str]:
        return list(self._agents)

    def descriptors(self) -> list[AgentDescriptor]:
        return list(self._agents.values())

    def edges_from(self, agent_id: str) -> list[HandoffEdge]:
        return list(self.lookup(agent_id).handoffs)

    def edge_between(self, from_agent: str, to_agent: str) -> HandoffEdge | None:
        """First declared edge from one agent to another, if any."""
        if from_agent not in self._agents:
            return None
        for edge in self._agents[from_agent].handoffs:
            if edge.to_agent == to_agent:
                return edge
        return None

    def alternates_for(self, agent_id: str) -> list[str]:
        return list(self.lookup(agent_id).alternates)

    def agents_with_capability(self, capability: str) -> list[str]:
        return [a.id for a in self._agents.values() if capability in a.capabilities]


def load_registry(source: str | Path | Mapping | list) -> AgentRegistry:
    """Load a registry from a YAML file, a parsed mapping, or a list of records.

    A mapping must carry the records under an ``agents`` key.
    """
    if isinstance(source, (str, Path)):
        path = Path(source)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            logger.error("Cannot read agent registry %s: %s", path, e)
            raise RegistryLoadError(f"Cannot read agent registry {path}: {e}") from e
    else:
        data = source

    if isinstance(data, Mapping):
        data = data.get("agents")
    if not isinstance(data, list):
        raise RegistryLoadError("Agent registry must be a list of agent records under 'agents'")
    return AgentRegistry.load(data)
