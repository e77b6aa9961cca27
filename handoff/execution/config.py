"""Execution configuration and the YAML configuration bundle."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from handoff.agents.registry import AgentRegistry, load_registry
from handoff.routing.classifier import RuleTableClassifier, load_rules
from handoff.workflow.exceptions import RegistryLoadError

logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """Configuration for workflow execution."""

    retry_budget: int = 2
    retry_delay_seconds: float = 0.0
    step_timeout_seconds: float = 300.0
    cancel_grace_seconds: float = 1.0
    summary_key: str = "summary"

    def __post_init__(self) -> None:
        if self.retry_budget < 0:
            raise ValueError("retry_budget must be >= 0")
        if self.step_timeout_seconds <= 0:
            raise ValueError("step_timeout_seconds must be > 0")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> EngineConfig:
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise RegistryLoadError(f"Unknown engine settings: {', '.join(sorted(unknown))}")
        try:
            return cls(**data)
        except (TypeError, ValueError) as e:
            raise RegistryLoadError(f"Invalid engine settings: {e}") from None


@dataclass
class Settings:
    config: EngineConfig
    registry: AgentRegistry
    classifier: RuleTableClassifier


def settings_from_mapping(data: Mapping[str, Any]) -> Settings:
    """Build and cross-validate settings from a parsed configuration bundle."""
    if not isinstance(data, Mapping):
        raise RegistryLoadError("Configuration must be a mapping")
    config = EngineConfig.from_mapping(data.get("engine"))
    registry = load_registry({"agents": data.get("agents")})
    classifier = load_rules(data.get("rules") or [], data.get("fallback_agent"))
    classifier.validate(registry)
    return Settings(config=config, registry=registry, classifier=classifier)


def load_settings(path: str | Path) -> Settings:
    """Load an ``engine`` / ``fallback_agent`` / ``agents`` / ``rules`` YAML bundle."""
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        logger.error("Cannot read configuration %s: %s", path, e)
        raise RegistryLoadError(f"Cannot read configuration {path}: {e}") from e
    try:
        return settings_from_mapping(data or {})
    except RegistryLoadError as e:
        logger.error("Invalid configuration %s: %s", path, e)
        raise
