"""Tests for engine configuration and the YAML configuration bundle."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from handoff.execution.config import EngineConfig, load_settings, settings_from_mapping
from handoff.workflow.exceptions import HandoffTargetUnresolved, RegistryLoadError, RuleTargetUnresolved

EXAMPLE_CONFIG = Path(__file__).resolve().parent.parent / "examples" / "qa_agents.yaml"


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig()
        assert config.retry_budget == 2
        assert config.step_timeout_seconds == 300.0
        assert config.summary_key == "summary"

    @pytest.mark.parametrize(
        "kwargs", [{"retry_budget": -1}, {"step_timeout_seconds": 0}],
    )
    def test_rejects_bad_values(self, kwargs):
        with pytest.raises(ValueError):
            EngineConfig(**kwargs)

    def test_from_mapping(self):
        config = EngineConfig.from_mapping({"retry_budget": 4, "step_timeout_seconds": 10})
        assert config.retry_budget == 4
        assert config.step_timeout_seconds == 10

    def test_from_empty_mapping(self):
        assert EngineConfig.from_mapping(None) == EngineConfig()

    def test_unknown_keys(self):
        with pytest.raises(RegistryLoadError, match="max_retries"):
            EngineConfig.from_mapping({"max_retries": 3})

    def test_invalid_value_from_mapping(self):
        with pytest.raises(RegistryLoadError, match="retry_budget"):
            EngineConfig.from_mapping({"retry_budget": -2})


class TestSettings:
    def test_from_mapping(self, qa_config):
        settings = settings_from_mapping(qa_config)
        assert len(settings.registry) == 5
        assert settings.classifier.fallback_agent == "qa-orchestrator"
        assert settings.config == EngineConfig()

    def test_rule_for_unknown_agent(self, qa_config):
        qa_config["rules"].append({"category": "deploy", "agent": "deployer", "patterns": ["deploy"]})
        with pytest.raises(RuleTargetUnresolved):
            settings_from_mapping(qa_config)

    def test_broken_edge_refuses_to_load(self, qa_config):
        qa_config["agents"][0]["handoffs"].append({"label": "Deploy", "agent": "deployer"})
        with pytest.raises(HandoffTargetUnresolved):
            settings_from_mapping(qa_config)

    def test_not_a_mapping(self):
        with pytest.raises(RegistryLoadError):
            settings_from_mapping(["agents"])


class TestLoadSettings:
    def test_example_configuration(self):
        settings = load_settings(EXAMPLE_CONFIG)
        assert settings.config.step_timeout_seconds == 600
        assert "test-healer" in settings.registry
        assert [r.category for r in settings.classifier.rules] == [
            "generation", "coverage", "healing", "execution",
        ]

    def test_round_trip_through_yaml(self, tmp_path, qa_config):
        qa_config["engine"] = {"retry_budget": 1}
        path = tmp_path / "handoff.yaml"
        path.write_text(yaml.safe_dump(qa_config))
        assert load_settings(path).config.retry_budget == 1

    def test_missing_file(self, tmp_path, caplog):
        with pytest.raises(RegistryLoadError):
            load_settings(tmp_path / "missing.yaml")
        assert "Cannot read configuration" in caplog.text

    def test_bad_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("agents: [\n  - id: a\n")
        with pytest.raises(RegistryLoadError):
            load_settings(path)
