"""Tests for configuration management."""

import json
import os
from unittest.mock import patch

import pytest

from conftest import ScriptedLLMClient
from account_orchestrator.config import ConfigurationError, OrchestratorSettings
from models import BackendConfig, BalancingPolicy, ExecutionStrategy
from orchestration.orchestrator import Orchestrator


def write_config(path, **values):
    path.write_text(json.dumps(values))
    return path


def test_defaults():
    """Test settings with no file and no environment."""
    with patch.dict(os.environ, {}, clear=True):
        settings = OrchestratorSettings()
    assert settings.backends == []
    assert settings.policy == BalancingPolicy.LEAST_LOADED
    assert settings.max_subtasks == 5
    assert settings.strategy == ExecutionStrategy.ADAPTIVE
    assert settings.save_history is True
    assert settings.log_level == "INFO"


def test_environment_overrides():
    with patch.dict(os.environ, {
        "ORCHESTRATOR_POLICY": "round-robin",
        "ORCHESTRATOR_MAX_SUBTASKS": "7",
        "ORCHESTRATOR_LOG_LEVEL": "debug",
        "ORCHESTRATOR_BACKENDS": json.dumps([{"api_key": "k1"}, {"api_key": "k2"}]),
    }):
        settings = OrchestratorSettings()
    assert settings.policy == BalancingPolicy.ROUND_ROBIN
    assert settings.max_subtasks == 7
    assert settings.log_level == "DEBUG"
    assert [b.api_key for b in settings.backends] == ["k1", "k2"]


def test_invalid_values():
    with pytest.raises(ValueError, match="log_level"):
        OrchestratorSettings(log_level="LOUD")

    with pytest.raises(ValueError, match="Duplicate backend ids"):
        OrchestratorSettings(backends=[
            BackendConfig(id="a", api_key="1"),
            BackendConfig(id="a", api_key="2"),
        ])

    with pytest.raises(ValueError):
        OrchestratorSettings(max_subtasks=11)


def test_load_merges_file_and_environment(tmp_path):
    path = write_config(
        tmp_path / "config.json",
        backends=[{"id": "account1", "api_key": "k1"}, {"id": "account2", "api_key": "k2"}],
        policy="cost-optimized",
        max_subtasks=3
    )
    with patch.dict(os.environ, {"ORCHESTRATOR_MAX_SUBTASKS": "4"}):
        settings = OrchestratorSettings.load(path)

    assert settings.policy == BalancingPolicy.COST_OPTIMIZED
    assert settings.max_subtasks == 4
    assert [b.id for b in settings.backends] == ["account1", "account2"]


def test_load_missing_file_uses_defaults(tmp_path):
    settings = OrchestratorSettings.load(tmp_path / "missing.json")
    assert settings.backends == []


def test_load_invalid_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")
    with pytest.raises(ConfigurationError):
        OrchestratorSettings.load(path)


def test_save_round_trip(tmp_path):
    settings = OrchestratorSettings(
        backends=[BackendConfig(id="account1", name="Main", api_key="k1", requests_per_minute=30)],
        policy=BalancingPolicy.ROUND_ROBIN,
        db_path=str(tmp_path / "db.sqlite")
    )
    path = settings.save(tmp_path / "dir" / "config.json")

    loaded = OrchestratorSettings.load(path)
    assert loaded.backends[0].requests_per_minute == 30
    assert loaded.policy == BalancingPolicy.ROUND_ROBIN
    assert loaded.db_path == str(tmp_path / "db.sqlite")


def test_to_orchestration_config():
    settings = OrchestratorSettings(max_subtasks=2, strategy="sequential", availability_timeout=5)
    config = settings.to_orchestration_config(save_history=False)
    assert config.max_subtasks == 2
    assert config.strategy == ExecutionStrategy.SEQUENTIAL
    assert config.availability_timeout == 5
    assert config.save_history is False


def test_build_requires_backends():
    with pytest.raises(ConfigurationError, match="No backends configured"):
        OrchestratorSettings(backends=[]).build_allocator()


def test_build_orchestrator_uses_retry_settings(tmp_path):
    settings = OrchestratorSettings(
        backends=[BackendConfig(api_key="k1"), BackendConfig(api_key="k2")],
        policy="round-robin",
        max_retries=4,
        retry_delay=0.5
    )
    with patch("account_orchestrator.config.create_llm_client", return_value=ScriptedLLMClient()) as factory:
        orchestrator = settings.build_orchestrator()

    assert isinstance(orchestrator, Orchestrator)
    assert orchestrator.allocator.backend_ids == ["account1", "account2"]
    assert orchestrator.allocator.policy == BalancingPolicy.ROUND_ROBIN
    assert factory.call_count == 2
    assert factory.call_args.kwargs["max_retries"] == 4
    assert factory.call_args.kwargs["retry_delay"] == 0.5
