"""Tests for configuration loading and validation."""

from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path

import pytest

from autobiz.config_loader import (
    ConfigLoader,
    interpolate_env_vars,
    load_config,
    load_config_with_overrides,
    process_config_dict,
)
from autobiz.constants import BrokerMode, LogLevel, StoreBackend

REPO_CONFIG = Path(__file__).resolve().parents[1] / "config" / "config.yaml"


class TestEnvVarInterpolation:
    """Tests for environment variable interpolation."""

    def test_no_interpolation_needed(self) -> None:
        assert interpolate_env_vars("hello") == "hello"
        assert interpolate_env_vars(123) == 123
        assert interpolate_env_vars(None) is None

    def test_simple_env_var(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUTOBIZ_TEST_VAR", "test_value")
        assert interpolate_env_vars("${AUTOBIZ_TEST_VAR}") == "test_value"

    def test_env_var_with_default(self) -> None:
        os.environ.pop("AUTOBIZ_MISSING_VAR", None)
        assert interpolate_env_vars("${AUTOBIZ_MISSING_VAR:fallback}") == "fallback"

    def test_empty_default(self) -> None:
        os.environ.pop("AUTOBIZ_EMPTY_DEFAULT", None)
        assert interpolate_env_vars("${AUTOBIZ_EMPTY_DEFAULT:}") == ""

    def test_mixed_text_and_vars(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUTOBIZ_HOST_PART", "functions.example.com")
        result = interpolate_env_vars("https://${AUTOBIZ_HOST_PART}/v1")
        assert result == "https://functions.example.com/v1"


class TestProcessConfigDict:
    def test_nested_and_lists(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUTOBIZ_EXCHANGE", "kraken")
        data = {"trading": {"broker_exchanges": ["alpaca", "${AUTOBIZ_EXCHANGE}"]}}
        result = process_config_dict(data)
        assert result["trading"]["broker_exchanges"] == ["alpaca", "kraken"]


class TestConfigLoader:
    def test_load_valid_config(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            """
environment:
  dry_run: false
  store_backend: supabase
  log_level: DEBUG

collaborators:
  functions_url: https://example.supabase.co/functions/v1
  broker_mode: http

trading:
  default_max_drawdown_pct: 15.5
  project_concurrency: 2
"""
        )

        config = ConfigLoader(config_file).load()

        assert config.is_dry_run is False
        assert config.environment.store_backend == StoreBackend.SUPABASE
        assert config.environment.log_level == LogLevel.DEBUG
        assert config.collaborators.broker_mode == BrokerMode.HTTP
        assert config.collaborators.function_url("agent-work-executor") == (
            "https://example.supabase.co/functions/v1/agent-work-executor"
        )
        assert config.trading.default_max_drawdown_pct == Decimal("15.5")
        assert config.trading.project_concurrency == 2

    def test_file_not_found(self) -> None:
        loader = ConfigLoader(Path("/nonexistent/path/config.yaml"))
        with pytest.raises(FileNotFoundError):
            loader.load()

    def test_empty_config_uses_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")

        config = load_config(config_file)

        assert config.is_dry_run is True
        assert config.uses_memory_store is True
        assert config.is_sim_broker is True
        assert config.phases.total_phases == 6
        assert config.trading.default_dca_interval_hours == 24
        assert config.openai.approval_threshold == 7

    def test_reload_config(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("environment:\n  dry_run: true")

        loader = ConfigLoader(config_file)
        assert loader.load().is_dry_run is True

        config_file.write_text("environment:\n  dry_run: false")
        assert loader.reload().is_dry_run is False

    def test_repository_config_loads(self) -> None:
        config = load_config(REPO_CONFIG)
        assert config.phases.total_phases == 6
        assert "alpaca" in config.trading.broker_exchanges


class TestConfigWithOverrides:
    def test_overrides(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "environment:\n  dry_run: false\n  store_backend: supabase\ncollaborators:\n  broker_mode: http"
        )

        config = load_config_with_overrides(
            config_file, dry_run=True, store_backend="memory", broker_mode="SIM"
        )

        assert config.is_dry_run is True
        assert config.environment.store_backend == StoreBackend.MEMORY
        assert config.collaborators.broker_mode == BrokerMode.SIM

    def test_no_overrides_returns_loaded(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("environment:\n  dry_run: false")

        config = load_config_with_overrides(config_file)

        assert config.is_dry_run is False


class TestConfigValidation:
    def test_non_positive_concurrency(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("trading:\n  project_concurrency: 0")

        with pytest.raises(ValueError, match="Concurrency must be positive"):
            load_config(config_file)

    def test_non_positive_timeout(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("collaborators:\n  timeout_seconds: 0")

        with pytest.raises(ValueError, match="Timeout must be positive"):
            load_config(config_file)

    def test_unknown_store_backend(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("environment:\n  store_backend: mysql")

        with pytest.raises(ValueError):
            load_config(config_file)
