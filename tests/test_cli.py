"""Tests for the command line interface."""

from pathlib import Path

import pytest
from click.testing import CliRunner

from autobiz.cli import cli

CONFIG_YAML = """
environment:
  dry_run: true
  store_backend: memory
  log_level: WARNING
collaborators:
  broker_mode: sim
trading:
  broker_exchanges: [alpaca]
"""


@pytest.fixture
def config_file(tmp_path: Path) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML)
    return str(path)


def test_smoke_test(config_file: str) -> None:
    result = CliRunner().invoke(cli, ["smoke-test", "--config", config_file])

    assert result.exit_code == 0
    assert "Smoke test passed" in result.output


def test_tick_without_projects(config_file: str) -> None:
    result = CliRunner().invoke(cli, ["tick", "--config", config_file])

    assert result.exit_code == 0
    assert "No autonomous projects found" in result.output


def test_missing_project_exits_nonzero(config_file: str) -> None:
    result = CliRunner().invoke(cli, ["phase", "progress", "missing", "--config", config_file])

    assert result.exit_code == 1


def test_missing_config_file(tmp_path: Path) -> None:
    result = CliRunner().invoke(cli, ["tick", "--config", str(tmp_path / "absent.yaml")])

    assert result.exit_code == 2
