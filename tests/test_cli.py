"""Tests for cronbot.cli."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yaml
from rich.console import Console
from typer.testing import CliRunner

from cronbot import __version__
from cronbot.cli import commands
from cronbot.cli.commands import app
from cronbot.core.cron.run_stats import load_run_stats

runner = CliRunner()

_PATCH_SERVICE = "cronbot.core.cron.service.CronService"


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    monkeypatch.setattr(commands, "console", Console(width=200))


@pytest.fixture
def stats_path(tmp_path):
    path = tmp_path / "run-stats.json"
    jobs = {
        "cron-a": {"jobKey": "k1", "name": "Daily", "schedule": "0 9 * * *", "cadence": "daily",
                   "model": "fast", "runCount": 3, "lastRunStatus": "success",
                   "state": {"seen": 2}},
        "cron-b": {"jobKey": "k2", "name": "Hourly", "schedule": "0 * * * *", "disabled": True,
                   "lastRunStatus": "error", "lastErrorMessage": "boom"},
    }
    path.write_text(json.dumps({"version": 1, "updatedAt": 0, "jobs": jobs}))
    return path


@pytest.fixture
def config_file(tmp_path, stats_path):
    f = tmp_path / "config.yaml"
    f.write_text(yaml.dump({
        "discord": {"token": "tok"},
        "cron": {"stats_path": str(stats_path), "lock_dir": ""},
        "assistant": {"model": "openai/gpt-4o"},
    }))
    return str(f)


def test_cli_help():
    """--help works and shows command names."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "run" in result.output
    assert "status" in result.output
    assert "cron" in result.output


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"cronbot v{__version__}" in result.output


def test_status_output(config_file):
    result = runner.invoke(app, ["status", "-c", config_file])
    assert result.exit_code == 0
    assert "openai/gpt-4o" in result.output
    assert "disabled" in result.output  # lock dir
    assert "Jobs" in result.output


def test_cron_list(config_file):
    result = runner.invoke(app, ["cron", "list", "-c", config_file])
    assert result.exit_code == 0
    assert "cron-a" in result.output
    assert "Daily" in result.output
    assert "paused" in result.output


def test_cron_list_empty(tmp_path):
    f = tmp_path / "config.yaml"
    f.write_text(yaml.dump({"cron": {"stats_path": str(tmp_path / "none.json")}}))
    result = runner.invoke(app, ["cron", "list", "-c", str(f)])
    assert result.exit_code == 0
    assert "No cron jobs found." in result.output


def test_cron_show(config_file):
    result = runner.invoke(app, ["cron", "show", "cron-a", "-c", config_file])
    assert result.exit_code == 0
    assert "runCount" in result.output
    assert '{"seen": 2}' in result.output


def test_cron_show_missing(config_file):
    result = runner.invoke(app, ["cron", "show", "cron-zz", "-c", config_file])
    assert result.exit_code == 1
    assert "Cron not found:" in result.output


def test_cron_pause_and_resume(config_file, stats_path):
    result = runner.invoke(app, ["cron", "pause", "cron-a", "-c", config_file])
    assert result.exit_code == 0
    assert "Paused cron job:" in result.output
    assert load_run_stats(stats_path).get_record("cron-a").disabled is True

    result = runner.invoke(app, ["cron", "resume", "cron-b", "-c", config_file])
    assert result.exit_code == 0
    rec = load_run_stats(stats_path).get_record("cron-b")
    assert rec.disabled is False
    assert rec.job_key == "k2"


def test_cron_pause_missing(config_file):
    result = runner.invoke(app, ["cron", "pause", "cron-zz", "-c", config_file])
    assert result.exit_code == 1


def test_cron_remove(config_file, stats_path):
    result = runner.invoke(app, ["cron", "remove", "cron-b", "-c", config_file])
    assert result.exit_code == 0
    assert "Removed cron job:" in result.output
    assert load_run_stats(stats_path).get_record("cron-b") is None

    result = runner.invoke(app, ["cron", "remove", "cron-b", "-c", config_file])
    assert result.exit_code == 1


def test_cron_cadence():
    result = runner.invoke(app, ["cron", "cadence", "0 9 * * 1-5"])
    assert result.exit_code == 0
    assert "weekly" in result.output


def test_run_requires_token(tmp_path):
    f = tmp_path / "config.yaml"
    f.write_text(yaml.dump({"cron": {"stats_path": str(tmp_path / "s.json")}}))
    result = runner.invoke(app, ["run", "-c", str(f)], env={"CRONBOT_DISCORD__TOKEN": ""})
    assert result.exit_code == 1
    assert "discord.token is not set" in result.output


def test_run_disabled(config_file, tmp_path):
    f = tmp_path / "off.yaml"
    f.write_text(yaml.dump({"cron": {"enabled": False}}))
    result = runner.invoke(app, ["run", "-c", str(f)])
    assert result.exit_code == 1
    assert "Cron is disabled" in result.output


def test_run_starts_service(config_file):
    service = MagicMock()
    service.run_forever = AsyncMock()
    with patch(_PATCH_SERVICE, return_value=service) as mock_cls:
        result = runner.invoke(app, ["run", "-c", config_file])

    assert result.exit_code == 0
    mock_cls.assert_called_once()
    service.run_forever.assert_awaited_once()
