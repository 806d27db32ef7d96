"""Tests for cronbot.core.cron.trigger and timezone defaults."""

from datetime import datetime, timezone

import pytest

from cronbot.core.cron.timezone import get_default_timezone
from cronbot.core.cron.trigger import (
    _translate_dow,
    build_trigger,
    is_valid_timezone,
    validate_definition,
)
from cronbot.core.cron.types import CronConfigError, JobDefinition


def _defn(**kwargs) -> JobDefinition:
    base = {"schedule": "0 9 * * *", "timezone": "UTC", "channel": "general", "prompt": "hi"}
    base.update(kwargs)
    return JobDefinition(**base)


# ── Day-of-week translation ─────────────────────────────────


def test_translate_dow_numbers_to_names():
    assert _translate_dow("0") == "sun"
    assert _translate_dow("7") == "sun"
    assert _translate_dow("1-5") == "mon,tue,wed,thu,fri"
    assert _translate_dow("0,7") == "sun"
    assert _translate_dow("*/2") == "sun,tue,thu,sat"


def test_translate_dow_passthrough():
    assert _translate_dow("*") == "*"
    assert _translate_dow("mon-fri") == "mon-fri"


def test_translate_dow_out_of_range():
    with pytest.raises(ValueError):
        _translate_dow("8")


def test_build_trigger_monday_is_crontab_one():
    """``1`` in crontab is Monday, not Tuesday."""
    trigger = build_trigger("0 9 * * 1", "UTC")
    # 2026-01-03 is a Saturday
    now = datetime(2026, 1, 3, 12, 0, tzinfo=timezone.utc)
    nxt = trigger.get_next_fire_time(None, now)
    assert nxt.weekday() == 0
    assert (nxt.day, nxt.hour, nxt.minute) == (5, 9, 0)


def test_build_trigger_wrong_field_count():
    with pytest.raises(ValueError, match="expected 5 cron fields"):
        build_trigger("0 9 * *")


# ── Validation ──────────────────────────────────────────────


def test_is_valid_timezone():
    assert is_valid_timezone("Europe/Istanbul")
    assert is_valid_timezone("UTC")
    assert not is_valid_timezone("Mars/Olympus")
    assert not is_valid_timezone("")


def test_validate_definition_ok():
    validate_definition(_defn())


def test_validate_requires_timezone():
    with pytest.raises(CronConfigError, match="timezone is required"):
        validate_definition(_defn(timezone=" "))


def test_validate_rejects_invalid_timezone():
    with pytest.raises(CronConfigError, match='invalid timezone "Mars/Olympus"'):
        validate_definition(_defn(timezone="Mars/Olympus"))


def test_validate_requires_schedule():
    with pytest.raises(CronConfigError, match="schedule is required"):
        validate_definition(_defn(schedule=""))


def test_validate_rejects_bad_schedule():
    with pytest.raises(CronConfigError):
        validate_definition(_defn(schedule="61 * * * *"))


def test_webhook_trigger_needs_no_schedule():
    validate_definition(_defn(schedule="", trigger_type="webhook"))


# ── Default timezone ────────────────────────────────────────


def test_default_timezone_prefers_configured(monkeypatch):
    monkeypatch.setenv("DEFAULT_TIMEZONE", "Asia/Tokyo")
    assert get_default_timezone("Europe/Istanbul") == "Europe/Istanbul"


def test_default_timezone_env(monkeypatch):
    monkeypatch.setenv("DEFAULT_TIMEZONE", "Asia/Tokyo")
    assert get_default_timezone() == "Asia/Tokyo"


def test_default_timezone_invalid_falls_back(monkeypatch):
    monkeypatch.setenv("DEFAULT_TIMEZONE", "Not/AZone")
    monkeypatch.setenv("TZ", "America/New_York")
    assert get_default_timezone("Also/Bad") == "America/New_York"
