"""Tests for the durable run stats store."""

from __future__ import annotations

import json

import pytest

from cronbot.core.cron.run_stats import (
    ERROR_MESSAGE_LIMIT,
    RunRecord,
    RunStatsStore,
    generate_cron_id,
    load_run_stats,
)


@pytest.fixture
def path(tmp_path):
    return tmp_path / "cron" / "run-stats.json"


@pytest.fixture
def store(path):
    return RunStatsStore(path)


def _on_disk(path) -> dict:
    return json.loads(path.read_text())


def test_generate_cron_id():
    cron_id = generate_cron_id()
    assert cron_id.startswith("cron-")
    assert len(cron_id) == len("cron-") + 8
    assert generate_cron_id() != cron_id


@pytest.mark.asyncio
async def test_upsert_creates_and_persists_camel_case(store, path):
    await store.upsert_record(
        "cron-a", "j1", {"name": "Daily", "allowed_actions": ["sendMessage"], "routing_mode": "json"}
    )

    data = _on_disk(path)
    assert data["version"] == 1
    assert isinstance(data["updatedAt"], int)
    rec = data["jobs"]["cron-a"]
    assert rec["cronId"] == "cron-a"
    assert rec["jobKey"] == "j1"
    assert rec["allowedActions"] == ["sendMessage"]
    assert rec["routingMode"] == "json"
    assert rec["lastRunStatus"] == "pending"
    assert rec["runCount"] == 0


@pytest.mark.asyncio
async def test_upsert_merges_and_none_clears(store):
    await store.upsert_record("cron-a", "j1", {"allowed_actions": ["sendMessage"], "silent": True})
    rec = await store.upsert_record("cron-a", "j1", {"allowed_actions": None})
    assert rec.allowed_actions is None
    assert rec.silent is True


@pytest.mark.asyncio
async def test_upsert_rejects_unknown_fields(store):
    with pytest.raises(ValueError, match="unknown run record fields"):
        await store.upsert_record("cron-a", "j1", {"bogus": 1})
    assert store.get_record("cron-a") is None


@pytest.mark.asyncio
async def test_record_run_start_is_durable(store, path):
    await store.upsert_record("cron-a", "j1")
    await store.record_run_start("cron-a")
    assert _on_disk(path)["jobs"]["cron-a"]["lastRunStatus"] == "running"
    # run_count only moves on terminal status
    assert store.get_record("cron-a").run_count == 0


@pytest.mark.asyncio
async def test_record_run_terminal_statuses(store):
    await store.upsert_record("cron-a", "j1")
    await store.record_run("cron-a", "success")
    await store.record_run("cron-a", "canceled")
    rec = store.get_record("cron-a")
    assert rec.run_count == 2
    assert rec.last_run_status == "canceled"
    assert rec.last_run_at is not None
    assert rec.last_error_message is None


@pytest.mark.asyncio
async def test_record_run_error_truncates_message(store):
    await store.upsert_record("cron-a", "j1")
    await store.record_run("cron-a", "error", "x" * 500)
    rec = store.get_record("cron-a")
    assert rec.last_run_status == "error"
    assert len(rec.last_error_message) == ERROR_MESSAGE_LIMIT

    await store.record_run("cron-a", "success")
    assert store.get_record("cron-a").last_error_message is None


@pytest.mark.asyncio
async def test_record_run_rejects_non_terminal(store):
    await store.upsert_record("cron-a", "j1")
    with pytest.raises(ValueError):
        await store.record_run("cron-a", "running")


@pytest.mark.asyncio
async def test_record_run_unknown_id_is_noop(store, path):
    await store.record_run("cron-missing", "success")
    assert not path.exists()


@pytest.mark.asyncio
async def test_remove_record(store):
    await store.upsert_record("cron-a", "j1")
    assert await store.remove_record("cron-a") is True
    assert await store.remove_record("cron-a") is False
    assert store.get_record("cron-a") is None


@pytest.mark.asyncio
async def test_load_restores_records(store, path):
    await store.upsert_record("cron-a", "j1", {"name": "Daily", "state": {"n": 1}, "chain": ["cron-b"]})
    await store.record_run("cron-a", "success")

    loaded = load_run_stats(path)
    rec = loaded.get_record("cron-a")
    assert rec.name == "Daily"
    assert rec.state == {"n": 1}
    assert rec.chain == ["cron-b"]
    assert rec.run_count == 1
    assert rec.job_key == "j1"


def test_load_missing_file(path):
    assert load_run_stats(path).list_records() == []


def test_load_malformed_file(path):
    path.parent.mkdir(parents=True)
    path.write_text("{not json")
    assert load_run_stats(path).list_records() == []


def test_load_skips_bad_records(path):
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps({
        "version": 1,
        "jobs": {
            "cron-ok": {"jobKey": "j1"},
            "cron-bad": {"runCount": "many"},
        },
    }))
    loaded = load_run_stats(path)
    assert [r.cron_id for r in loaded.list_records()] == ["cron-ok"]


def test_effective_model_prefers_override():
    rec = RunRecord(cron_id="cron-a", model="fast", model_override="capable")
    assert rec.effective_model == "capable"
    assert RunRecord(cron_id="cron-b", model="fast").effective_model == "fast"
