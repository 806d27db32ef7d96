"""Tests for job chains — validation, cycles and downstream firing."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from cronbot.core.cron.chain import (
    fire_downstream,
    parse_chain,
    validate_chain,
    would_create_cycle,
)
from cronbot.core.cron.run_stats import RunRecord, RunStatsStore
from cronbot.core.cron.types import CronConfigError


@pytest.fixture
def store(tmp_path):
    jobs = {
        cron_id: RunRecord(cron_id=cron_id, job_key=key)
        for cron_id, key in (("cron-a", "ja"), ("cron-b", "jb"), ("cron-c", "jc"))
    }
    return RunStatsStore(tmp_path / "run-stats.json", jobs)


# ── Parsing ─────────────────────────────────────────────────


def test_parse_chain(store):
    assert parse_chain("cron-b, cron-c", store) == ["cron-b", "cron-c"]


def test_empty_string_clears(store):
    assert parse_chain("", store) == []


def test_only_separators_rejected(store):
    with pytest.raises(CronConfigError, match="at least one cronId"):
        parse_chain(" , ", store)


def test_unknown_ids_rejected(store):
    with pytest.raises(CronConfigError, match="unknown cronIds: cron-x, cron-y"):
        parse_chain("cron-b,cron-x,cron-y", store)


def test_self_reference_rejected(store):
    with pytest.raises(CronConfigError, match="cannot reference itself"):
        parse_chain("cron-a", store, self_cron_id="cron-a")


# ── Cycles ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_cycle_detection(store):
    await store.upsert_record("cron-b", "jb", {"chain": ["cron-c"]})
    await store.upsert_record("cron-c", "jc", {"chain": ["cron-a"]})

    assert would_create_cycle("cron-a", ["cron-b"], store) is True
    with pytest.raises(CronConfigError, match="would create a cycle"):
        validate_chain("cron-b", store, self_cron_id="cron-a")


@pytest.mark.asyncio
async def test_no_cycle(store):
    await store.upsert_record("cron-b", "jb", {"chain": ["cron-c"]})
    assert would_create_cycle("cron-a", ["cron-b"], store) is False
    assert validate_chain("cron-b", store, self_cron_id="cron-a") == ["cron-b"]


@pytest.mark.asyncio
async def test_cycle_walk_terminates_on_existing_loop(store):
    """An unrelated loop b → c → b must not hang the walk."""
    await store.upsert_record("cron-b", "jb", {"chain": ["cron-c"]})
    await store.upsert_record("cron-c", "jc", {"chain": ["cron-b"]})
    assert would_create_cycle("cron-a", ["cron-b"], store) is False


# ── Firing ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_fire_forwards_state_before_execute(store):
    seen_state = {}

    async def execute(cron_id):
        seen_state[cron_id] = store.get_record(cron_id).state

    fired = await fire_downstream("cron-a", ["cron-b", "cron-c"], {"k": 1}, store, execute)

    assert fired == ["cron-b", "cron-c"]
    assert seen_state == {"cron-b": {"k": 1}, "cron-c": {"k": 1}}


@pytest.mark.asyncio
async def test_fire_without_state_leaves_downstream_state(store):
    await store.upsert_record("cron-b", "jb", {"state": {"own": True}})
    execute = AsyncMock()
    await fire_downstream("cron-a", ["cron-b"], None, store, execute)
    assert store.get_record("cron-b").state == {"own": True}
    execute.assert_awaited_once_with("cron-b")


@pytest.mark.asyncio
async def test_fire_continues_after_failure(store):
    execute = AsyncMock(side_effect=[RuntimeError("boom"), "success"])
    fired = await fire_downstream("cron-a", ["cron-b", "cron-c"], None, store, execute)
    assert fired == ["cron-c"]
    assert execute.await_count == 2


@pytest.mark.asyncio
async def test_fire_skips_deleted_downstream(store):
    execute = AsyncMock()
    fired = await fire_downstream("cron-a", ["cron-gone", "cron-b"], None, store, execute)
    assert fired == ["cron-b"]
    execute.assert_awaited_once_with("cron-b")
