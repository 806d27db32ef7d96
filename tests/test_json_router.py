"""Tests for JSON multi-channel routing of cron output."""

from __future__ import annotations

import json

import pytest

from cronbot.core.channels.base import PostableChannel
from cronbot.core.cron.json_router import (
    RouteEntry,
    handle_json_route_output,
    parse_json_route_entries,
)


class RecordingChannel(PostableChannel):
    def __init__(self, id, name, fail=False):
        self.id = id
        self.name = name
        self.parent_id = None
        self.max_length = 2000
        self.fail = fail
        self.sent = []

    async def send(self, content, images=None):
        if self.fail:
            raise RuntimeError("missing permissions")
        self.sent.append(content)
        return None


@pytest.fixture
def channels():
    return {
        "default": RecordingChannel("c1", "default"),
        "alerts": RecordingChannel("c2", "alerts"),
        "ops": RecordingChannel("c3", "ops"),
        "broken": RecordingChannel("c4", "broken", fail=True),
    }


@pytest.fixture
def lookup(channels):
    async def _lookup(ref):
        return channels.get(ref)

    return _lookup


# ── Parsing ─────────────────────────────────────────────────


def test_parse_plain_array():
    entries = parse_json_route_entries('[{"channel": "alerts", "content": "hi"}]')
    assert entries == [RouteEntry(channel="alerts", content="hi")]


def test_parse_strips_code_fence():
    output = '```json\n[{"channel": "ops", "content": "deploy done"}]\n```'
    assert parse_json_route_entries(output) == [RouteEntry(channel="ops", content="deploy done")]


def test_parse_drops_malformed_entries():
    output = json.dumps([
        {"channel": "alerts", "content": "kept"},
        {"channel": "alerts"},
        {"channel": 5, "content": "bad channel"},
        "not an object",
    ])
    assert parse_json_route_entries(output) == [RouteEntry(channel="alerts", content="kept")]


@pytest.mark.parametrize("output", ["", "   ", "not json", '{"channel": "a", "content": "b"}', "```\n```"])
def test_parse_rejects_non_arrays(output):
    assert parse_json_route_entries(output) is None


def test_parse_empty_array():
    assert parse_json_route_entries("[]") == []


# ── Routing ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_routes_each_entry(channels, lookup):
    output = json.dumps([
        {"channel": "alerts", "content": "cpu high"},
        {"channel": "ops", "content": "scale up"},
        {"channel": "alerts", "content": "cpu normal"},
    ])
    result = await handle_json_route_output(output, lookup, channels["default"])

    assert result.routed_count == 3
    assert result.used_fallback is False
    assert channels["alerts"].sent == ["cpu high", "cpu normal"]
    assert channels["ops"].sent == ["scale up"]
    assert channels["default"].sent == []


@pytest.mark.asyncio
async def test_unknown_and_failing_channels_are_skipped(channels, lookup):
    output = json.dumps([
        {"channel": "nowhere", "content": "dropped"},
        {"channel": "broken", "content": "dropped"},
        {"channel": "ops", "content": "delivered"},
    ])
    result = await handle_json_route_output(output, lookup, channels["default"])

    assert result.routed_count == 1
    assert result.used_fallback is False
    assert channels["ops"].sent == ["delivered"]
    assert channels["default"].sent == []


@pytest.mark.asyncio
async def test_parse_failure_posts_raw_output_to_default(channels, lookup):
    result = await handle_json_route_output("Here is your summary.", lookup, channels["default"])

    assert result.used_fallback is True
    assert result.routed_count == 0
    assert channels["default"].sent == ["Here is your summary."]


@pytest.mark.asyncio
async def test_all_entries_failed_posts_raw_output_to_default(channels, lookup):
    output = json.dumps([{"channel": "broken", "content": "x"}, {"channel": "nowhere", "content": "y"}])
    result = await handle_json_route_output(output, lookup, channels["default"])

    assert result.used_fallback is True
    assert channels["default"].sent == [output]


@pytest.mark.asyncio
async def test_empty_array_posts_nothing(channels, lookup):
    result = await handle_json_route_output("[]", lookup, channels["default"])

    assert result.routed_count == 0
    assert result.used_fallback is False
    assert all(c.sent == [] for c in channels.values())
