"""Tests for RunControl cancellation registry."""

import pytest

from cronbot.core.cron.run_control import RunControl


def test_request_cancel_without_run():
    rc = RunControl()
    assert rc.request_cancel("j1") is False


def test_request_cancel_signals_token():
    rc = RunControl()
    token = rc.register("j1")
    assert rc.request_cancel("j1") is True
    assert token.cancelled


def test_repeat_cancel_is_idempotent():
    rc = RunControl()
    token = rc.register("j1")
    assert rc.request_cancel("j1") is True
    assert rc.request_cancel("j1") is True
    assert token.cancelled
    assert token.cancel() is False


def test_unregister_ignores_stale_token():
    """A finished run must not remove a newer run's token."""
    rc = RunControl()
    old = rc.register("j1")
    new = rc.register("j1")
    rc.unregister("j1", old)
    assert rc.has("j1")
    rc.unregister("j1", new)
    assert not rc.has("j1")
    assert rc.request_cancel("j1") is False


def test_instances_are_independent():
    a, b = RunControl(), RunControl()
    a.register("j1")
    assert b.request_cancel("j1") is False


def test_cancel_all():
    rc = RunControl()
    t1, t2 = rc.register("j1"), rc.register("j2")
    assert rc.cancel_all() == 2
    assert t1.cancelled and t2.cancelled
    assert rc.cancel_all() == 0


@pytest.mark.asyncio
async def test_wait_returns_after_cancel():
    rc = RunControl()
    token = rc.register("j1")
    rc.request_cancel("j1")
    await token.wait()
    assert token.cancelled
