"""Job chains — validation, cycle detection and downstream firing.

A chain is a list of cronIds run after a job succeeds. The completed job's
persisted state is forwarded to each downstream record before it runs.
Cycles are rejected when a chain is configured, never at run time.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from cronbot.core.cron.run_stats import RunStatsStore
from cronbot.core.cron.types import CronConfigError


def parse_chain(
    chain: str, store: RunStatsStore, self_cron_id: str | None = None
) -> list[str]:
    """Parse a comma-separated chain and check every entry.

    An empty string is a valid "clear" request and returns ``[]``.
    Raises CronConfigError.
    """
    if chain == "":
        return []
    ids = [part.strip() for part in chain.split(",") if part.strip()]
    if not ids:
        raise CronConfigError("chain requires at least one cronId if provided")

    missing = [cron_id for cron_id in ids if store.get_record(cron_id) is None]
    if missing:
        raise CronConfigError(f"chain contains unknown cronIds: {', '.join(missing)}")

    if self_cron_id and self_cron_id in ids:
        raise CronConfigError("chain cannot reference itself")
    return ids


def would_create_cycle(cron_id: str, downstream: list[str], store: RunStatsStore) -> bool:
    """True if ``cron_id`` is reachable from ``downstream`` via persisted chains."""
    visited: set[str] = set()
    queue = deque(downstream)
    while queue:
        current = queue.popleft()
        if current == cron_id:
            return True
        if current in visited:
            continue
        visited.add(current)
        rec = store.get_record(current)
        if rec is not None and rec.chain:
            queue.extend(nxt for nxt in rec.chain if nxt not in visited)
    return False


def validate_chain(
    chain: str, store: RunStatsStore, self_cron_id: str | None = None
) -> list[str]:
    """Parse the chain and, for an existing job, reject cycles.

    Raises CronConfigError; nothing is persisted here.
    """
    ids = parse_chain(chain, store, self_cron_id)
    if ids and self_cron_id and would_create_cycle(self_cron_id, ids, store):
        raise CronConfigError("chain would create a cycle")
    return ids


async def fire_downstream(
    completed_cron_id: str,
    downstream: list[str],
    state: dict[str, Any] | None,
    store: RunStatsStore,
    execute: Callable[[str], Awaitable[Any]],
) -> list[str]:
    """Forward state and run each downstream job in order.

    A failure in one downstream job does not stop the others.
    Returns the cronIds that ran.
    """
    fired: list[str] = []
    for target in downstream:
        record = store.get_record(target)
        if record is None:
            logger.warning(f"chain:downstream {target} of {completed_cron_id} not found, skipping")
            continue

        if state:
            try:
                await store.upsert_record(target, record.job_key, {"state": dict(state)})
                logger.info(f"chain:state forwarded {completed_cron_id} → {target}")
            except Exception as e:
                logger.warning(
                    f"chain:state forward to {target} failed ({e}), executing without it"
                )

        try:
            await execute(target)
        except Exception as e:
            logger.warning(f"chain:downstream {target} execution failed: {e}")
            continue
        fired.append(target)
        logger.info(f"chain:downstream fired {completed_cron_id} → {target}")
    return fired
