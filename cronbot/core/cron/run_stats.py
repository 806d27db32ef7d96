"""Durable per-job run history, one JSON file keyed by cronId.

File shape::

    {"version": 1, "updatedAt": <epoch ms>, "jobs": {"cron-1a2b3c4d": {...}}}

``record_run_start`` persists ``lastRunStatus = "running"`` before the
runtime is invoked, so a crash mid-run stays visible on the next load.
All mutations are serialized by one asyncio lock and written atomically
(temp file + rename).
"""

from __future__ import annotations

import asyncio
import json
import os
import secrets
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from cronbot.core.cron.types import CadenceTag, RoutingMode, RunStatus, TriggerType

STORE_VERSION = 1
ERROR_MESSAGE_LIMIT = 200


def generate_cron_id() -> str:
    """Stable public identifier, e.g. ``cron-1a2b3c4d``."""
    return f"cron-{secrets.token_hex(4)}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RunRecord(BaseModel):
    """Persisted state of one job (camelCase on disk)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    cron_id: str
    job_key: str = ""
    guild_id: str = ""
    name: str = ""
    trigger_type: TriggerType = "schedule"

    cadence: CadenceTag | None = None
    purpose_tags: list[str] = Field(default_factory=list)
    model: str | None = None
    model_override: str | None = None

    schedule: str | None = None
    timezone: str | None = None
    channel: str | None = None
    prompt: str | None = None

    run_count: int = 0
    last_run_status: RunStatus = "pending"
    last_run_at: str | None = None
    last_error_message: str | None = None

    disabled: bool = False
    silent: bool = False
    routing_mode: RoutingMode | None = None
    allowed_actions: list[str] | None = None
    chain: list[str] | None = None
    state: dict[str, Any] | None = None
    prompt_message_id: str | None = None
    created_at: str = Field(default_factory=_now_iso)

    @property
    def effective_model(self) -> str | None:
        return self.model_override or self.model

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


_FIELDS = frozenset(RunRecord.model_fields)


class RunStatsStore:
    """In-memory view of the stats file with serialized, durable writes."""

    def __init__(self, path: str | Path, jobs: dict[str, RunRecord] | None = None):
        self.path = Path(path)
        self._jobs: dict[str, RunRecord] = dict(jobs or {})
        self._updated_at = int(time.time() * 1000)
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get_record(self, cron_id: str) -> RunRecord | None:
        return self._jobs.get(cron_id)

    def list_records(self) -> list[RunRecord]:
        return list(self._jobs.values())

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def upsert_record(
        self,
        cron_id: str,
        job_key: str,
        updates: dict[str, Any] | None = None,
        *,
        check: Callable[[], Any] | None = None,
    ) -> RunRecord:
        """Create the record if absent, else merge ``updates`` into it.

        A ``None`` value clears an optional field. ``check`` runs under the
        write lock before anything changes; if it raises, nothing is written.
        """
        updates = dict(updates or {})
        unknown = set(updates) - _FIELDS
        if unknown:
            raise ValueError(f"unknown run record fields: {', '.join(sorted(unknown))}")

        async with self._write_lock:
            if check is not None:
                check()
            existing = self._jobs.get(cron_id)
            base = existing.model_dump() if existing else {"cron_id": cron_id}
            base.update(updates)
            base["cron_id"] = cron_id
            base["job_key"] = job_key
            record = RunRecord.model_validate(base)
            self._jobs[cron_id] = record
            await self._flush()
        return record

    async def record_run_start(self, cron_id: str) -> None:
        """Write-ahead marker: durable before the runtime call begins."""
        async with self._write_lock:
            rec = self._jobs.get(cron_id)
            if rec is None:
                return
            self._jobs[cron_id] = rec.model_copy(update={"last_run_status": "running"})
            await self._flush()

    async def record_run(
        self, cron_id: str, status: RunStatus, error_message: str | None = None
    ) -> None:
        """Record a terminal status (success, error or canceled)."""
        if status not in ("success", "error", "canceled"):
            raise ValueError(f"not a terminal run status: {status}")
        async with self._write_lock:
            rec = self._jobs.get(cron_id)
            if rec is None:
                return
            message = None
            if status == "error" and error_message:
                message = error_message[:ERROR_MESSAGE_LIMIT]
            self._jobs[cron_id] = rec.model_copy(
                update={
                    "run_count": rec.run_count + 1,
                    "last_run_at": _now_iso(),
                    "last_run_status": status,
                    "last_error_message": message,
                }
            )
            await self._flush()

    async def remove_record(self, cron_id: str) -> bool:
        async with self._write_lock:
            if cron_id not in self._jobs:
                return False
            del self._jobs[cron_id]
            await self._flush()
        return True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        return {
            "version": STORE_VERSION,
            "updatedAt": self._updated_at,
            "jobs": {cron_id: rec.to_json() for cron_id, rec in self._jobs.items()},
        }

    async def _flush(self) -> None:
        self._updated_at = int(time.time() * 1000)
        await asyncio.to_thread(_write_atomic, self.path, self.snapshot())


def _write_atomic(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f"{path.name}.tmp.{os.getpid()}")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.write("\n")
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


def load_run_stats(path: str | Path) -> RunStatsStore:
    """Open the stats file. Missing or malformed content yields an empty store."""
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return RunStatsStore(path)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Run stats file {path} unreadable ({e}), starting empty")
        return RunStatsStore(path)

    if not isinstance(raw, dict) or not isinstance(raw.get("jobs"), dict):
        logger.warning(f"Run stats file {path} has unexpected shape, starting empty")
        return RunStatsStore(path)

    jobs: dict[str, RunRecord] = {}
    for cron_id, payload in raw["jobs"].items():
        try:
            jobs[cron_id] = RunRecord.model_validate({**payload, "cronId": cron_id})
        except (ValidationError, TypeError) as e:
            logger.warning(f"Skipping malformed run record {cron_id}: {e}")
    return RunStatsStore(path, jobs)
