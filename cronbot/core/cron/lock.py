"""Directory-based, PID-aware execution lock keyed by cronId.

Layout: ``<lock_dir>/<sanitized-cronId>.lock/meta.json`` holding
``{"pid": int, "token": str, "acquiredAt": iso8601}``.

``mkdir`` is the test-and-set primitive. A lock whose owner pid is no longer
alive is reclaimed once; a live owner means the caller must skip the run and
leave the directory untouched. Single host, single filesystem only.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
import secrets
import shutil
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger

META_FILE = "meta.json"
# A lock dir with no readable meta.json younger than this is treated as
# mid-acquisition by another process (mkdir done, meta not yet written).
META_GRACE_S = 30.0

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_cron_id(cron_id: str) -> str:
    """Filesystem-safe form of a cronId."""
    safe = _UNSAFE.sub("_", cron_id).strip(".")
    return safe or "_"


def pid_alive(pid: int) -> bool:
    """Signal-0 liveness probe."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True  # exists, owned by another user
    return True


@dataclass
class LockLease:
    """A held lock. Pass ``token`` back to release."""

    cron_id: str
    token: str
    path: Path
    lock: ExecutionLock

    async def release(self) -> bool:
        return await self.lock.release(self.cron_id, self.token)


class ExecutionLock:
    """Cross-process mutex rooted at ``lock_dir``."""

    def __init__(self, lock_dir: str | Path, *, meta_grace_s: float = META_GRACE_S):
        self.lock_dir = Path(lock_dir)
        self.meta_grace_s = meta_grace_s

    def lock_path(self, cron_id: str) -> Path:
        return self.lock_dir / f"{sanitize_cron_id(cron_id)}.lock"

    async def acquire(self, cron_id: str) -> LockLease | None:
        """Acquire the lock, or return None when a live process holds it.

        Filesystem errors propagate.
        """
        return await asyncio.to_thread(self.acquire_sync, cron_id)

    async def release(self, cron_id: str, token: str) -> bool:
        """Remove the lock dir only if its on-disk token still matches."""
        return await asyncio.to_thread(self.release_sync, cron_id, token)

    # ------------------------------------------------------------------
    # Sync implementation (runs in a worker thread)
    # ------------------------------------------------------------------

    def acquire_sync(self, cron_id: str) -> LockLease | None:
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        path = self.lock_path(cron_id)

        lease = self._try_create(cron_id, path)
        if lease is not None:
            return lease

        if not self._is_stale(path):
            logger.debug(f"cron:lock held {cron_id}")
            return None

        logger.warning(f"cron:lock reclaiming stale lock {path}")
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            pass  # another process reclaimed it first
        return self._try_create(cron_id, path)

    def release_sync(self, cron_id: str, token: str) -> bool:
        path = self.lock_path(cron_id)
        meta = self.read_meta(path)
        if meta is None:
            logger.warning(f"cron:lock release found no lock for {cron_id}")
            return False
        if meta.get("token") != token:
            logger.warning(f"cron:lock token mismatch for {cron_id}, not releasing")
            return False
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            return False
        return True

    def read_meta(self, path: Path) -> dict[str, Any] | None:
        try:
            data = json.loads((path / META_FILE).read_text(encoding="utf-8"))
        except (FileNotFoundError, NotADirectoryError, json.JSONDecodeError, UnicodeDecodeError):
            return None
        return data if isinstance(data, dict) else None

    def _try_create(self, cron_id: str, path: Path) -> LockLease | None:
        try:
            path.mkdir()
        except FileExistsError:
            return None

        token = secrets.token_hex(16)
        meta = {
            "pid": os.getpid(),
            "token": token,
            "acquiredAt": datetime.now(timezone.utc).isoformat(),
        }
        tmp = path / f".{META_FILE}.{os.getpid()}.tmp"
        try:
            tmp.write_text(json.dumps(meta), encoding="utf-8")
            os.replace(tmp, path / META_FILE)
        except OSError:
            shutil.rmtree(path, ignore_errors=True)
            raise
        return LockLease(cron_id=cron_id, token=token, path=path, lock=self)

    def _is_stale(self, path: Path) -> bool:
        meta = self.read_meta(path)
        if meta is None:
            try:
                age = time.time() - path.stat().st_mtime
            except FileNotFoundError:
                return True
            return age > self.meta_grace_s

        pid = meta.get("pid")
        if not isinstance(pid, int):
            return True
        return not pid_alive(pid)
