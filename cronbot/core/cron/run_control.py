"""RunControl — cooperative cancellation for in-flight cron runs."""

from __future__ import annotations

import asyncio

from loguru import logger


class CancelToken:
    """Advisory cancellation signal threaded into the runtime invocation.

    The runtime checks ``cancelled`` between streamed events; nothing is
    forcibly interrupted.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        """Set the signal. Returns False if it was already set."""
        if self._event.is_set():
            return False
        self._event.set()
        return True

    async def wait(self) -> None:
        await self._event.wait()


class RunControl:
    """Maps job id → CancelToken for the lifetime of one executor run.

    Instantiated and injected by the owner (no module-level registry), so
    independent instances never share state.
    """

    def __init__(self) -> None:
        self._tokens: dict[str, CancelToken] = {}

    def register(self, job_id: str) -> CancelToken:
        token = CancelToken()
        self._tokens[job_id] = token
        return token

    def request_cancel(self, job_id: str) -> bool:
        """Signal the in-flight run for ``job_id``.

        True while a run is registered (repeat calls are harmless and do not
        re-fire the signal); False when nothing is in flight.
        """
        token = self._tokens.get(job_id)
        if token is None:
            return False
        if token.cancel():
            logger.info(f"cron:cancel requested for {job_id}")
        return True

    def unregister(self, job_id: str, token: CancelToken | None = None) -> None:
        """Drop the entry. With ``token``, only if it is still the registered one."""
        current = self._tokens.get(job_id)
        if current is None:
            return
        if token is not None and current is not token:
            return
        del self._tokens[job_id]

    def has(self, job_id: str) -> bool:
        return job_id in self._tokens

    def cancel_all(self) -> int:
        """Signal every in-flight run. Returns how many were newly signalled."""
        return sum(1 for token in list(self._tokens.values()) if token.cancel())
