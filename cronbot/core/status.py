"""StatusReporter — operator-visible failure notices."""

from __future__ import annotations

from loguru import logger

from cronbot.core.channels.base import PostableChannel

_NOTICE_LIMIT = 1800


class StatusReporter:
    """Logs failures and, when a status channel is wired in, posts them there.

    Posting is best-effort; a failed post is logged and never raised.
    """

    def __init__(self, channel: PostableChannel | None = None):
        self.channel = channel

    async def runtime_error(self, context: str, message: str) -> None:
        logger.error(f"status:runtime_error [{context}] {message}")
        await self._post(f"**Runtime error** `{context}`\n{message}")

    async def handler_error(self, context: str, err: BaseException | str) -> None:
        logger.error(f"status:handler_error [{context}] {err}")
        await self._post(f"**Handler error** `{context}`\n{err}")

    async def action_failed(self, action_type: str, error: str) -> None:
        logger.warning(f"status:action_failed {action_type}: {error}")
        await self._post(f"**Action failed** `{action_type}`\n{error}")

    async def _post(self, text: str) -> None:
        if self.channel is None:
            return
        try:
            await self.channel.send(text[:_NOTICE_LIMIT])
        except Exception as e:
            logger.warning(f"Status channel post failed: {e}")
