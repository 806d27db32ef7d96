"""ActionExecutor — dispatches parsed directives to registered handlers."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

from loguru import logger
from pydantic import BaseModel

from cronbot.core.actions.parser import ActionDirective
from cronbot.core.channels.base import (
    ChannelResolver,
    Guild,
    PostableChannel,
    is_channel_allowed,
)

DISCORD_MAX_CONTENT = 2000


class ActionResult(BaseModel):
    """Outcome of one directive.

    ``visible`` marks actions whose own effect is the user-facing
    confirmation (a sent message), so no extra "Done" line is needed.
    """

    ok: bool
    summary: str = ""
    error: str = ""
    visible: bool = False


@dataclass
class ActionContext:
    guild: Guild
    channel: PostableChannel | None = None
    job_id: str = ""


ActionHandler = Callable[[ActionDirective, ActionContext], Awaitable[ActionResult]]


class ActionExecutor:
    """Registry of handlers keyed by action type."""

    def __init__(self, resolver: ChannelResolver, allow_channel_ids: Iterable[str] | None = None):
        self.resolver = resolver
        self.allow_channel_ids = list(allow_channel_ids or [])
        self._handlers: dict[str, ActionHandler] = {"sendMessage": self._send_message}

    def register(self, action_type: str, handler: ActionHandler) -> None:
        self._handlers[action_type] = handler

    def register_many(self, action_types: Iterable[str], handler: ActionHandler) -> None:
        for action_type in action_types:
            self._handlers[action_type] = handler

    @property
    def registered_types(self) -> frozenset[str]:
        return frozenset(self._handlers)

    async def execute(
        self, directives: list[ActionDirective], ctx: ActionContext
    ) -> list[ActionResult]:
        """Run directives in order. A failing handler never stops the rest."""
        results: list[ActionResult] = []
        for directive in directives:
            handler = self._handlers.get(directive.type)
            if handler is None:
                results.append(ActionResult(
                    ok=False, error=f"Action type `{directive.type}` is not available here",
                ))
                continue
            try:
                result = await handler(directive, ctx)
            except Exception as e:
                logger.error(f"Action {directive.type} raised: {e}")
                result = ActionResult(ok=False, error=f"{directive.type} failed: {e}")
            logger.info(f"action:{directive.type} ok={result.ok}")
            results.append(result)
        return results

    # ── Built-in handlers ────────────────────────────────────

    async def _send_message(self, directive: ActionDirective, ctx: ActionContext) -> ActionResult:
        target = directive.params.get("channel")
        content = directive.params.get("content")
        if not isinstance(target, str) or not target.strip():
            return ActionResult(ok=False, error="sendMessage requires a non-empty channel name or ID")
        if not isinstance(content, str) or not content.strip():
            return ActionResult(ok=False, error="sendMessage requires non-empty string content")
        if len(content) > DISCORD_MAX_CONTENT:
            return ActionResult(
                ok=False,
                error=f"Content exceeds Discord's {DISCORD_MAX_CONTENT} character limit (got {len(content)})",
            )

        channel = await self.resolver.resolve_channel(ctx.guild, target)
        if channel is None:
            return ActionResult(ok=False, error=f'Channel "{target}" not found')
        if not is_channel_allowed(channel, self.allow_channel_ids):
            return ActionResult(ok=False, error=f'Channel "{target}" is not allowlisted')

        await channel.send(content)
        return ActionResult(ok=True, summary=f"Sent message to #{channel.name}", visible=True)


def build_display_lines(
    actions: list[ActionDirective], results: list[ActionResult]
) -> list[str]:
    """``Done:``/``Failed:`` lines, eliding successful self-confirming actions."""
    lines: list[str] = []
    for _action, result in zip(actions, results):
        if result.ok and result.visible:
            continue
        lines.append(f"Done: {result.summary}" if result.ok else f"Failed: {result.error}")
    return lines
