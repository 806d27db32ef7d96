"""JSON routing — fan one cron output out to several channels.

The model answers with an array of ``{"channel": ..., "content": ...}``
objects. Unparseable output, or output where every entry failed, is posted
verbatim to the job's own channel instead.
"""

from __future__ import annotations

import json
import re
from collections.abc import Awaitable, Callable

from loguru import logger
from pydantic import BaseModel

from cronbot.core.channels.base import PostableChannel, send_chunks

ChannelLookup = Callable[[str], Awaitable[PostableChannel | None]]

_FENCE = re.compile(r"^```(?:json)?\s*([\s\S]*?)```\s*$")


class RouteEntry(BaseModel):
    channel: str
    content: str


class RouteResult(BaseModel):
    routed_count: int = 0
    used_fallback: bool = False


def parse_json_route_entries(output: str) -> list[RouteEntry] | None:
    """Parse the routing array. None when the output is not a JSON array.

    Entries without a string ``channel`` and ``content`` are dropped.
    """
    text = output.strip()
    match = _FENCE.match(text)
    if match:
        text = match.group(1).strip()
    if not text:
        return None
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, list):
        return None

    return [
        RouteEntry(channel=item["channel"], content=item["content"])
        for item in parsed
        if isinstance(item, dict)
        and isinstance(item.get("channel"), str)
        and isinstance(item.get("content"), str)
    ]


async def handle_json_route_output(
    output: str,
    lookup: ChannelLookup,
    default_channel: PostableChannel,
    job_id: str = "",
) -> RouteResult:
    entries = parse_json_route_entries(output)
    if entries is None:
        logger.warning(f"cron:json-router parse failed for {job_id}, falling back to default channel")
        await send_chunks(default_channel, output)
        return RouteResult(used_fallback=True)

    if not entries:
        logger.info(f"cron:json-router empty route array for {job_id}")
        return RouteResult()

    routed = 0
    for entry in entries:
        target = await lookup(entry.channel)
        if target is None:
            logger.warning(f"cron:json-router channel not found for {job_id}, skipping entry: {entry.channel}")
            continue
        try:
            await send_chunks(target, entry.content)
            routed += 1
        except Exception as e:
            logger.warning(f"cron:json-router send failed for {job_id} → {entry.channel}: {e}")

    if routed == 0:
        logger.warning(f"cron:json-router all entries failed for {job_id}, falling back to default channel")
        await send_chunks(default_channel, output)
        return RouteResult(used_fallback=True)

    return RouteResult(routed_count=routed)
