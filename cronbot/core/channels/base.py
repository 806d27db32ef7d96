"""Channel base — postable channel interface, allow-listing and chunked output."""

from __future__ import annotations

import abc
from collections.abc import Iterable, Sequence

from pydantic import BaseModel

from cronbot.core.runtime.base import ImageData

DEFAULT_MAX_LENGTH = 2000
MAX_ATTACHMENTS_PER_MESSAGE = 10


class Guild(BaseModel):
    id: str
    name: str = ""


class PostableChannel(abc.ABC):
    """A resolved channel or thread that accepts messages."""

    id: str
    name: str
    parent_id: str | None = None
    max_length: int = DEFAULT_MAX_LENGTH

    @property
    def is_thread(self) -> bool:
        return self.parent_id is not None

    @abc.abstractmethod
    async def send(self, content: str, images: Sequence[ImageData] | None = None) -> str | None:
        """Post one message. Returns the new message id when known."""
        ...


class ChannelResolver(abc.ABC):
    """Looks up guilds and channels on the chat platform."""

    @abc.abstractmethod
    async def get_guild(self, guild_id: str) -> Guild | None:
        ...

    @abc.abstractmethod
    async def resolve_channel(self, guild: Guild, name_or_id: str) -> PostableChannel | None:
        """Resolve by snowflake id, ``#name`` or bare name (threads included)."""
        ...


def is_channel_allowed(channel: PostableChannel, allow_ids: Iterable[str] | None) -> bool:
    """Empty allow-list = unrestricted. Threads also pass via their parent id."""
    allowed = set(allow_ids or ())
    if not allowed:
        return True
    if channel.id in allowed:
        return True
    return bool(channel.is_thread and channel.parent_id and channel.parent_id in allowed)


# ── Chunking ──────────────────────────────────────────────


def _fence_state(line: str, open_fence: str | None) -> str | None:
    stripped = line.strip()
    if not stripped.startswith("```"):
        return open_fence
    if open_fence is None:
        return stripped
    return None


def chunk_text(text: str, limit: int = DEFAULT_MAX_LENGTH) -> list[str]:
    """Split text into chunks no longer than ``limit``.

    Splits on line boundaries and hard-splits overlong lines. A code fence
    that straddles a boundary is closed and reopened in the next chunk.
    """
    if not text.strip():
        return []
    if len(text) <= limit:
        return [text]

    budget = max(limit - 4, 8)  # keep room for a closing "\n```"
    width = budget - 32 if budget > 64 else budget

    pieces: list[str] = []
    for line in text.split("\n"):
        while len(line) > width:
            pieces.append(line[:width])
            line = line[width:]
        pieces.append(line)

    chunks: list[str] = []
    current: list[str] = []
    size = 0
    fence: str | None = None
    for piece in pieces:
        extra = len(piece) + (1 if current else 0)
        if current and size + extra > budget:
            body = "\n".join(current)
            chunks.append(f"{body}\n```" if fence is not None else body)
            current = [fence] if fence is not None else []
            size = len(fence) if fence is not None else 0
            extra = len(piece) + (1 if current else 0)
        current.append(piece)
        size += extra
        fence = _fence_state(piece, fence)

    if current:
        chunks.append("\n".join(current))
    return [c for c in chunks if c.strip()]


async def send_chunks(
    channel: PostableChannel, text: str, images: Sequence[ImageData] | None = None
) -> int:
    """Post ``text`` in chunks; images ride on the last chunk. Returns messages sent."""
    images = list(images or [])
    chunks = chunk_text(text, channel.max_length)
    batches = [
        images[i:i + MAX_ATTACHMENTS_PER_MESSAGE]
        for i in range(0, len(images), MAX_ATTACHMENTS_PER_MESSAGE)
    ]

    sent = 0
    if not chunks:
        for batch in batches:
            await channel.send("", batch)
            sent += 1
        return sent

    for i, chunk in enumerate(chunks):
        if i == len(chunks) - 1 and batches:
            await channel.send(chunk, batches[0])
            sent += 1
            for batch in batches[1:]:
                await channel.send("", batch)
                sent += 1
        else:
            await channel.send(chunk)
            sent += 1
    return sent
