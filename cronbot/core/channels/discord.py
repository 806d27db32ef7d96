"""Discord channel — REST resolver + send helper (httpx, no gateway)."""

from __future__ import annotations

import base64
import json
from collections.abc import Sequence
from typing import Any

import httpx
from loguru import logger

from cronbot.core.channels.base import (
    DEFAULT_MAX_LENGTH,
    ChannelResolver,
    Guild,
    PostableChannel,
)
from cronbot.core.runtime.base import ImageData

DISCORD_API = "https://discord.com/api/v10"

# Text, announcement and the three thread types
_POSTABLE_TYPES = {0, 5, 10, 11, 12}
_THREAD_TYPES = {10, 11, 12}
_NO_MENTIONS = {"parse": []}

_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/gif": "gif", "image/webp": "webp"}


class DiscordAPI:
    """Thin async wrapper over the Discord REST API."""

    def __init__(
        self,
        token: str,
        api_base: str = DISCORD_API,
        client: httpx.AsyncClient | None = None,
    ):
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(30.0))
        self._owns_client = client is None
        self.api_base = api_base.rstrip("/")
        self._headers = {"Authorization": f"Bot {token}"}

    async def get(self, path: str) -> Any | None:
        """GET ``path``. Returns None on 404; other errors raise."""
        resp = await self._client.get(f"{self.api_base}{path}", headers=self._headers)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    async def post_message(
        self, channel_id: str, content: str, images: Sequence[ImageData] | None = None
    ) -> str | None:
        url = f"{self.api_base}/channels/{channel_id}/messages"
        payload: dict[str, Any] = {"content": content, "allowed_mentions": _NO_MENTIONS}

        if images:
            files = {}
            attachments = []
            for i, image in enumerate(images):
                ext = _EXTENSIONS.get(image.media_type, "png")
                filename = f"image-{i + 1}.{ext}"
                files[f"files[{i}]"] = (filename, base64.b64decode(image.base64), image.media_type)
                attachments.append({"id": i, "filename": filename})
            payload["attachments"] = attachments
            resp = await self._client.post(
                url,
                headers=self._headers,
                data={"payload_json": json.dumps(payload)},
                files=files,
            )
        else:
            resp = await self._client.post(url, headers=self._headers, json=payload)

        resp.raise_for_status()
        return resp.json().get("id")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class DiscordChannel(PostableChannel):
    """Channel or thread handle backed by DiscordAPI."""

    def __init__(
        self,
        api: DiscordAPI,
        id: str,
        name: str,
        parent_id: str | None = None,
        max_length: int = DEFAULT_MAX_LENGTH,
    ):
        self.api = api
        self.id = id
        self.name = name
        self.parent_id = parent_id
        self.max_length = max_length

    async def send(self, content: str, images: Sequence[ImageData] | None = None) -> str | None:
        return await self.api.post_message(self.id, content, images)


class DiscordResolver(ChannelResolver):
    """Resolve guilds and channels through the REST API."""

    def __init__(self, api: DiscordAPI, max_length: int = DEFAULT_MAX_LENGTH):
        self.api = api
        self.max_length = max_length

    async def get_guild(self, guild_id: str) -> Guild | None:
        if not guild_id:
            return None
        data = await self.api.get(f"/guilds/{guild_id}")
        if not data:
            return None
        return Guild(id=str(data["id"]), name=data.get("name", ""))

    async def resolve_channel(self, guild: Guild, name_or_id: str) -> DiscordChannel | None:
        ref = name_or_id.strip()
        if ref.startswith("<#") and ref.endswith(">"):
            ref = ref[2:-1]
        ref = ref.lstrip("#")
        if not ref:
            return None

        if ref.isdigit():
            data = await self.api.get(f"/channels/{ref}")
            if data and str(data.get("guild_id", "")) == guild.id:
                return self._to_channel(data)
            return None

        wanted = ref.lower()
        channels = await self.api.get(f"/guilds/{guild.id}/channels") or []
        for data in channels:
            if str(data.get("name", "")).lower() == wanted and data.get("type") in _POSTABLE_TYPES:
                return self._to_channel(data)

        active = await self.api.get(f"/guilds/{guild.id}/threads/active") or {}
        for data in active.get("threads", []):
            if str(data.get("name", "")).lower() == wanted:
                return self._to_channel(data)

        logger.debug(f"Discord: channel '{name_or_id}' not found in guild {guild.id}")
        return None

    def _to_channel(self, data: dict[str, Any]) -> DiscordChannel | None:
        if data.get("type") not in _POSTABLE_TYPES:
            return None
        # parent_id on a plain channel is its category, not a thread parent
        parent = data.get("parent_id") if data.get("type") in _THREAD_TYPES else None
        return DiscordChannel(
            self.api,
            id=str(data["id"]),
            name=str(data.get("name", "")),
            parent_id=str(parent) if parent else None,
            max_length=self.max_length,
        )
