"""Tests for channel chunking, allow-listing and the Discord REST channel."""

from __future__ import annotations

import json

import httpx
import pytest

from cronbot.core.channels.base import (
    Guild,
    PostableChannel,
    chunk_text,
    is_channel_allowed,
    send_chunks,
)
from cronbot.core.channels.discord import DiscordAPI, DiscordResolver
from cronbot.core.runtime.base import ImageData


class RecordingChannel(PostableChannel):
    def __init__(self, id="c1", parent_id=None, max_length=2000):
        self.id = id
        self.name = "general"
        self.parent_id = parent_id
        self.max_length = max_length
        self.sent = []

    async def send(self, content, images=None):
        self.sent.append((content, list(images or [])))
        return None


# ── Allow-list ──────────────────────────────────────────────


def test_allowlist_empty_is_unrestricted():
    assert is_channel_allowed(RecordingChannel("c1"), [])
    assert is_channel_allowed(RecordingChannel("c1"), None)


def test_allowlist_channel_and_thread_parent():
    assert is_channel_allowed(RecordingChannel("c1"), ["c1"])
    assert not is_channel_allowed(RecordingChannel("c2"), ["c1"])
    assert is_channel_allowed(RecordingChannel("t1", parent_id="c1"), ["c1"])
    assert not is_channel_allowed(RecordingChannel("t1", parent_id="c9"), ["c1"])


# ── Chunking ────────────────────────────────────────────────


def test_chunk_short_text_untouched():
    assert chunk_text("hello", 2000) == ["hello"]
    assert chunk_text("   ", 2000) == []


def test_chunk_respects_limit():
    text = "\n".join(f"line {i} " + "x" * 40 for i in range(200))
    chunks = chunk_text(text, 500)
    assert len(chunks) > 1
    assert all(len(c) <= 500 for c in chunks)
    assert "".join(chunks).count("line ") == 200


def test_chunk_hard_splits_long_line():
    chunks = chunk_text("y" * 5000, 1000)
    assert all(len(c) <= 1000 for c in chunks)
    assert "".join(chunks) == "y" * 5000


def test_chunk_keeps_fences_balanced():
    code = "\n".join(f"print({i})" for i in range(300))
    text = f"Result:\n```python\n{code}\n```\nDone."
    chunks = chunk_text(text, 400)
    assert len(chunks) > 1
    for chunk in chunks:
        assert len(chunk) <= 400
        assert chunk.count("```") % 2 == 0
    assert chunks[1].startswith("```python")


@pytest.mark.asyncio
async def test_send_chunks_images_on_last_chunk():
    channel = RecordingChannel(max_length=100)
    image = ImageData(base64="aGk=")
    sent = await send_chunks(channel, "word " * 60, [image])
    assert sent == len(channel.sent) > 1
    assert all(images == [] for _, images in channel.sent[:-1])
    assert channel.sent[-1][1] == [image]


@pytest.mark.asyncio
async def test_send_chunks_image_only():
    channel = RecordingChannel()
    images = [ImageData(base64="aGk=") for _ in range(12)]
    assert await send_chunks(channel, "", images) == 2
    assert [(c, len(i)) for c, i in channel.sent] == [("", 10), ("", 2)]


@pytest.mark.asyncio
async def test_send_chunks_nothing():
    channel = RecordingChannel()
    assert await send_chunks(channel, "  ") == 0
    assert channel.sent == []


# ── Discord REST ────────────────────────────────────────────


GUILD = {"id": "100", "name": "Test Guild"}
CHANNELS = [
    {"id": "1", "name": "category", "type": 4, "guild_id": "100"},
    {"id": "2", "name": "General", "type": 0, "guild_id": "100", "parent_id": "1"},
    {"id": "3", "name": "voice", "type": 2, "guild_id": "100"},
]
THREADS = {"threads": [{"id": "9", "name": "daily-thread", "type": 11, "guild_id": "100", "parent_id": "2"}]}


def _handler(requests: list[httpx.Request]):
    def handle(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        path = request.url.path.removeprefix("/api/v10")
        if request.method == "POST":
            return httpx.Response(200, json={"id": "m1"})
        if path == "/guilds/100":
            return httpx.Response(200, json=GUILD)
        if path == "/guilds/100/channels":
            return httpx.Response(200, json=CHANNELS)
        if path == "/guilds/100/threads/active":
            return httpx.Response(200, json=THREADS)
        if path == "/channels/2":
            return httpx.Response(200, json=CHANNELS[1])
        if path == "/channels/555":
            return httpx.Response(200, json={"id": "555", "name": "elsewhere", "type": 0, "guild_id": "999"})
        return httpx.Response(404, json={"message": "Unknown"})

    return handle


@pytest.fixture
def requests_log():
    return []


@pytest.fixture
def api(requests_log):
    client = httpx.AsyncClient(transport=httpx.MockTransport(_handler(requests_log)))
    return DiscordAPI("tok", client=client)


@pytest.fixture
def resolver(api):
    return DiscordResolver(api)


@pytest.mark.asyncio
async def test_get_guild(resolver, requests_log):
    guild = await resolver.get_guild("100")
    assert guild == Guild(id="100", name="Test Guild")
    assert requests_log[0].headers["Authorization"] == "Bot tok"
    assert await resolver.get_guild("404") is None
    assert await resolver.get_guild("") is None


@pytest.mark.asyncio
async def test_resolve_by_name_forms(resolver):
    guild = Guild(id="100")
    for ref in ("general", "#General", "<#2>", "2"):
        channel = await resolver.resolve_channel(guild, ref)
        assert channel is not None, ref
        assert channel.id == "2"
        # category parent is not a thread parent
        assert channel.parent_id is None


@pytest.mark.asyncio
async def test_resolve_thread(resolver):
    thread = await resolver.resolve_channel(Guild(id="100"), "daily-thread")
    assert thread.id == "9"
    assert thread.is_thread
    assert thread.parent_id == "2"


@pytest.mark.asyncio
async def test_resolve_rejects_other_guild_and_unpostable(resolver):
    guild = Guild(id="100")
    assert await resolver.resolve_channel(guild, "555") is None
    assert await resolver.resolve_channel(guild, "voice") is None
    assert await resolver.resolve_channel(guild, "missing") is None
    assert await resolver.resolve_channel(guild, "#") is None


@pytest.mark.asyncio
async def test_post_message_json(resolver, requests_log):
    channel = await resolver.resolve_channel(Guild(id="100"), "2")
    assert await channel.send("hello @everyone") == "m1"

    post = requests_log[-1]
    assert post.url.path.endswith("/channels/2/messages")
    body = json.loads(post.content)
    assert body["content"] == "hello @everyone"
    assert body["allowed_mentions"] == {"parse": []}


@pytest.mark.asyncio
async def test_post_message_with_images_is_multipart(api, requests_log):
    await api.post_message("2", "chart", [ImageData(media_type="image/jpeg", base64="aGk=")])
    post = requests_log[-1]
    assert post.headers["Content-Type"].startswith("multipart/form-data")
    raw = post.read()
    assert b'name="payload_json"' in raw
    assert b'name="files[0]"; filename="image-1.jpg"' in raw


@pytest.mark.asyncio
async def test_server_error_raises():
    def boom(request):
        return httpx.Response(500)

    broken = DiscordAPI("tok", client=httpx.AsyncClient(transport=httpx.MockTransport(boom)))
    with pytest.raises(httpx.HTTPStatusError):
        await broken.get("/guilds/100")
