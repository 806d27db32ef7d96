"""Chat channels."""

from cronbot.core.channels.base import (
    ChannelResolver,
    Guild,
    PostableChannel,
    chunk_text,
    is_channel_allowed,
    send_chunks,
)
from cronbot.core.channels.discord import DiscordAPI, DiscordChannel, DiscordResolver

__all__ = [
    "ChannelResolver",
    "DiscordAPI",
    "DiscordChannel",
    "DiscordResolver",
    "Guild",
    "PostableChannel",
    "chunk_text",
    "is_channel_allowed",
    "send_chunks",
]
