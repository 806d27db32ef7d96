"""Structured action directives embedded in model output.

Format::

    <discord-action>{"type": "sendMessage", "channel": "general", "content": "hi"}</discord-action>

Blocks inside markdown code (fenced or inline) are left alone.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, Field

ACTION_OPEN = "<discord-action>"
ACTION_CLOSE = "</discord-action>"

MESSAGING_ACTION_TYPES = frozenset({
    "sendMessage", "sendFile", "react", "unreact", "readMessages", "fetchMessage",
    "editMessage", "deleteMessage", "bulkDelete", "crosspost", "threadCreate",
    "pinMessage", "unpinMessage", "listPins",
})
CHANNEL_ACTION_TYPES = frozenset({
    "channelCreate", "channelEdit", "channelDelete", "channelList", "channelInfo",
    "categoryCreate", "channelMove", "threadListArchived", "forumTagCreate",
    "forumTagDelete", "forumTagList", "threadEdit",
})
GUILD_ACTION_TYPES = frozenset({
    "memberInfo", "roleInfo", "roleAdd", "roleRemove", "searchMessages",
    "eventList", "eventCreate", "eventEdit", "eventDelete",
})
MODERATION_ACTION_TYPES = frozenset({"timeout", "kick", "ban"})
POLL_ACTION_TYPES = frozenset({"poll"})
CRON_ACTION_TYPES = frozenset({
    "cronCreate", "cronUpdate", "cronList", "cronShow", "cronPause",
    "cronResume", "cronDelete", "cronTrigger",
})

ACTION_CATEGORIES: dict[str, frozenset[str]] = {
    "messaging": MESSAGING_ACTION_TYPES,
    "channels": CHANNEL_ACTION_TYPES,
    "guild": GUILD_ACTION_TYPES,
    "moderation": MODERATION_ACTION_TYPES,
    "polls": POLL_ACTION_TYPES,
    "crons": CRON_ACTION_TYPES,
}
KNOWN_ACTION_TYPES: frozenset[str] = frozenset().union(*ACTION_CATEGORIES.values())

_FENCE = re.compile(r"```.*?(?:```|\Z)", re.DOTALL)
_INLINE_CODE = re.compile(r"`[^`\n]+`")


class ActionDirective(BaseModel):
    type: str
    params: dict[str, Any] = Field(default_factory=dict)


class ParsedActions(BaseModel):
    clean_text: str
    actions: list[ActionDirective] = Field(default_factory=list)
    unrecognized_types: list[str] = Field(default_factory=list)
    parse_failures: int = 0


def _code_ranges(text: str) -> list[tuple[int, int]]:
    ranges = [m.span() for m in _FENCE.finditer(text)]
    for m in _INLINE_CODE.finditer(text):
        start, end = m.span()
        if not any(lo <= start < hi for lo, hi in ranges):
            ranges.append((start, end))
    return ranges


def _in_code(pos: int, ranges: list[tuple[int, int]]) -> bool:
    return any(lo <= pos < hi for lo, hi in ranges)


def parse_actions(text: str, enabled_types: Iterable[str] | None = None) -> ParsedActions:
    """Extract action blocks outside code and strip them from the text.

    Blocks whose type is unknown (or not in ``enabled_types``) are stripped
    and reported in ``unrecognized_types``; malformed JSON counts as a parse
    failure. An unterminated block is left in place.
    """
    valid = frozenset(enabled_types) if enabled_types is not None else KNOWN_ACTION_TYPES
    ranges = _code_ranges(text)

    actions: list[ActionDirective] = []
    unrecognized: list[str] = []
    failures = 0
    out: list[str] = []
    pos = 0

    while True:
        start = text.find(ACTION_OPEN, pos)
        while start != -1 and _in_code(start, ranges):
            start = text.find(ACTION_OPEN, start + len(ACTION_OPEN))
        if start == -1:
            break
        end = text.find(ACTION_CLOSE, start + len(ACTION_OPEN))
        if end == -1:
            break

        out.append(text[pos:start])
        pos = end + len(ACTION_CLOSE)
        raw = text[start + len(ACTION_OPEN):end].strip()

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            failures += 1
            continue
        if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
            failures += 1
            continue

        action_type = payload.pop("type")
        if action_type not in valid:
            unrecognized.append(action_type)
            continue
        actions.append(ActionDirective(type=action_type, params=payload))

    out.append(text[pos:])
    clean = re.sub(r"\n{3,}", "\n\n", "".join(out)).strip()
    return ParsedActions(
        clean_text=clean,
        actions=actions,
        unrecognized_types=unrecognized,
        parse_failures=failures,
    )


def partition_actions(
    actions: list[ActionDirective], allowed: Iterable[str] | None
) -> tuple[list[ActionDirective], list[ActionDirective]]:
    """Split into (permitted, blocked). ``None`` allows everything."""
    if allowed is None:
        return list(actions), []
    allowed_set = set(allowed)
    permitted = [a for a in actions if a.type in allowed_set]
    blocked = [a for a in actions if a.type not in allowed_set]
    return permitted, blocked


def validate_action_types(raw: str) -> list[str]:
    """Parse a comma-separated allow-list and reject unknown names.

    Raises ValueError with the offending names.
    """
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    if not parts:
        raise ValueError("allowedActions requires at least one entry if provided")
    unknown = [p for p in parts if p not in KNOWN_ACTION_TYPES]
    if unknown:
        raise ValueError(
            f"allowedActions contains unrecognized action types: {', '.join(unknown)}"
        )
    return parts


# ── Notices ───────────────────────────────────────────────


def _close_open_fence(text: str) -> str:
    if text.count("```") % 2 == 1:
        return f"{text}\n```"
    return text


def append_notice(text: str, notice: str) -> str:
    if not notice:
        return text
    base = _close_open_fence(text.rstrip())
    return f"{base}\n\n{notice}" if base else notice


def blocked_actions_notice(blocked: list[ActionDirective]) -> str:
    return "\n".join(f"Blocked action `{a.type}`" for a in blocked)


def unavailable_types_notice(types: list[str]) -> str:
    unique = list(dict.fromkeys(t.strip() for t in types if t.strip()))
    if not unique:
        return ""
    rendered = ", ".join(f"`{t}`" for t in unique)
    noun = "type" if len(unique) == 1 else "types"
    return f"Ignored unavailable action {noun}: {rendered} (unknown type or category disabled)."


def parse_failure_notice(count: int) -> str:
    if count <= 0:
        return ""
    if count == 1:
        return "Warning: 1 action block failed to parse (malformed JSON) and was skipped."
    return f"Warning: {count} action blocks failed to parse (malformed JSON) and were skipped."
