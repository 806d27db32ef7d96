"""Structured actions parsed from model output."""

from cronbot.core.actions.executor import (
    ActionContext,
    ActionExecutor,
    ActionResult,
    build_display_lines,
)
from cronbot.core.actions.parser import (
    CRON_ACTION_TYPES,
    KNOWN_ACTION_TYPES,
    ActionDirective,
    ParsedActions,
    append_notice,
    blocked_actions_notice,
    parse_actions,
    parse_failure_notice,
    partition_actions,
    unavailable_types_notice,
    validate_action_types,
)

__all__ = [
    "CRON_ACTION_TYPES",
    "KNOWN_ACTION_TYPES",
    "ActionContext",
    "ActionDirective",
    "ActionExecutor",
    "ActionResult",
    "ParsedActions",
    "append_notice",
    "blocked_actions_notice",
    "build_display_lines",
    "parse_actions",
    "parse_failure_notice",
    "partition_actions",
    "unavailable_types_notice",
    "validate_action_types",
]
