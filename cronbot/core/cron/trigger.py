"""Crontab → APScheduler trigger construction and definition validation."""

from __future__ import annotations

import re
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger

from cronbot.core.cron.types import CronConfigError, JobDefinition

# crontab numbers Sunday as 0 (and 7); APScheduler numbers Monday as 0.
_DOW_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")
_DOW_RANGE = re.compile(r"^(\d+)-(\d+)(?:/(\d+))?$")
_DOW_STEP = re.compile(r"^\*/(\d+)$")


def _translate_dow(field: str) -> str:
    """Rewrite numeric crontab weekdays as names so APScheduler reads them correctly."""
    if field == "*" or not re.search(r"\d", field):
        return field

    out: list[str] = []
    for part in field.split(","):
        if part.isdigit():
            out.append(_dow_name(int(part)))
            continue
        step = _DOW_STEP.match(part)
        if step:
            out.extend(_dow_name(d) for d in range(0, 7, _positive(step.group(1))))
            continue
        rng = _DOW_RANGE.match(part)
        if rng:
            lo, hi = int(rng.group(1)), int(rng.group(2))
            if lo > hi:
                raise ValueError(f"invalid day-of-week range '{part}'")
            stride = _positive(rng.group(3) or "1")
            out.extend(_dow_name(d) for d in range(lo, hi + 1, stride))
            continue
        out.append(part)  # names (mon-fri) pass through

    # Preserve order, drop duplicates (0 and 7 both mean Sunday)
    return ",".join(dict.fromkeys(out))


def _dow_name(value: int) -> str:
    if not 0 <= value <= 7:
        raise ValueError(f"day-of-week value {value} out of range 0-7")
    return _DOW_NAMES[value]


def _positive(raw: str) -> int:
    value = int(raw)
    if value <= 0:
        raise ValueError("step must be positive")
    return value


def build_trigger(schedule: str, timezone: str | None = None) -> CronTrigger:
    """Build a CronTrigger from a 5-field crontab expression.

    Raises ValueError on malformed expressions.
    """
    fields = schedule.split()
    if len(fields) != 5:
        raise ValueError(f"expected 5 cron fields, got {len(fields)}")
    minute, hour, day, month, dow = fields
    return CronTrigger(
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=_translate_dow(dow),
        timezone=timezone or "UTC",
    )


def is_valid_timezone(name: str) -> bool:
    if not name or not name.strip():
        return False
    try:
        ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def validate_definition(defn: JobDefinition) -> None:
    """Raise CronConfigError unless the timezone and (for scheduled jobs) schedule are valid."""
    timezone = (defn.timezone or "").strip()
    if not timezone:
        raise CronConfigError("timezone is required")
    if not is_valid_timezone(timezone):
        raise CronConfigError(f'invalid timezone "{defn.timezone}"')
    if not defn.is_scheduled:
        return
    if not defn.schedule.strip():
        raise CronConfigError("schedule is required")
    try:
        build_trigger(defn.schedule, timezone)
    except ValueError as e:
        raise CronConfigError(str(e) or "invalid schedule") from e
