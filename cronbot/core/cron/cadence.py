"""Cadence classification for cron schedule expressions."""

from __future__ import annotations

import math
import re

from cronbot.core.cron.trigger import build_trigger
from cronbot.core.cron.types import CadenceTag

_STEP = re.compile(r"^\*/\d+$")


def _is_wild(field: str) -> bool:
    return field == "*"


def _is_step(field: str) -> bool:
    return bool(_STEP.match(field))


def count_field_values(field: str) -> float:
    """Count distinct values in a field like ``1``, ``1,7``, ``3-6``, ``1-3,7``.

    Wildcards and ``*/N`` steps are unbounded (``math.inf``). A malformed
    range counts as a single value.
    """
    if _is_wild(field) or _is_step(field):
        return math.inf

    count = 0
    for part in field.split(","):
        bounds = part.split("-")
        if len(bounds) == 2:
            try:
                lo, hi = int(bounds[0]), int(bounds[1])
            except ValueError:
                count += 1
                continue
            count += hi - lo + 1 if hi >= lo else 1
        else:
            count += 1
    return count


def detect_cadence(schedule: str) -> CadenceTag:
    """Map a 5-field schedule to a coarse cadence tag.

    Unparseable schedules fall back to ``daily``; this never raises.

    - single concrete month → yearly (multi-month falls through)
    - minute ``*`` or ``*/N`` → frequent
    - hour ``*`` or ``*/N`` → hourly
    - day-of-week constrained → weekly
    - day-of-month constrained → monthly
    - otherwise → daily
    """
    try:
        build_trigger(schedule)
    except (ValueError, TypeError):
        return "daily"

    minute, hour, dom, month, dow = schedule.split()

    if not _is_wild(month) and not _is_step(month) and count_field_values(month) == 1:
        return "yearly"
    if _is_wild(minute) or _is_step(minute):
        return "frequent"
    if _is_wild(hour) or _is_step(hour):
        return "hourly"
    if not _is_wild(dow):
        return "weekly"
    if not _is_wild(dom):
        return "monthly"
    return "daily"
