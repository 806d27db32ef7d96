"""Process-wide default timezone for jobs created without one."""

from __future__ import annotations

import os
from datetime import datetime

from loguru import logger

from cronbot.core.cron.trigger import is_valid_timezone


def _system_timezone() -> str | None:
    tz = os.environ.get("TZ")
    if tz and is_valid_timezone(tz):
        return tz
    local = datetime.now().astimezone().tzinfo
    key = getattr(local, "key", None)
    if key and is_valid_timezone(key):
        return key
    try:
        # /etc/localtime → .../zoneinfo/Europe/Istanbul
        target = os.path.realpath("/etc/localtime")
    except OSError:
        return None
    if "zoneinfo/" in target:
        name = target.split("zoneinfo/", 1)[1]
        if is_valid_timezone(name):
            return name
    return None


def get_default_timezone(configured: str = "") -> str:
    """Configured value → DEFAULT_TIMEZONE env → system zone → UTC.

    Invalid values are logged and skipped.
    """
    for source, value in (("cron.default_timezone", configured),
                          ("DEFAULT_TIMEZONE", os.environ.get("DEFAULT_TIMEZONE", ""))):
        if not value:
            continue
        if is_valid_timezone(value):
            return value.strip()
        logger.error(f'{source}="{value}" is not a valid IANA timezone; falling back')
    return _system_timezone() or "UTC"
