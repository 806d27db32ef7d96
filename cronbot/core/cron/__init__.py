"""Cron scheduling — APScheduler timers, executor and run stats."""

from cronbot.core.cron.actions import CronActions
from cronbot.core.cron.executor import CronExecutor
from cronbot.core.cron.scheduler import CronScheduler
from cronbot.core.cron.service import CronService
from cronbot.core.cron.types import CronConfigError, CronJob, JobDefinition

__all__ = [
    "CronActions",
    "CronConfigError",
    "CronExecutor",
    "CronJob",
    "CronScheduler",
    "CronService",
    "JobDefinition",
]
