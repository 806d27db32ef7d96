"""Cron job types."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

TriggerType = Literal["schedule", "webhook", "manual"]
RunStatus = Literal["pending", "running", "success", "error", "canceled"]
CadenceTag = Literal["yearly", "frequent", "hourly", "weekly", "monthly", "daily"]
RoutingMode = Literal["json"]

CADENCE_TAGS: tuple[str, ...] = ("yearly", "frequent", "hourly", "daily", "weekly", "monthly")


class CronConfigError(ValueError):
    """Rejected job configuration (schedule, timezone, actions, chain, state)."""


class JobDefinition(BaseModel):
    """Validated job definition. Replaced wholesale on update, never patched."""

    model_config = ConfigDict(frozen=True)

    schedule: str = ""  # 5-field cron; empty for webhook/manual jobs
    timezone: str
    channel: str
    prompt: str
    trigger_type: TriggerType = "schedule"

    @property
    def is_scheduled(self) -> bool:
        return self.trigger_type == "schedule"


class CronJob(BaseModel):
    """In-memory job owned by the CronScheduler.

    ``running`` is flipped only by the executor; ``timer`` is the APScheduler
    job handle (None when disabled or not schedule-triggered).
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    cron_id: str
    guild_id: str
    name: str
    definition: JobDefinition
    running: bool = False
    timer: Any = Field(default=None, exclude=True)
