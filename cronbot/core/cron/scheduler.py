"""CronScheduler — in-memory job registry driving APScheduler timers."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from cronbot.core.cron.trigger import build_trigger, validate_definition
from cronbot.core.cron.types import CronJob, JobDefinition

CronTickHandler = Callable[[CronJob], Awaitable[Any]]


class CronScheduler:
    """Holds job definitions and their timers; execution is delegated.

    Every timer fire calls ``handler(job)`` (normally ``CronExecutor.execute``).
    The registry never runs a job itself and never flips ``job.running``.
    """

    def __init__(self, handler: CronTickHandler, scheduler: AsyncIOScheduler | None = None):
        self.handler = handler
        # Overlap is guarded by the executor, so APScheduler may start
        # instances freely; coalesce missed fires into one.
        self._scheduler = scheduler or AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 8, "misfire_grace_time": 60}
        )
        self._jobs: dict[str, CronJob] = {}

    # ── Lifecycle ─────────────────────────────────────────────

    def start(self) -> None:
        self._scheduler.start()
        logger.info(f"CronScheduler started with {len(self._jobs)} jobs")

    def stop_all(self) -> None:
        """Stop every timer and forget all jobs."""
        for job in self._jobs.values():
            self._stop_timer(job)
        self._jobs.clear()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("cron:stopAll")

    # ── Registry ──────────────────────────────────────────────

    def register(
        self,
        job_id: str,
        cron_id: str,
        guild_id: str,
        name: str,
        definition: JobDefinition,
        *,
        enabled: bool = True,
    ) -> CronJob:
        """Register or atomically replace a job.

        Validation happens before anything is touched, so an invalid
        definition leaves a previously registered job running unchanged.
        Re-registering updates the existing CronJob in place: an in-flight
        run holds that same object and clears its ``running`` flag when done.
        Raises CronConfigError.
        """
        validate_definition(definition)

        job = self._jobs.get(job_id)
        if job is None:
            job = CronJob(id=job_id, cron_id=cron_id, guild_id=guild_id, name=name, definition=definition)
        else:
            self._stop_timer(job)
            job.cron_id = cron_id or job.cron_id
            job.guild_id = guild_id
            job.name = name
            job.definition = definition

        if enabled:
            self._arm(job)
        self._jobs[job_id] = job
        logger.info(
            f"cron:registered {job_id} ({job.cron_id}) trigger={definition.trigger_type} "
            f"schedule='{definition.schedule}' tz={definition.timezone}"
        )
        return job

    def unregister(self, job_id: str) -> bool:
        job = self._jobs.pop(job_id, None)
        if job is None:
            return False
        self._stop_timer(job)
        logger.info(f"cron:unregistered {job_id}")
        return True

    def disable(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        if job is None:
            return False
        self._stop_timer(job)
        logger.info(f"cron:disabled {job_id}")
        return True

    def enable(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        if job is None:
            return False
        self._stop_timer(job)
        self._arm(job)
        logger.info(f"cron:enabled {job_id}")
        return True

    def reload(self, job_id: str, definition: JobDefinition) -> CronJob | None:
        existing = self._jobs.get(job_id)
        if existing is None:
            return None
        return self.register(
            job_id, existing.cron_id, existing.guild_id, existing.name, definition,
            enabled=existing.timer is not None or not existing.definition.is_scheduled,
        )

    def get_job(self, job_id: str) -> CronJob | None:
        return self._jobs.get(job_id)

    def get_job_by_cron_id(self, cron_id: str) -> CronJob | None:
        for job in self._jobs.values():
            if job.cron_id == cron_id:
                return job
        return None

    def list_jobs(self) -> list[dict[str, Any]]:
        return [
            {
                "id": job.id,
                "cron_id": job.cron_id,
                "name": job.name,
                "schedule": job.definition.schedule,
                "timezone": job.definition.timezone,
                "next_run": self.next_run(job.id),
            }
            for job in self._jobs.values()
        ]

    def next_run(self, job_id: str) -> datetime | None:
        job = self._jobs.get(job_id)
        if job is None or job.timer is None:
            return None
        return getattr(job.timer, "next_run_time", None)

    # ── Timers ────────────────────────────────────────────────

    def _arm(self, job: CronJob) -> None:
        if not job.definition.is_scheduled:
            job.timer = None
            return
        trigger = build_trigger(job.definition.schedule, job.definition.timezone)
        job.timer = self._scheduler.add_job(
            self._fire,
            trigger=trigger,
            id=f"cron:{job.id}",
            args=[job.id],
            replace_existing=True,
        )

    def _stop_timer(self, job: CronJob) -> None:
        if job.timer is None:
            return
        try:
            job.timer.remove()
        except Exception as e:  # JobLookupError when already gone
            logger.debug(f"Timer for {job.id} already removed: {e}")
        job.timer = None

    async def _fire(self, job_id: str) -> None:
        job = self._jobs.get(job_id)
        if job is None:
            return
        try:
            await self.handler(job)
        except Exception as e:
            logger.error(f"cron:handler error for {job_id}: {e}")
