"""CronService — builds and owns the running cron subsystem."""

from __future__ import annotations

import asyncio

from loguru import logger

from cronbot.core.actions import CRON_ACTION_TYPES, ActionExecutor
from cronbot.core.channels.discord import DiscordAPI, DiscordResolver
from cronbot.core.config.schema import Config
from cronbot.core.cron.actions import CronActions
from cronbot.core.cron.executor import CronExecutor
from cronbot.core.cron.lock import ExecutionLock
from cronbot.core.cron.run_control import RunControl
from cronbot.core.cron.run_stats import RunRecord, load_run_stats
from cronbot.core.cron.scheduler import CronScheduler
from cronbot.core.cron.types import CronConfigError, JobDefinition
from cronbot.core.runtime import LiteLLMRuntime, RuntimeAdapter, resolve_model, setup_provider
from cronbot.core.status import StatusReporter


class CronService:
    """Config → store, lock, Discord client, runtime, executor, scheduler.

    Startup order mirrors dependency order; the scheduler is wired to the
    executor last because the executor resolves chain targets through it.
    """

    def __init__(
        self,
        config: Config,
        runtime: RuntimeAdapter | None = None,
        api: DiscordAPI | None = None,
    ):
        self.config = config
        setup_provider(config)

        self.runtime = runtime or LiteLLMRuntime(
            temperature=config.assistant.temperature, api_base_for=config.get_api_base
        )
        self.store = load_run_stats(config.stats_path)
        self.lock = ExecutionLock(config.lock_path) if config.lock_path else None
        self.run_control = RunControl()

        self.api = api or DiscordAPI(config.discord.token, config.discord.api_base)
        self.resolver = DiscordResolver(self.api, config.discord.max_message_length)
        self.status = StatusReporter()

        self.actions = ActionExecutor(self.resolver, config.cron.allow_channel_ids)
        self.executor = CronExecutor(
            self.runtime,
            self.resolver,
            self.run_control,
            store=self.store,
            lock=self.lock,
            status=self.status,
            actions=self.actions if config.cron.actions_enabled else None,
            model=config.cron_model,
            model_tiers=config.assistant.model_tiers,
            workspace=config.workspace_path,
            tools=config.assistant.tools,
            timeout_s=config.cron.timeout_s,
            allow_channel_ids=config.cron.allow_channel_ids,
            silent_threshold=config.cron.silent_threshold,
            post_errors=config.cron.post_errors,
        )
        self.scheduler = CronScheduler(handler=self.executor.execute)
        self.executor.job_lookup = self.scheduler.get_job_by_cron_id

        self.cron_actions = CronActions(
            self.scheduler,
            self.store,
            self.run_control,
            self.executor,
            self.runtime,
            default_guild_id=config.discord.guild_id,
            default_timezone=config.cron.default_timezone,
            auto_tag=config.cron.auto_tag,
            auto_tag_model=resolve_model(
                config.cron.auto_tag_model, config.assistant.model_tiers, config.cron_model
            ),
            purpose_tags=config.cron.purpose_tags,
            cwd=str(config.workspace_path),
        )
        self.actions.register_many(CRON_ACTION_TYPES, self.cron_actions.handle)

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> int:
        """Attach the status channel, register persisted jobs, start timers.

        Returns the number of jobs registered.
        """
        await self._attach_status_channel()

        count = 0
        for record in self.store.list_records():
            if self.restore(record):
                count += 1
        self.scheduler.start()
        logger.info(f"CronService started — {count} jobs, model: {self.config.cron_model}")
        return count

    def restore(self, record: RunRecord) -> bool:
        """Register one persisted job. Invalid definitions are logged and skipped."""
        if not record.channel or not record.prompt:
            logger.warning(f"cron:restore {record.cron_id} has no channel/prompt, skipping")
            return False
        try:
            definition = JobDefinition(
                schedule=record.schedule or "",
                timezone=record.timezone or "",
                channel=record.channel,
                prompt=record.prompt,
                trigger_type=record.trigger_type or "schedule",
            )
            self.scheduler.register(
                record.job_key or record.cron_id,
                record.cron_id,
                record.guild_id or self.config.discord.guild_id,
                record.name or record.cron_id,
                definition,
                enabled=not record.disabled,
            )
        except (CronConfigError, ValueError) as e:
            logger.error(f"cron:restore {record.cron_id} invalid definition: {e}")
            return False
        return True

    async def stop(self) -> None:
        canceled = self.run_control.cancel_all()
        if canceled:
            logger.info(f"CronService stopping — canceled {canceled} in-flight runs")
        self.scheduler.stop_all()
        await self.api.aclose()
        logger.info("CronService stopped")

    async def run_forever(self) -> None:
        """Start, then block until cancelled (Ctrl+C)."""
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()

    async def _attach_status_channel(self) -> None:
        target = self.config.discord.status_channel
        guild_id = self.config.discord.guild_id
        if not target or not guild_id:
            return
        try:
            guild = await self.resolver.get_guild(guild_id)
            channel = await self.resolver.resolve_channel(guild, target) if guild else None
        except Exception as e:
            logger.warning(f"Status channel lookup failed: {e}")
            return
        if channel is None:
            logger.warning(f"Status channel {target} not found, failures will only be logged")
            return
        self.status.channel = channel
        logger.info(f"Status channel attached: #{channel.name}")
