"""CronExecutor — runs one job end to end.

Per run: overlap guard → lock → write-ahead status → channel resolution
and allow-listing → prompt → runtime stream → action filtering and
sentinel/silent suppression → post (or JSON routing) → terminal status →
chain dispatch.
Cleanup (running flag, cancel slot, lock) happens on every path.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Iterable, Mapping
from pathlib import Path
from typing import Literal

from loguru import logger

from cronbot.core.actions.executor import ActionContext, ActionExecutor, build_display_lines
from cronbot.core.actions.parser import (
    KNOWN_ACTION_TYPES,
    append_notice,
    blocked_actions_notice,
    parse_actions,
    parse_failure_notice,
    partition_actions,
    unavailable_types_notice,
)
from cronbot.core.channels.base import (
    ChannelResolver,
    Guild,
    PostableChannel,
    is_channel_allowed,
    send_chunks,
)
from cronbot.core.cron.chain import fire_downstream
from cronbot.core.cron.json_router import handle_json_route_output
from cronbot.core.cron.lock import ExecutionLock, LockLease
from cronbot.core.cron.prompt import (
    SENTINEL,
    build_cron_prompt,
    build_cron_prompt_body,
    extract_state_update,
)
from cronbot.core.cron.run_control import CancelToken, RunControl
from cronbot.core.cron.run_stats import RunRecord, RunStatsStore
from cronbot.core.cron.types import CronJob
from cronbot.core.runtime.base import ImageData, RuntimeAdapter, RuntimeEvent, resolve_model
from cronbot.core.status import StatusReporter
from cronbot.core.workspace import (
    inline_context_files,
    load_context_files,
    load_permissions,
    resolve_tools,
)

RunOutcome = Literal["skipped", "success", "error", "canceled"]

SUPPRESSIBLE_OUTPUTS = frozenset({SENTINEL, "(no output)"})


class _RunFailed(Exception):
    """A resolution or runtime failure already reported for this run."""


def user_error_message(raw: str) -> str:
    """Short user-facing text for a runtime failure."""
    msg = (raw or "").strip()
    lc = msg.lower()
    if "timed out" in lc:
        return "The runtime timed out before finishing. Try a smaller request or increase cron.timeout_s."
    if "prompt is too long" in lc or "context length" in lc or "context_length_exceeded" in lc:
        return "The prompt exceeded the model's context limit. Shorten the cron prompt or its state."
    if "unauthorized" in lc or "authentication" in lc or "api key" in lc:
        return "The model provider rejected the credentials. Check the provider API key and retry."
    if not msg:
        return "An unexpected runtime error occurred with no additional detail."
    return f"Runtime error: {msg}"


class CronExecutor:
    """Executes cron jobs. Owns no jobs; collaborators are injected."""

    def __init__(
        self,
        runtime: RuntimeAdapter,
        resolver: ChannelResolver,
        run_control: RunControl,
        *,
        store: RunStatsStore | None = None,
        lock: ExecutionLock | None = None,
        status: StatusReporter | None = None,
        actions: ActionExecutor | None = None,
        model: str = "",
        model_tiers: Mapping[str, str] | None = None,
        workspace: str | Path = ".",
        tools: Iterable[str] = (),
        timeout_s: float = 600,
        allow_channel_ids: Iterable[str] | None = None,
        silent_threshold: int = 80,
        post_errors: bool = True,
        job_lookup: Callable[[str], CronJob | None] | None = None,
    ):
        self.runtime = runtime
        self.resolver = resolver
        self.run_control = run_control
        self.store = store
        self.lock = lock
        self.status = status
        self.actions = actions
        self.model = model
        self.model_tiers = dict(model_tiers or {})
        self.workspace = Path(workspace)
        self.tools = list(tools)
        self.timeout_s = timeout_s
        self.allow_channel_ids = list(allow_channel_ids or [])
        self.silent_threshold = silent_threshold
        self.post_errors = post_errors
        # cronId → registered job, used for chain dispatch
        self.job_lookup = job_lookup

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def execute(self, job: CronJob) -> RunOutcome:
        # Checked and claimed before the first await
        if job.running:
            logger.warning(f"cron:skip {job.id} ({job.name}) previous run still active")
            return "skipped"
        job.running = True

        lease: LockLease | None = None
        token: CancelToken | None = None
        try:
            if self.lock is not None and job.cron_id:
                try:
                    lease = await self.lock.acquire(job.cron_id)
                except OSError as e:
                    logger.warning(f"cron:skip {job.id} lock acquire failed: {e}")
                    return "skipped"
                if lease is None:
                    logger.warning(f"cron:skip {job.id} ({job.cron_id}) lock held by another process")
                    return "skipped"

            token = self.run_control.register(job.id)
            try:
                return await self._run(job, token)
            except _RunFailed:
                return "error"
            except Exception as e:
                logger.error(f"cron:exec failed {job.id}: {e}")
                await self._report_failure(job, str(e) or type(e).__name__)
                return "error"
        finally:
            if lease is not None:
                try:
                    await lease.release()
                except OSError as e:
                    logger.warning(f"cron:exec lock release failed for {job.id}: {e}")
            if token is not None:
                self.run_control.unregister(job.id, token)
            job.running = False

    async def execute_cron_id(self, cron_id: str) -> RunOutcome:
        """Run the registered job with this cronId (chain targets)."""
        job = self.job_lookup(cron_id) if self.job_lookup else None
        if job is None:
            raise LookupError(f"cron {cron_id} is not registered")
        return await self.execute(job)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(self, job: CronJob, token: CancelToken) -> RunOutcome:
        await self._record_start(job)

        guild = await self.resolver.get_guild(job.guild_id)
        if guild is None:
            await self._fail(job, f"guild {job.guild_id} not found")
        channel = await self.resolver.resolve_channel(guild, job.definition.channel)
        if channel is None:
            await self._fail(job, f'target channel "{job.definition.channel}" not found')
        if not is_channel_allowed(channel, self.allow_channel_ids):
            await self._fail(job, f'target channel "{job.definition.channel}" not allowlisted')

        record = self.store.get_record(job.cron_id) if self.store and job.cron_id else None
        prompt, tools = self._build_prompt(job, channel, record)

        model = resolve_model(record.effective_model if record else None, self.model_tiers, self.model)
        logger.info(f"cron:exec start {job.id} ({job.name}) channel={job.definition.channel} model={model}")

        text, images = await self._invoke(job, channel, token, prompt, model, tools)
        if token.cancelled:
            logger.warning(f"cron:exec canceled {job.id} ({job.cron_id})")
            await self._record(job, "canceled")
            return "canceled"

        text, new_state = extract_state_update(text)
        if new_state is not None:
            await self._persist_state(job, new_state)

        if not text.strip() and not images:
            logger.warning(f"cron:exec empty output {job.id}")
            await self._record(job, "success")
            await self._dispatch_chain(job)
            return "success"

        text = await self._apply_actions(job, guild, channel, record, text)

        json_mode = record is not None and record.routing_mode == "json"
        collapsed = " ".join(text.split())
        if collapsed in SUPPRESSIBLE_OUTPUTS and not images:
            logger.info(f"cron:exec sentinel output suppressed {job.id} ({collapsed})")
        elif (
            record is not None and record.silent and not json_mode
            and not images and len(collapsed) <= self.silent_threshold
        ):
            logger.info(f"cron:exec silent short-response suppressed {job.id} (len={len(collapsed)})")
        elif json_mode:
            result = await handle_json_route_output(
                text, lambda ref: self._route_target(job, guild, ref), channel, job.id
            )
            if images:
                await send_chunks(channel, "", images)
            logger.info(
                f"cron:exec json-routed {job.id} ({job.name}) entries={result.routed_count} "
                f"fallback={result.used_fallback}"
            )
        else:
            sent = await send_chunks(channel, text, images)
            if sent == 0:
                logger.info(f"cron:reply suppressed {job.id} (actions-only, no display text)")
            logger.info(f"cron:exec done {job.id} ({job.name}) → #{job.definition.channel}")

        await self._record(job, "success")
        await self._dispatch_chain(job)
        return "success"

    def _build_prompt(
        self, job: CronJob, channel: PostableChannel, record: RunRecord | None
    ) -> tuple[str, list[str]]:
        inlined = ""
        try:
            files = load_context_files(self.workspace)
            inlined = inline_context_files(files)
            logger.debug(f"cron:exec loaded {len(files)} workspace context files for {job.id}")
        except Exception as e:
            logger.warning(f"cron:exec context loading failed for {job.id}, continuing without: {e}")

        perms = None
        try:
            perms = load_permissions(self.workspace)
        except (OSError, ValueError) as e:
            logger.warning(f"cron:exec permissions unreadable for {job.id}: {e}")

        body = build_cron_prompt_body(
            job.name,
            job.definition.prompt,
            job.definition.channel,
            channel_id=channel.id,
            silent=bool(record and record.silent),
            state=record.state if record else None,
            routing_mode=record.routing_mode if record else None,
        )
        prompt = build_cron_prompt(body, inlined, perms.note if perms else None)
        return prompt, resolve_tools(perms, self.tools)

    async def _invoke(
        self,
        job: CronJob,
        channel: PostableChannel,
        token: CancelToken,
        prompt: str,
        model: str,
        tools: list[str],
    ) -> tuple[str, list[ImageData]]:
        final_text = ""
        delta_text = ""
        images: list[ImageData] = []
        error: str | None = None

        stream = self.runtime.invoke(
            prompt, model, cwd=str(self.workspace), tools=tools,
            timeout_s=self.timeout_s, cancel=token,
        )
        try:
            async with asyncio.timeout(self.timeout_s or None):
                async for event in stream:
                    if token.cancelled:
                        break
                    if event.type == "text_final":
                        final_text = event.text
                    elif event.type == "text_delta":
                        delta_text += event.text
                    elif event.type == "image_data" and event.image is not None:
                        images.append(event.image)
                    elif event.type == "error":
                        error = event.message or "runtime error"
                        break
        except TimeoutError:
            error = f"runtime timed out after {self.timeout_s}s"
        finally:
            await _close(stream)

        if token.cancelled:
            return "", []
        if error is not None:
            await self._runtime_failure(job, channel, error)
        return final_text or delta_text, images

    async def _apply_actions(
        self,
        job: CronJob,
        guild: Guild,
        channel: PostableChannel,
        record: RunRecord | None,
        text: str,
    ) -> str:
        if self.actions is None:
            return text

        parsed = parse_actions(text, KNOWN_ACTION_TYPES)
        text = parsed.clean_text
        if parsed.actions:
            allowed = record.allowed_actions if record else None
            permitted, blocked = partition_actions(parsed.actions, allowed)
            for action in blocked:
                logger.warning(f"cron:action blocked {job.id} type={action.type} (not in allowedActions)")

            if permitted:
                results = await self.actions.execute(
                    permitted, ActionContext(guild=guild, channel=channel, job_id=job.id)
                )
                lines = build_display_lines(permitted, results)
                if lines:
                    text = f"{text.rstrip()}\n\n" + "\n".join(lines)
                if self.status is not None:
                    for action, result in zip(permitted, results):
                        if not result.ok:
                            await self.status.action_failed(action.type, result.error)
            text = append_notice(text, blocked_actions_notice(blocked))

        text = append_notice(text, unavailable_types_notice(parsed.unrecognized_types))
        return append_notice(text, parse_failure_notice(parsed.parse_failures))

    async def _route_target(self, job: CronJob, guild: Guild, ref: str) -> PostableChannel | None:
        target = await self.resolver.resolve_channel(guild, ref)
        if target is not None and not is_channel_allowed(target, self.allow_channel_ids):
            logger.warning(f"cron:json-routing channel not allowlisted for {job.id}, skipping: {ref}")
            return None
        return target

    async def _dispatch_chain(self, job: CronJob) -> None:
        if self.store is None or not job.cron_id:
            return
        record = self.store.get_record(job.cron_id)
        if record is None or not record.chain:
            return
        await fire_downstream(job.cron_id, record.chain, record.state, self.store, self.execute_cron_id)

    # ------------------------------------------------------------------
    # Failure reporting
    # ------------------------------------------------------------------

    async def _fail(self, job: CronJob, message: str) -> None:
        """Resolution failure: report, record, abort the run."""
        logger.error(f"cron:exec {job.id}: {message}")
        if self.status is not None:
            await self.status.runtime_error(f"cron:{job.id}", f'Cron "{job.name}": {message}')
        await self._record(job, "error", message)
        raise _RunFailed(message)

    async def _runtime_failure(self, job: CronJob, channel: PostableChannel, message: str) -> None:
        logger.error(f"cron:exec runtime error {job.id}: {message}")
        if self.status is not None:
            await self.status.runtime_error(f"cron:{job.id}", f'Cron "{job.name}": {message}')
        if self.post_errors:
            try:
                await send_chunks(channel, user_error_message(message))
            except Exception as e:
                logger.warning(f"cron:exec error notice post failed for {job.id}: {e}")
        await self._record(job, "error", message)
        raise _RunFailed(message)

    async def _report_failure(self, job: CronJob, message: str) -> None:
        """Unexpected exception: best-effort notice to status and the target channel."""
        if self.status is not None:
            await self.status.runtime_error(f"cron:{job.id}", f'Cron "{job.name}": {message}')
        if self.post_errors:
            try:
                guild = await self.resolver.get_guild(job.guild_id)
                channel = await self.resolver.resolve_channel(guild, job.definition.channel) if guild else None
                if channel is not None and is_channel_allowed(channel, self.allow_channel_ids):
                    await send_chunks(channel, user_error_message(message))
            except Exception as e:
                logger.warning(f"cron:exec error notice post failed for {job.id}: {e}")
        await self._record(job, "error", message)

    # ------------------------------------------------------------------
    # Stats (best-effort)
    # ------------------------------------------------------------------

    async def _record_start(self, job: CronJob) -> None:
        if self.store is None or not job.cron_id:
            return
        try:
            await self.store.record_run_start(job.cron_id)
        except Exception as e:
            logger.warning(f"cron:exec write-ahead status failed for {job.id}, continuing: {e}")

    async def _record(self, job: CronJob, status: str, error: str | None = None) -> None:
        if self.store is None or not job.cron_id:
            return
        try:
            await self.store.record_run(job.cron_id, status, error)
        except Exception as e:
            logger.warning(f"cron:exec stats record failed for {job.id}: {e}")

    async def _persist_state(self, job: CronJob, state: dict) -> None:
        if self.store is None or not job.cron_id:
            return
        record = self.store.get_record(job.cron_id)
        if record is None:
            return
        try:
            await self.store.upsert_record(job.cron_id, record.job_key, {"state": state})
            logger.info(f"cron:exec state updated {job.id}")
        except Exception as e:
            logger.warning(f"cron:exec state persist failed for {job.id}: {e}")


async def _close(stream: AsyncIterator[RuntimeEvent]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.debug(f"Runtime stream close failed: {e}")
