"""CronActions — configuration layer for jobs (create, update, pause, ...).

Every input is validated before the scheduler or the stats store is
touched, so a rejected request leaves no partial state behind.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import TYPE_CHECKING, Any

from loguru import logger

from cronbot.core.actions.executor import ActionContext, ActionResult
from cronbot.core.actions.parser import ActionDirective, validate_action_types
from cronbot.core.cron.auto_tag import auto_tag_cron, classify_cron_model
from cronbot.core.cron.cadence import detect_cadence
from cronbot.core.cron.chain import parse_chain, validate_chain
from cronbot.core.cron.run_control import RunControl
from cronbot.core.cron.run_stats import RunStatsStore, generate_cron_id
from cronbot.core.cron.scheduler import CronScheduler
from cronbot.core.cron.timezone import get_default_timezone
from cronbot.core.cron.trigger import validate_definition
from cronbot.core.cron.types import CronConfigError, JobDefinition

if TYPE_CHECKING:
    from cronbot.core.cron.executor import CronExecutor
    from cronbot.core.runtime.base import RuntimeAdapter

STATE_PREVIEW_LIMIT = 500


def _split_tags(raw: str) -> list[str]:
    return [t.strip() for t in raw.split(",") if t.strip()]


class CronActions:
    """Job management operations shared by the action executor and the CLI."""

    def __init__(
        self,
        scheduler: CronScheduler,
        store: RunStatsStore,
        run_control: RunControl,
        executor: CronExecutor | None = None,
        runtime: RuntimeAdapter | None = None,
        *,
        default_guild_id: str = "",
        default_timezone: str = "",
        auto_tag: bool = False,
        auto_tag_model: str = "fast",
        purpose_tags: list[str] | None = None,
        cwd: str | None = None,
    ):
        self.scheduler = scheduler
        self.store = store
        self.run_control = run_control
        self.executor = executor
        self.runtime = runtime
        self.default_guild_id = default_guild_id
        self.default_timezone = default_timezone
        self.auto_tag = auto_tag
        self.auto_tag_model = auto_tag_model
        self.purpose_tags = list(purpose_tags or [])
        self.cwd = cwd
        self._background: set[asyncio.Task] = set()

    # ── Create / update ──────────────────────────────────────

    async def create(
        self,
        name: str,
        schedule: str,
        channel: str,
        prompt: str,
        *,
        timezone: str | None = None,
        tags: str | None = None,
        model: str | None = None,
        allowed_actions: str | None = None,
        chain: str | None = None,
        guild_id: str | None = None,
        trigger_type: str = "schedule",
        routing_mode: str | None = None,
    ) -> ActionResult:
        if not name or not channel or not prompt or (trigger_type == "schedule" and not schedule):
            return ActionResult(ok=False, error="cronCreate requires name, schedule, channel, and prompt")

        tz = timezone or get_default_timezone(self.default_timezone)
        try:
            definition = JobDefinition(
                schedule=schedule or "", timezone=tz, channel=channel,
                prompt=prompt, trigger_type=trigger_type,
            )
            validate_definition(definition)
        except (CronConfigError, ValueError) as e:
            return ActionResult(ok=False, error=f"Invalid cron definition: {e}")

        parsed_allowed: list[str] | None = None
        parsed_chain: list[str] | None = None
        try:
            if allowed_actions is not None:
                parsed_allowed = validate_action_types(allowed_actions)
            if chain is not None:
                # A new job has no upstream yet, so no cycle check is needed
                parsed_chain = parse_chain(chain, self.store) or None
            if routing_mode is not None:
                _validate_routing_mode(routing_mode)
        except ValueError as e:
            return ActionResult(ok=False, error=str(e))

        cadence = detect_cadence(schedule) if definition.is_scheduled else None
        purpose_tags = _split_tags(tags) if tags else []
        if not purpose_tags and self.auto_tag and self.runtime is not None and self.purpose_tags:
            purpose_tags = await auto_tag_cron(
                self.runtime, name, prompt, self.purpose_tags, self.auto_tag_model, self.cwd,
            )

        if model:
            tier = model
        elif self.runtime is not None:
            tier = await classify_cron_model(
                self.runtime, name, prompt, cadence or "daily", self.auto_tag_model, self.cwd,
            )
        else:
            tier = "fast"

        cron_id = generate_cron_id()
        job_key = uuid.uuid4().hex[:8]
        guild = guild_id or self.default_guild_id
        try:
            self.scheduler.register(job_key, cron_id, guild, name, definition)
        except CronConfigError as e:
            return ActionResult(ok=False, error=f"Invalid cron definition: {e}")

        updates: dict[str, Any] = {
            "guild_id": guild,
            "name": name,
            "trigger_type": definition.trigger_type,
            "cadence": cadence,
            "purpose_tags": purpose_tags,
            "model": tier,
            "schedule": definition.schedule,
            "timezone": tz,
            "channel": channel,
            "prompt": prompt,
        }
        if parsed_allowed is not None:
            updates["allowed_actions"] = parsed_allowed
        if parsed_chain is not None:
            updates["chain"] = parsed_chain
        if routing_mode is not None:
            updates["routing_mode"] = routing_mode
        await self.store.upsert_record(cron_id, job_key, updates)

        logger.info(f"cron:action:create {cron_id} ({name}) schedule='{schedule}' model={tier}")
        summary = f'Cron "{name}" created ({cron_id}), schedule: {schedule or trigger_type}, model: {tier}'
        if parsed_chain:
            summary += f", chain: {', '.join(parsed_chain)}"
        return ActionResult(ok=True, summary=summary)

    async def update(
        self,
        cron_id: str,
        *,
        schedule: str | None = None,
        timezone: str | None = None,
        channel: str | None = None,
        prompt: str | None = None,
        model: str | None = None,
        tags: str | None = None,
        silent: bool | None = None,
        allowed_actions: str | None = None,
        state: str | None = None,
        chain: str | None = None,
        routing_mode: str | None = None,
    ) -> ActionResult:
        if not cron_id:
            return ActionResult(ok=False, error="cronUpdate requires cronId")
        record = self.store.get_record(cron_id)
        if record is None:
            return ActionResult(ok=False, error=f'Cron "{cron_id}" not found')
        job = self.scheduler.get_job(record.job_key)
        if job is None:
            return ActionResult(ok=False, error=f'Cron "{cron_id}" not registered in scheduler')

        updates: dict[str, Any] = {}
        changes: list[str] = []

        if silent is not None:
            updates["silent"] = silent
            changes.append(f"silent → {silent}")
        if model:
            updates["model_override"] = model
            changes.append(f"model → {model}")
        if tags:
            updates["purpose_tags"] = _split_tags(tags)
            changes.append(f"tags → {', '.join(updates['purpose_tags'])}")

        try:
            if allowed_actions is not None:
                if allowed_actions == "":
                    updates["allowed_actions"] = None
                    changes.append("allowedActions cleared")
                else:
                    updates["allowed_actions"] = validate_action_types(allowed_actions)
                    changes.append(f"allowedActions → {', '.join(updates['allowed_actions'])}")

            if chain is not None:
                ids = validate_chain(chain, self.store, cron_id)
                updates["chain"] = ids or None
                changes.append(f"chain → {', '.join(ids)}" if ids else "chain cleared")

            if state is not None:
                updates["state"] = _parse_state(state)
                changes.append("state updated")

            if routing_mode is not None:
                if routing_mode == "":
                    updates["routing_mode"] = None
                    changes.append("routingMode → cleared")
                else:
                    updates["routing_mode"] = _validate_routing_mode(routing_mode)
                    changes.append(f"routingMode → {routing_mode}")
        except ValueError as e:
            return ActionResult(ok=False, error=str(e))

        def_changed = any(v is not None for v in (schedule, timezone, channel, prompt))
        new_definition: JobDefinition | None = None
        if def_changed:
            current = job.definition
            try:
                new_definition = JobDefinition(
                    schedule=schedule if schedule is not None else current.schedule,
                    timezone=timezone if timezone is not None else current.timezone,
                    channel=channel if channel is not None else current.channel,
                    prompt=prompt if prompt is not None else current.prompt,
                    trigger_type=current.trigger_type,
                )
                validate_definition(new_definition)
            except (CronConfigError, ValueError) as e:
                return ActionResult(ok=False, error=f"Invalid cron definition: {e}")

            if schedule:
                updates["cadence"] = detect_cadence(schedule)
                changes.append(f"schedule → {schedule}")
            if timezone is not None:
                changes.append(f"timezone → {timezone}")
            if channel is not None:
                changes.append(f"channel → {channel}")
            if prompt is not None:
                changes.append("prompt updated")
            updates.update({
                "schedule": new_definition.schedule,
                "timezone": new_definition.timezone,
                "channel": new_definition.channel,
                "prompt": new_definition.prompt,
            })

        # chain is re-validated under the store write lock
        recheck = (lambda: validate_chain(chain, self.store, cron_id)) if chain else None
        try:
            await self.store.upsert_record(cron_id, record.job_key, updates, check=recheck)
        except CronConfigError as e:
            return ActionResult(ok=False, error=str(e))

        if new_definition is not None:
            self.scheduler.register(
                record.job_key, cron_id, job.guild_id, job.name, new_definition,
                enabled=not record.disabled,
            )

        logger.info(f"cron:action:update {cron_id}: {', '.join(changes) or 'no changes'}")
        return ActionResult(ok=True, summary=f"Cron {cron_id} updated: {', '.join(changes) or 'no changes'}")

    # ── Read ─────────────────────────────────────────────────

    def list_jobs(self) -> ActionResult:
        jobs = self.scheduler.list_jobs()
        if not jobs:
            return ActionResult(ok=True, summary="No cron jobs registered.")

        lines = []
        for entry in jobs:
            job = self.scheduler.get_job(entry["id"])
            record = self.store.get_record(entry["cron_id"])
            status = "paused" if record and record.disabled else (record.last_run_status if record else "pending")
            if job is not None and job.running:
                status += " (running)"
            model = (record.effective_model if record else None) or "?"
            runs = record.run_count if record else 0
            next_run = entry["next_run"].isoformat(timespec="minutes") if entry["next_run"] else "N/A"
            line = (
                f"`{entry['cron_id']}` **{entry['name']}** | `{entry['schedule']}` | {status} | "
                f"{model} | {runs} runs | next: {next_run}"
            )
            if record and record.purpose_tags:
                line += f" | {', '.join(record.purpose_tags)}"
            if record and record.chain:
                line += " | chained"
            lines.append(line)
        return ActionResult(ok=True, summary="\n".join(lines))

    def show(self, cron_id: str) -> ActionResult:
        if not cron_id:
            return ActionResult(ok=False, error="cronShow requires cronId")
        record = self.store.get_record(cron_id)
        if record is None:
            return ActionResult(ok=False, error=f'Cron "{cron_id}" not found')

        job = self.scheduler.get_job(record.job_key)
        lines = [f"**Cron: {job.name if job else record.name or 'Unknown'}** (`{cron_id}`)"]
        if job is not None:
            lines.append(f"Schedule: `{job.definition.schedule}` ({job.definition.timezone})")
            next_run = self.scheduler.next_run(job.id)
            lines.append(f"Next run: {next_run.isoformat(timespec='minutes') if next_run else 'N/A'}")
        lines.append(f"Status: {'paused' if record.disabled else 'active'}")
        if job is not None and job.running:
            lines.append("Runtime: running")
        model_line = f"Model: {record.effective_model or 'N/A'}"
        if record.model_override:
            model_line += " (override)"
        lines.append(model_line)
        if record.silent:
            lines.append("Silent: yes")
        if record.routing_mode:
            lines.append(f"Routing: {record.routing_mode}")
        lines.append(f"Cadence: {record.cadence or 'N/A'}")
        lines.append(f"Runs: {record.run_count} | Last: {record.last_run_status}")
        if record.last_run_at:
            lines.append(f"Last run: {record.last_run_at}")
        if record.purpose_tags:
            lines.append(f"Tags: {', '.join(record.purpose_tags)}")
        if record.allowed_actions:
            lines.append(f"Allowed actions: {', '.join(record.allowed_actions)}")
        if record.chain:
            entries = []
            for downstream_id in record.chain:
                downstream = self.store.get_record(downstream_id)
                label = f" ({downstream.name})" if downstream and downstream.name else ""
                entries.append(f"`{downstream_id}`{label}")
            lines.append(f"Chain: {', '.join(entries)}")
        if record.last_error_message:
            lines.append(f"Last error: {record.last_error_message}")
        if record.state:
            state_json = json.dumps(record.state)
            if len(state_json) > STATE_PREVIEW_LIMIT:
                state_json = state_json[:STATE_PREVIEW_LIMIT] + "... (truncated)"
            lines.append(f"State: {state_json}")
        prompt = record.prompt or (job.definition.prompt if job else None)
        if prompt:
            lines.append(f"Prompt: {prompt}")
        return ActionResult(ok=True, summary="\n".join(lines))

    # ── Lifecycle ────────────────────────────────────────────

    async def pause(self, cron_id: str) -> ActionResult:
        if not cron_id:
            return ActionResult(ok=False, error="cronPause requires cronId")
        record = self.store.get_record(cron_id)
        if record is None:
            return ActionResult(ok=False, error=f'Cron "{cron_id}" not found')
        if not self.scheduler.disable(record.job_key):
            return ActionResult(ok=False, error=f'Cron "{cron_id}" not registered in scheduler')
        canceled = self._request_cancel(record.job_key, cron_id)
        await self.store.upsert_record(cron_id, record.job_key, {"disabled": True})
        suffix = " (active run cancel requested)" if canceled else ""
        return ActionResult(ok=True, summary=f"Cron {cron_id} paused{suffix}")

    async def resume(self, cron_id: str) -> ActionResult:
        if not cron_id:
            return ActionResult(ok=False, error="cronResume requires cronId")
        record = self.store.get_record(cron_id)
        if record is None:
            return ActionResult(ok=False, error=f'Cron "{cron_id}" not found')
        if not self.scheduler.enable(record.job_key):
            return ActionResult(ok=False, error=f'Cron "{cron_id}" not registered in scheduler')
        await self.store.upsert_record(cron_id, record.job_key, {"disabled": False})
        return ActionResult(ok=True, summary=f"Cron {cron_id} resumed")

    async def delete(self, cron_id: str) -> ActionResult:
        if not cron_id:
            return ActionResult(ok=False, error="cronDelete requires cronId")
        record = self.store.get_record(cron_id)
        if record is None:
            return ActionResult(ok=False, error=f'Cron "{cron_id}" not found')
        canceled = self._request_cancel(record.job_key, cron_id)
        self.scheduler.unregister(record.job_key)
        await self.store.remove_record(cron_id)
        suffix = " (active run cancel requested)" if canceled else ""
        return ActionResult(ok=True, summary=f"Cron {cron_id} deleted{suffix}")

    async def trigger(self, cron_id: str, force: bool = False) -> ActionResult:
        if not cron_id:
            return ActionResult(ok=False, error="cronTrigger requires cronId")
        record = self.store.get_record(cron_id)
        if record is None:
            return ActionResult(ok=False, error=f'Cron "{cron_id}" not found')
        job = self.scheduler.get_job(record.job_key)
        if job is None:
            return ActionResult(ok=False, error=f'Cron "{cron_id}" not found in scheduler')
        if force:
            return ActionResult(
                ok=False,
                error="cronTrigger force is disabled in actions; use an admin terminal flow for overrides",
            )
        if self.executor is None:
            return ActionResult(ok=False, error="Cron executor not configured")

        task = asyncio.create_task(self.executor.execute(job))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return ActionResult(ok=True, summary=f"Cron {cron_id} triggered (running in background)")

    async def cancel(self, cron_id: str) -> ActionResult:
        record = self.store.get_record(cron_id) if cron_id else None
        if record is None:
            return ActionResult(ok=False, error=f'Cron "{cron_id}" not found')
        if self._request_cancel(record.job_key, cron_id):
            return ActionResult(ok=True, summary=f"Cron {cron_id} cancel requested")
        return ActionResult(ok=True, summary=f"Cron {cron_id} has no active run")

    def _request_cancel(self, job_key: str, cron_id: str) -> bool:
        canceled = self.run_control.request_cancel(job_key)
        if canceled:
            logger.info(f"cron:action requested cancel for in-flight run {cron_id}")
        return canceled

    # ── Action executor bridge ───────────────────────────────

    async def handle(self, directive: ActionDirective, ctx: ActionContext) -> ActionResult:
        """Run a ``cron*`` directive parsed from model output."""
        p = directive.params
        match directive.type:
            case "cronCreate":
                return await self.create(
                    p.get("name", ""), p.get("schedule", ""), p.get("channel", ""), p.get("prompt", ""),
                    timezone=p.get("timezone"), tags=p.get("tags"), model=p.get("model"),
                    allowed_actions=p.get("allowedActions"), chain=p.get("chain"),
                    routing_mode=p.get("routingMode"),
                    guild_id=ctx.guild.id,
                )
            case "cronUpdate":
                return await self.update(
                    p.get("cronId", ""),
                    schedule=p.get("schedule"), timezone=p.get("timezone"),
                    channel=p.get("channel"), prompt=p.get("prompt"), model=p.get("model"),
                    tags=p.get("tags"), silent=p.get("silent"),
                    allowed_actions=p.get("allowedActions"), state=p.get("state"),
                    chain=p.get("chain"),
                    routing_mode=p.get("routingMode"),
                )
            case "cronList":
                return self.list_jobs()
            case "cronShow":
                return self.show(p.get("cronId", ""))
            case "cronPause":
                return await self.pause(p.get("cronId", ""))
            case "cronResume":
                return await self.resume(p.get("cronId", ""))
            case "cronDelete":
                return await self.delete(p.get("cronId", ""))
            case "cronTrigger":
                return await self.trigger(p.get("cronId", ""), bool(p.get("force", False)))
        return ActionResult(ok=False, error=f"Unknown cron action {directive.type}")


def _parse_state(raw: str | dict) -> dict[str, Any]:
    """State override: a JSON object (string or already-decoded)."""
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise CronConfigError("state must be valid JSON") from e
    if not isinstance(parsed, dict):
        raise CronConfigError("state must be a JSON object")
    return parsed


def _validate_routing_mode(raw: str) -> str:
    if raw != "json":
        raise CronConfigError(f'Invalid routingMode "{raw}": must be "json"')
    return raw
