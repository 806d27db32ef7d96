"""AI-assisted purpose tagging and model-tier classification for new jobs."""

from __future__ import annotations

import asyncio

from loguru import logger

from cronbot.core.cron.types import CadenceTag
from cronbot.core.runtime.base import RuntimeAdapter

CLASSIFY_TIMEOUT_S = 15.0


async def _ask(runtime: RuntimeAdapter, prompt: str, model: str, cwd: str | None) -> str | None:
    """Single short invocation. Returns None on runtime error or timeout."""
    final_text = ""
    delta_text = ""
    try:
        async with asyncio.timeout(CLASSIFY_TIMEOUT_S):
            async for event in runtime.invoke(
                prompt, model, cwd=cwd, tools=[], timeout_s=CLASSIFY_TIMEOUT_S
            ):
                if event.type == "text_final":
                    final_text = event.text
                elif event.type == "text_delta":
                    delta_text += event.text
                elif event.type == "error":
                    logger.debug(f"Classifier runtime error: {event.message}")
                    return None
    except TimeoutError:
        logger.debug("Classifier timed out")
        return None
    return (final_text or delta_text).strip()


async def auto_tag_cron(
    runtime: RuntimeAdapter,
    name: str,
    prompt: str,
    available_tags: list[str],
    model: str = "fast",
    cwd: str | None = None,
) -> list[str]:
    """Pick 1-3 purpose tags from ``available_tags``. Empty list on failure."""
    if not available_tags:
        return []

    classify_prompt = (
        "Classify this scheduled task into 1-3 tags from the following list. "
        "Reply with ONLY comma-separated tag names, nothing else.\n\n"
        f"Available tags: {', '.join(available_tags)}\n\n"
        "Rules:\n"
        "- reporting: generates reports, summaries, digests\n"
        "- monitoring: health checks, alerts, status polling\n"
        "- cleanup: deletes old data, archives, purges\n"
        "- notifications: sends reminders, alerts, announcements\n"
        "- sync: data synchronization, imports, exports\n"
        "- backup: backups, snapshots, data preservation\n"
        "- maintenance: updates, migrations, housekeeping\n"
        "- analytics: metrics, tracking, dashboards\n\n"
        f"Job name: {name}\n"
        f"Instruction: {prompt[:500]}"
    )
    output = await _ask(runtime, classify_prompt, model, cwd)
    if not output:
        return []

    by_lower = {tag.lower(): tag for tag in available_tags}
    result: list[str] = []
    for candidate in output.replace("\n", ",").split(","):
        match = by_lower.get(candidate.strip().lower())
        if match and match not in result:
            result.append(match)
        if len(result) >= 3:
            break
    return result


async def classify_cron_model(
    runtime: RuntimeAdapter,
    name: str,
    prompt: str,
    cadence: CadenceTag,
    model: str = "fast",
    cwd: str | None = None,
) -> str:
    """Return the ``fast`` or ``capable`` tier for a job.

    Jobs running more than once a day always get ``fast`` without a
    runtime call.
    """
    if cadence in ("frequent", "hourly"):
        return "fast"

    classify_prompt = (
        "Does this scheduled task require advanced reasoning (complex analysis, "
        "multi-step planning, nuanced writing) or can it be handled with basic "
        "capabilities (simple lookups, templated responses, data formatting)?\n\n"
        'Reply with ONLY one word: "capable" or "fast"\n\n'
        f"Job name: {name}\n"
        f"Instruction: {prompt[:500]}"
    )
    output = await _ask(runtime, classify_prompt, model, cwd)
    return "capable" if output and output.lower() == "capable" else "fast"
