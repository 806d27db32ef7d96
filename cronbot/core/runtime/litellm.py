"""LiteLLM runtime — streaming completions via litellm.acompletion."""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING, Any

import litellm
from loguru import logger

from cronbot.core.runtime.base import RuntimeAdapter, RuntimeEvent

if TYPE_CHECKING:
    from cronbot.core.config.schema import Config
    from cronbot.core.cron.run_control import CancelToken

# Suppress litellm noise
litellm.suppress_debug_info = True


def setup_provider(config: Config) -> None:
    """Set env vars for LiteLLM from config. Call once at startup."""
    for env, provider in [
        ("ANTHROPIC_API_KEY", config.providers.anthropic),
        ("OPENAI_API_KEY", config.providers.openai),
        ("OPENROUTER_API_KEY", config.providers.openrouter),
        ("DEEPSEEK_API_KEY", config.providers.deepseek),
        ("GROQ_API_KEY", config.providers.groq),
        ("GEMINI_API_KEY", config.providers.gemini),
    ]:
        if provider.api_key:
            os.environ.setdefault(env, provider.api_key)


class LiteLLMRuntime(RuntimeAdapter):
    """Single-turn streaming runtime.

    Tool names are forwarded as request metadata only; this runtime has no
    local tool execution.
    """

    id = "litellm"

    def __init__(
        self,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        api_base_for: Callable[[str], str | None] | None = None,
    ):
        self.temperature = temperature
        self.max_tokens = max_tokens
        # model string → provider api_base (Config.get_api_base)
        self.api_base_for = api_base_for

    async def invoke(
        self,
        prompt: str,
        model: str,
        cwd: str | None = None,
        tools: list[str] | None = None,
        timeout_s: float | None = None,
        cancel: CancelToken | None = None,
    ) -> AsyncIterator[RuntimeEvent]:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": True,
        }
        if timeout_s:
            kwargs["timeout"] = timeout_s
        api_base = self.api_base_for(model) if self.api_base_for else None
        if api_base:
            kwargs["api_base"] = api_base
        if tools or cwd:
            kwargs["metadata"] = {"tools": list(tools or []), "cwd": cwd}

        parts: list[str] = []
        try:
            stream = await litellm.acompletion(**kwargs)
            async for chunk in _until_cancelled(stream, cancel):
                delta = _chunk_text(chunk)
                if delta:
                    parts.append(delta)
                    yield RuntimeEvent(type="text_delta", text=delta)
        except asyncio.TimeoutError:
            yield RuntimeEvent(type="error", message=f"runtime timed out after {timeout_s}s")
            return
        except Exception as e:
            logger.error(f"LLM error: {e}")
            yield RuntimeEvent(type="error", message=str(e) or type(e).__name__)
            return

        if cancel is not None and cancel.cancelled:
            return
        yield RuntimeEvent(type="text_final", text="".join(parts))
        yield RuntimeEvent(type="done")


async def _until_cancelled(stream: Any, cancel: CancelToken | None) -> AsyncIterator[Any]:
    """Iterate ``stream``, stopping as soon as ``cancel`` fires."""
    iterator = stream.__aiter__()
    if cancel is None:
        async for chunk in iterator:
            yield chunk
        return

    waiter = asyncio.ensure_future(cancel.wait())
    try:
        while not cancel.cancelled:
            step = asyncio.ensure_future(iterator.__anext__())
            done, _ = await asyncio.wait({step, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if step not in done:
                step.cancel()
                break
            try:
                chunk = step.result()
            except StopAsyncIteration:
                break
            yield chunk
    finally:
        waiter.cancel()
        aclose = getattr(iterator, "aclose", None)
        if cancel.cancelled and aclose is not None:
            try:
                await aclose()
            except Exception as e:  # stream already torn down
                logger.debug(f"Stream close after cancel failed: {e}")


def _chunk_text(chunk: Any) -> str:
    try:
        return chunk.choices[0].delta.content or ""
    except (AttributeError, IndexError):
        return ""
