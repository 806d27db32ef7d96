"""Runtime adapter — strategy interface for model invocations."""

from __future__ import annotations

import abc
from collections.abc import AsyncIterator, Mapping
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel

if TYPE_CHECKING:
    from cronbot.core.cron.run_control import CancelToken

EventType = Literal["text_delta", "text_final", "image_data", "error", "done"]


class ImageData(BaseModel):
    """Base64 image produced by the runtime."""

    media_type: str = "image/png"
    base64: str


class RuntimeEvent(BaseModel):
    """One item of a runtime stream."""

    type: EventType
    text: str = ""
    image: ImageData | None = None
    message: str = ""


class RuntimeAdapter(abc.ABC):
    """Abstract base for runtimes that stream events for a single prompt."""

    id: str = "runtime"

    @abc.abstractmethod
    def invoke(
        self,
        prompt: str,
        model: str,
        cwd: str | None = None,
        tools: list[str] | None = None,
        timeout_s: float | None = None,
        cancel: CancelToken | None = None,
    ) -> AsyncIterator[RuntimeEvent]:
        """Stream events. Implementations stop promptly once ``cancel`` is set."""
        ...


def resolve_model(name: str | None, tiers: Mapping[str, str], default: str) -> str:
    """Map tier aliases (``fast``, ``capable``) to model strings; pass others through."""
    if not name:
        return default
    return tiers.get(name, name)
