"""Model runtimes."""

from cronbot.core.runtime.base import ImageData, RuntimeAdapter, RuntimeEvent, resolve_model
from cronbot.core.runtime.litellm import LiteLLMRuntime, setup_provider

__all__ = [
    "ImageData",
    "LiteLLMRuntime",
    "RuntimeAdapter",
    "RuntimeEvent",
    "resolve_model",
    "setup_provider",
]
