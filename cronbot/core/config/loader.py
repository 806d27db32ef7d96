"""Configuration loader — YAML file + env override."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from cronbot.core.config.schema import Config

_DEFAULT_NAMES = ("config.yaml", "config.yml")


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Load configuration.

    Resolution order for config file:
        1. Explicit ``config_path`` argument
        2. ``CRONBOT_CONFIG`` env variable
        3. ``./config.yaml`` (or ``./config.yml``) in cwd

    Values priority (handled by pydantic-settings):
        env vars  >  .env file  >  YAML  >  defaults
    """
    return Config(**_load_yaml(_resolve_path(config_path)))


def _resolve_path(config_path: str | Path | None = None) -> Path | None:
    if config_path:
        return Path(config_path).expanduser()

    env = os.environ.get("CRONBOT_CONFIG")
    if env:
        return Path(env).expanduser()

    for name in _DEFAULT_NAMES:
        candidate = Path(name)
        if candidate.exists():
            return candidate
    return None


def _load_yaml(path: Path | None) -> dict[str, Any]:
    """Load YAML mapping; a missing file yields an empty dict."""
    if not path or not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping")
    return data
