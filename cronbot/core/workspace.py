"""Workspace context — persona files and permissions.yaml."""

from __future__ import annotations

from pathlib import Path

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

CONTEXT_FILES = ("SOUL.md", "IDENTITY.md", "USER.md", "TOOLS.md")
BOOTSTRAP_FILE = "BOOTSTRAP.md"
PERMISSIONS_FILE = "permissions.yaml"
# Present in the template IDENTITY.md until the agent fills it in
IDENTITY_TEMPLATE_MARKER = "*(pick something you like)*"


class ContextFile(BaseModel):
    name: str
    content: str


class WorkspacePermissions(BaseModel):
    """permissions.yaml — optional tool narrowing plus a prompt note."""

    tier: str = "full"
    tools: list[str] | None = None  # None = every runtime tool
    note: str | None = None


def is_onboarding_complete(workspace: Path) -> bool:
    try:
        content = (workspace / "IDENTITY.md").read_text(encoding="utf-8")
    except OSError:
        return False
    return IDENTITY_TEMPLATE_MARKER not in content


def load_context_files(workspace: str | Path) -> list[ContextFile]:
    """Read the persona files that exist, in fixed order.

    BOOTSTRAP.md leads while onboarding is incomplete. Unreadable files
    are skipped.
    """
    workspace = Path(workspace)
    names: list[str] = []
    if not is_onboarding_complete(workspace):
        names.append(BOOTSTRAP_FILE)
    names.extend(CONTEXT_FILES)

    files: list[ContextFile] = []
    for name in names:
        path = workspace / name
        if not path.is_file():
            continue
        try:
            files.append(ContextFile(name=name, content=path.read_text(encoding="utf-8")))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Context file {path} unreadable: {e}")
    return files


def inline_context_files(files: list[ContextFile]) -> str:
    return "\n\n".join(f"--- {f.name} ---\n{f.content.rstrip()}" for f in files)


def load_permissions(workspace: str | Path) -> WorkspacePermissions | None:
    """Load permissions.yaml. Missing file → None; malformed raises ValueError."""
    path = Path(workspace) / PERMISSIONS_FILE
    if not path.exists():
        return None
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping")
    try:
        return WorkspacePermissions.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"{path}: {e}") from e


def resolve_tools(perms: WorkspacePermissions | None, runtime_tools: list[str]) -> list[str]:
    """Intersect runtime tools with the permitted set, keeping runtime order."""
    if perms is None or perms.tools is None:
        return list(runtime_tools)
    allowed = set(perms.tools)
    return [t for t in runtime_tools if t in allowed]
