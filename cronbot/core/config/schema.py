"""cronbot configuration schema — YAML + Pydantic + env override."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


# ════════════════════════════════════════════════════════════
# SUB-CONFIGS (nested BaseModel)
# ════════════════════════════════════════════════════════════


class ProviderConfig(BaseModel):
    """Single LLM provider."""

    api_key: str = ""
    api_base: str | None = None


class ProvidersConfig(BaseModel):
    """LLM providers (LiteLLM multi-provider)."""

    anthropic: ProviderConfig = Field(default_factory=ProviderConfig)
    openai: ProviderConfig = Field(default_factory=ProviderConfig)
    openrouter: ProviderConfig = Field(default_factory=ProviderConfig)
    deepseek: ProviderConfig = Field(default_factory=ProviderConfig)
    groq: ProviderConfig = Field(default_factory=ProviderConfig)
    gemini: ProviderConfig = Field(default_factory=ProviderConfig)


class AssistantConfig(BaseModel):
    """Runtime defaults shared by every job (assistant.*)."""

    workspace: str = "./workspace"
    model: str = "anthropic/claude-sonnet-4-5-20250929"
    temperature: float = 0.7
    tools: list[str] = Field(default_factory=list)
    # Tier aliases usable in job `model` fields (e.g. model: fast)
    model_tiers: dict[str, str] = Field(
        default_factory=lambda: {
            "fast": "anthropic/claude-haiku-4-5",
            "capable": "anthropic/claude-opus-4-1",
        }
    )


class DiscordConfig(BaseModel):
    token: str = ""
    api_base: str = "https://discord.com/api/v10"
    guild_id: str = ""
    status_channel: str = ""
    max_message_length: int = 2000


class CronConfig(BaseModel):
    enabled: bool = True
    exec_model: str = ""  # empty → falls back to assistant.model
    timeout_s: int = 600
    stats_path: str = "data/cron/run-stats.json"
    lock_dir: str = "data/cron/locks"  # empty → cross-process lock disabled
    allow_channel_ids: list[str] = Field(default_factory=list)
    default_timezone: str = ""
    auto_tag: bool = False
    auto_tag_model: str = "fast"
    purpose_tags: list[str] = Field(
        default_factory=lambda: [
            "reporting",
            "monitoring",
            "cleanup",
            "notifications",
            "sync",
            "backup",
            "maintenance",
            "analytics",
        ]
    )
    post_errors: bool = True
    silent_threshold: int = 80
    actions_enabled: bool = True


# ════════════════════════════════════════════════════════════
# ROOT CONFIG (BaseSettings — env + .env support)
# ════════════════════════════════════════════════════════════


class Config(BaseSettings):
    """
    Root configuration.

    Priority: env vars > .env > YAML (init kwargs) > defaults

    Env override examples:
        CRONBOT_CRON__TIMEOUT_S=120
        CRONBOT_DISCORD__TOKEN=...
        CRONBOT_PROVIDERS__ANTHROPIC__API_KEY=sk-...
    """

    model_config = SettingsConfigDict(
        env_prefix="CRONBOT_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    assistant: AssistantConfig = Field(default_factory=AssistantConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    cron: CronConfig = Field(default_factory=CronConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML arrives as init kwargs; env must win over it
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    # ── Computed properties ─────────────────────────────────

    @property
    def workspace_path(self) -> Path:
        return Path(self.assistant.workspace).expanduser().resolve()

    @property
    def stats_path(self) -> Path:
        return Path(self.cron.stats_path)

    @property
    def lock_path(self) -> Path | None:
        """Lock directory, or None when the cross-process lock is disabled."""
        return Path(self.cron.lock_dir) if self.cron.lock_dir else None

    @property
    def cron_model(self) -> str:
        return self.cron.exec_model or self.assistant.model

    def get_api_base(self, model: str) -> str | None:
        """API base URL for a concrete model string, if its provider sets one."""
        model_name = model.lower()
        if "openrouter" in model_name:
            return self.providers.openrouter.api_base or "https://openrouter.ai/api/v1"
        for name in ProvidersConfig.model_fields:
            provider = getattr(self.providers, name)
            if name in model_name and provider.api_base:
                return provider.api_base
        return None
