"""
Centralized settings for taskward.

Manifesto:
    One validated, cached settings object is the only place environment
    variables are read.  The scheduler, stores, logging setup and CLI all
    take their knobs from :class:`TaskwardSettings` instead of parsing
    ``os.environ`` themselves.

Tags:
    taskward, configuration, settings, pydantic, caching, validation

Doc-Types:
    api-reference
"""

from __future__ import annotations

from uuid import uuid4

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TaskwardSettings(BaseSettings):
    """taskward configuration.

    All fields can be set via ``TASKWARD_*`` environment variables (e.g.
    ``TASKWARD_DATABASE_URL=postgresql://...``) or a ``.env`` file.
    List fields take JSON (``TASKWARD_DISABLED_TASKS='["billing"]'``).
    """

    model_config = SettingsConfigDict(
        env_prefix="TASKWARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ─────────────────────────────────────────────────
    database_url: str = Field(default="sqlite:///data/taskward.db")
    database_echo: bool = Field(default=False)

    # ── Scheduler ────────────────────────────────────────────────
    instance_id: str = Field(
        default_factory=lambda: f"taskward-{uuid4().hex[:12]}",
        description="Owner id written to the lock table on non-PostgreSQL stores",
    )
    retry_window_minutes: int = Field(
        default=60,
        ge=1,
        description="How far back a RETRY_SCHEDULED failure still wins over the cron schedule",
    )
    disabled_tasks: list[str] = Field(
        default_factory=list,
        description="Operator kill-switch; ignored for always_enabled tasks",
    )

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        value = value.upper()
        if value not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
            raise ValueError(f"unsupported log level: {value}")
        return value

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        value = value.lower()
        if value not in {"json", "console"}:
            raise ValueError(f"unsupported log format: {value}")
        return value


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: TaskwardSettings | None = None


def get_settings(*, _force_reload: bool = False) -> TaskwardSettings:
    """Load, validate, and cache a :class:`TaskwardSettings` instance."""
    global _settings_cache

    if _settings_cache is None or _force_reload:
        _settings_cache = TaskwardSettings()
    return _settings_cache


def clear_settings_cache() -> None:
    """Forget the cached settings (tests, CLI option overrides)."""
    global _settings_cache
    _settings_cache = None
