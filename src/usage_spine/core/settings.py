"""
Centralized settings for usage-spine.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.
    One cached :class:`UsageSpineSettings` object is the single source of
    truth for paths, endpoints and push tuning; CLI flags override it per
    invocation, never by mutating it.

Features:
    - **Pydantic validation:** batch size, retry ceiling and recheck cadence
      are range-checked at startup
    - **Environment-driven:** ``USAGE_SPINE_*`` variables and ``.env`` files
    - **Derived paths:** database URL and credentials file default to the
      data directory

Examples:
    >>> import os
    >>> os.environ["USAGE_SPINE_BATCH_SIZE"] = "250"
    >>> get_settings(_force_reload=True).batch_size
    250

Tags:
    settings, configuration, pydantic, environment, usage-spine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class UsageSpineSettings(BaseSettings):
    """usage-spine configuration.

    All fields can be set via ``USAGE_SPINE_*`` environment variables
    (e.g. ``USAGE_SPINE_MAX_RETRIES=3``) or a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="USAGE_SPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".usage-spine",
        description="Directory holding the local database and credentials",
    )
    database_url: str = Field(default="", description="SQLAlchemy URL; defaults to <data_dir>/usage.db")
    database_echo: bool = Field(default=False)
    credentials_file: Path | None = Field(
        default=None, description="Credential JSON; defaults to <data_dir>/user_info.json"
    )

    # ── Remote service ───────────────────────────────────────────
    api_base_url: str = Field(default="https://api.roiai.fyi")
    push_path: str = Field(default="/api/v1/cli/upsync")
    health_path: str = Field(default="/api/v1/cli/health")
    timeout_seconds: float = Field(default=30.0, gt=0)

    # ── Push tuning ──────────────────────────────────────────────
    batch_size: int = Field(default=1000, ge=1)
    max_retries: int = Field(default=5, ge=1)
    auth_recheck_interval: int = Field(default=10, ge=1, description="Re-verify auth every N batches")

    # ── Reporting ────────────────────────────────────────────────
    max_failed_shown: int = Field(default=5, ge=0)
    retry_warning_threshold: int = Field(default=3, ge=1)
    recent_history_limit: int = Field(default=10, ge=1)
    sample_failures_limit: int = Field(default=5, ge=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="WARNING")
    log_format: str = Field(default="console")

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        if value not in ("console", "json"):
            raise ValueError("log_format must be 'console' or 'json'")
        return value

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def _derive_paths(self) -> UsageSpineSettings:
        if not self.database_url:
            self.database_url = f"sqlite:///{self.data_dir / 'usage.db'}"
        if self.credentials_file is None:
            self.credentials_file = self.data_dir / "user_info.json"
        return self

    # ── Derived properties ───────────────────────────────────────

    @property
    def push_url(self) -> str:
        return f"{self.api_base_url}{self.push_path}"

    @property
    def health_url(self) -> str:
        return f"{self.api_base_url}{self.health_path}"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


_settings_cache: dict[str, UsageSpineSettings] = {}


def get_settings(*, _force_reload: bool = False) -> UsageSpineSettings:
    """Load, validate, and cache a :class:`UsageSpineSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = UsageSpineSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()
