"""Pydantic configuration schema for mailgate.

This module defines the configuration schema that mirrors config.yaml
structure. Environment variables (see mailgate.config.ENV_OVERRIDES) are
applied on top of the YAML before validation.

Usage:
    from mailgate.config_schema import AppConfig

    config = AppConfig(**yaml_data)
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1

DEFAULT_DANGEROUS_ACTIONS = [
    "send-mail",
    "save-draft",
    "create-event",
    "gmail.send",
    "gmail.saveDraft",
    "calendar.createEvent",
]


class DatabaseConfig(BaseModel):
    """SQLite store configuration."""

    path: str = Field(
        default="data/mailgate.db",
        description="Path to the SQLite database file",
    )

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Ensure database path doesn't contain path traversal."""
        if not v or not v.strip():
            raise ValueError("Database path cannot be empty")
        if ".." in v:
            raise ValueError("Database path cannot contain '..' (path traversal)")
        return v


class SafetyConfig(BaseModel):
    """Confirmation gate and expiry watcher configuration."""

    enforce: bool = Field(
        default=True,
        description="Enforce the confirmation gate (disable only in controlled test environments)",
    )
    dangerous_actions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_DANGEROUS_ACTIONS),
        description="Actions that require a confirmed ledger record before running",
    )
    execution_ttl_minutes: int = Field(
        default=10,
        ge=1,
        le=1440,
        description="How long a confirmed action may wait before it is auto-canceled",
    )
    expiry_sweep_seconds: int = Field(
        default=30,
        ge=5,
        le=3600,
        description="Expiry watcher interval (seconds)",
    )
    hash_salt: str | None = Field(
        default=None,
        description="Salt for hashing user ids in audit logs (unset = user ids not logged)",
    )


class CacheConfig(BaseModel):
    """Scoped list cache and sweeper configuration."""

    list_ttl_minutes: int = Field(
        default=5,
        ge=1,
        le=1440,
        description="Lifetime of a cached list result (minutes)",
    )
    sweep_seconds: int = Field(
        default=30,
        ge=5,
        le=86400,
        description="Base interval between cache sweeps (seconds)",
    )
    sweep_grace_seconds: int = Field(
        default=60,
        ge=0,
        le=86400,
        description="Keep rows this long past expiry before deleting them",
    )
    sweep_jitter_seconds: int = Field(
        default=15,
        ge=0,
        le=3600,
        description="Random +/- offset applied to each sweep interval",
    )
    max_delete_per_sweep: int = Field(
        default=1000,
        ge=1,
        le=100000,
        description="Maximum rows deleted by a single sweep",
    )


class NotificationsConfig(BaseModel):
    """Where expiry notices are delivered."""

    webhook_url: str | None = Field(
        default=None,
        description="Chat webhook receiving {channel, thread_ts, text}; unset = log only",
    )
    timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="HTTP timeout for webhook delivery",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    json_output: bool = Field(
        default=True,
        description="Emit JSON logs (server); CLI commands always use console output",
    )


class AppConfig(BaseModel):
    """Root configuration schema for mailgate.

    If validation fails on startup, the application exits with a clear error.
    """

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
