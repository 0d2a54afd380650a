"""Configuration management for the PostgreSQL MCP tool.

Settings are loaded from environment variables (and an optional ``.env``
file) using pydantic-settings. Connection credentials are read per target
with the ``POSTGRES_<TARGET>_`` prefix, for example ``POSTGRES_STAGING_URL``.
Any value may point at another variable with ``${NAME}``; an unset variable
resolves to missing.
"""

import os
import re
from typing import Any, Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from postgres_mcp_tool.models.errors import ConfigInvalidError
from postgres_mcp_tool.models.target import Target

ENV_REFERENCE_PATTERN = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")


def resolve_env_reference(value: Any) -> Any:
    """Resolve a ``${NAME}`` reference against the process environment.

    Args:
        value: Raw configuration value.

    Returns:
        The referenced variable's value, ``None`` when the reference is unset
        or blank, or the value unchanged when it is not a reference.

    Example:
        >>> os.environ["PG_PASS"] = "secret"
        >>> resolve_env_reference("${PG_PASS}")
        'secret'
    """
    if not isinstance(value, str):
        return value
    stripped = value.strip()
    match = ENV_REFERENCE_PATTERN.match(stripped)
    if match:
        stripped = os.environ.get(match.group(1), "").strip()
    return stripped or None


class TargetSettings(BaseSettings):
    """Connection properties for one deployment target.

    Instantiate with ``_env_prefix=target.env_prefix``; every instantiation
    reads the environment again, so values are never cached.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    url: str | None = Field(
        default=None, description="PostgreSQL URL (jdbc:postgresql:// or postgresql://)"
    )
    username: str | None = Field(default=None, description="Database user")
    password: str | None = Field(default=None, description="Database password")
    max_pool_size: int | None = Field(
        default=None, ge=1, le=100, description="Per-target maximum pool size override"
    )
    min_idle: int | None = Field(
        default=None, ge=0, le=100, description="Per-target minimum idle connections override"
    )

    @field_validator("url", "username", "password", "max_pool_size", "min_idle", mode="before")
    @classmethod
    def resolve_references(cls, v: Any) -> Any:
        """Resolve ``${NAME}`` indirection before type validation."""
        return resolve_env_reference(v)

    @property
    def missing_fields(self) -> list[str]:
        """Names of required connection properties that are absent."""
        return [name for name in ("url", "username", "password") if not getattr(self, name)]

    @property
    def is_complete(self) -> bool:
        """Whether URL, username and password are all present."""
        return not self.missing_fields


class PoolConfig(BaseSettings):
    """Connection pool tuning shared by every target."""

    model_config = SettingsConfigDict(env_prefix="POOL_")

    max_size: int = Field(default=10, ge=1, le=100, description="Default maximum pool size")
    min_idle: int = Field(default=2, ge=0, le=100, description="Default minimum idle connections")
    connect_timeout: float = Field(
        default=5.0, ge=0.5, le=60.0, description="Timeout for opening one connection in seconds"
    )
    acquire_timeout: float = Field(
        default=5.0, ge=0.1, le=120.0, description="Pool acquire timeout in seconds"
    )
    idle_timeout: float = Field(
        default=300.0,
        ge=0.0,
        le=86400.0,
        description="Idle connections are closed after this many seconds (0 disables)",
    )
    command_timeout: float = Field(
        default=30.0, ge=1.0, le=300.0, description="Statement execution timeout in seconds"
    )
    health_check_timeout: float = Field(
        default=5.0, ge=0.5, le=60.0, description="Validation query timeout in seconds"
    )
    startup_timeout: float = Field(
        default=10.0, ge=1.0, le=120.0, description="Timeout for building a pool in seconds"
    )
    close_timeout: float = Field(
        default=10.0, ge=0.5, le=120.0, description="Graceful close timeout before termination"
    )


class PiiConfig(BaseSettings):
    """PII protection settings for the protected target."""

    model_config = SettingsConfigDict(env_prefix="PII_")

    protection_enabled: bool = Field(
        default=True, description="Filter PII and unclassified columns on the protected target"
    )


class QueryConfig(BaseSettings):
    """Row limits applied by the query tools."""

    model_config = SettingsConfigDict(env_prefix="QUERY_")

    default_max_rows: int = Field(default=100, ge=1, le=100000, description="Default row cap")
    max_rows_limit: int = Field(
        default=10000, ge=1, le=100000, description="Upper bound for caller-supplied row caps"
    )


class ObservabilityConfig(BaseSettings):
    """Observability and monitoring configuration."""

    model_config = SettingsConfigDict(env_prefix="OBSERVABILITY_")

    metrics_enabled: bool = Field(default=False, description="Enable Prometheus metrics endpoint")
    metrics_port: int = Field(
        default=9090, ge=1024, le=65535, description="Metrics HTTP server port"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_format: Literal["json", "text"] = Field(default="text", description="Log format")


class Settings(BaseSettings):
    """Main application settings aggregating all config sections."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    pool: PoolConfig = Field(default_factory=PoolConfig)
    pii: PiiConfig = Field(default_factory=PiiConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


class ConfigurationSource:
    """Resolves named configuration values for each target.

    Target credentials are re-read on every call so that a reconnect picks
    up values exported after the process started.

    Example:
        >>> source = ConfigurationSource(get_settings())
        >>> source.target_settings(Target.STAGING).url
        'jdbc:postgresql://localhost:5432/app'
    """

    def __init__(self, settings: "Settings", env_file: str | None = ".env") -> None:
        self.settings = settings
        self.env_file = env_file

    def target_settings(self, target: Target) -> TargetSettings:
        """Load the connection properties for ``target``.

        Raises:
            ConfigInvalidError: If a value fails validation (e.g. a non-numeric pool size).
        """
        try:
            return TargetSettings(_env_prefix=target.env_prefix, _env_file=self.env_file)
        except ValidationError as e:
            fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
            raise ConfigInvalidError(
                message=(
                    f"Invalid configuration for target '{target}': "
                    f"check {', '.join(target.env_prefix + f.upper() for f in fields)}"
                ),
                details={"target": target.value, "fields": fields},
            ) from e

    def pool_config(self) -> PoolConfig:
        return self.settings.pool

    @property
    def pii_protection_enabled(self) -> bool:
        return self.settings.pii.protection_enabled


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create global settings instance.

    Returns:
        Settings: The global settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset global settings instance. Useful for testing."""
    global _settings
    _settings = None
