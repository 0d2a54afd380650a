"""Connection configuration and reconnection models."""

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from postgres_mcp_tool.models.errors import ConfigInvalidError
from postgres_mcp_tool.models.target import Target

URL_PATTERN = re.compile(
    r"^(?:jdbc:)?postgres(?:ql)?://([^:/?#@\s]+)(?::(\d+))?/([^?#\s]+)(\?.*)?$"
)
DEFAULT_PORT = 5432


class ConnectionConfig(BaseModel):
    """Validated connection properties for one target.

    Built with :meth:`create`, which collects every problem into a single
    ``ConfigInvalidError`` naming the environment variables to set.
    """

    model_config = ConfigDict(frozen=True)

    target: Target = Field(..., description="Target served by this configuration")
    url: str = Field(..., description="Configured URL")
    username: str = Field(..., description="Database user")
    password: SecretStr = Field(..., description="Database password")
    host: str = Field(..., description="Host parsed from the URL")
    port: int = Field(..., ge=1, le=65535, description="Port parsed from the URL")
    database: str = Field(..., description="Database name parsed from the URL")
    max_pool_size: int = Field(default=10, ge=1, description="Maximum pool size")
    min_idle: int = Field(default=2, ge=0, description="Minimum idle connections")

    @classmethod
    def create(
        cls,
        target: Target,
        url: str | None,
        username: str | None,
        password: str | None,
        max_pool_size: int = 10,
        min_idle: int = 2,
    ) -> "ConnectionConfig":
        """Validate raw properties and build a config.

        Args:
            target: Target the properties belong to.
            url: ``jdbc:postgresql://host:port/db`` or ``postgresql://host:port/db``.
            username: Database user.
            password: Database password.
            max_pool_size: Maximum pool size.
            min_idle: Minimum idle connections, capped at ``max_pool_size``.

        Returns:
            ConnectionConfig: The validated configuration.

        Raises:
            ConfigInvalidError: If a property is missing or the URL is malformed.
        """
        provided = {"url": url, "username": username, "password": password}
        missing = [name for name, value in provided.items() if not value or not value.strip()]
        if missing:
            env_vars = [f"{target.env_prefix}{name.upper()}" for name in missing]
            raise ConfigInvalidError(
                message=(
                    f"Missing connection properties for target '{target}': {', '.join(missing)}. "
                    f"Set {', '.join(env_vars)} (values may reference other variables as "
                    "${NAME}), then call the reconnect tool."
                ),
                details={"target": target.value, "missing": missing, "env_vars": env_vars},
            )

        url = (url or "").strip()
        match = URL_PATTERN.match(url)
        if not match:
            raise ConfigInvalidError(
                message=(
                    f"Invalid URL for target '{target}'. Expected "
                    "jdbc:postgresql://host:port/database or postgresql://host:port/database "
                    f"in {target.env_prefix}URL."
                ),
                details={"target": target.value, "env_var": f"{target.env_prefix}URL"},
            )

        host, port, database, _ = match.groups()
        return cls(
            target=target,
            url=url,
            username=(username or "").strip(),
            password=SecretStr(password or ""),
            host=host,
            port=int(port) if port else DEFAULT_PORT,
            database=database,
            max_pool_size=max_pool_size,
            min_idle=min(min_idle, max_pool_size),
        )

    @property
    def descriptor(self) -> str:
        """Connection descriptor in ``host:port/database`` form."""
        return f"{self.host}:{self.port}/{self.database}"

    @property
    def safe_dsn(self) -> str:
        """Build DSN with masked password for logging."""
        return f"postgresql://{self.username}:***@{self.descriptor}"


class ReconnectionOutcome(BaseModel):
    """Result of one reconnect attempt."""

    target: Target = Field(..., description="Target that was reconnected")
    success: bool = Field(..., description="Whether the target now has a live pool")
    message: str = Field(..., description="Human-readable summary")
    connection_info: str | None = Field(None, description="host:port/database on success")
    error: str | None = Field(None, description="Failure detail")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
