"""Deployment targets served by the tool."""

from enum import StrEnum

from postgres_mcp_tool.models.errors import InvalidTargetError


class Target(StrEnum):
    """Closed, ordered set of deployment targets.

    Declaration order is the order used for startup and bulk reconnection.
    """

    STAGING = "staging"
    RELEASE = "release"
    PRODUCTION = "production"

    @property
    def env_prefix(self) -> str:
        """Environment variable prefix holding this target's connection properties."""
        return f"POSTGRES_{self.name}_"

    @property
    def is_protected(self) -> bool:
        return self is PROTECTED_TARGET

    @classmethod
    def parse(cls, value: "str | Target | None") -> "Target":
        """Parse a caller-supplied target name.

        Args:
            value: Target name (case-insensitive), a Target, or None for the default.

        Returns:
            Target: The matching target.

        Raises:
            InvalidTargetError: If the name is not a supported target.

        Example:
            >>> Target.parse("Production")
            <Target.PRODUCTION: 'production'>
            >>> Target.parse(None)
            <Target.STAGING: 'staging'>
        """
        if value is None:
            return DEFAULT_TARGET
        if isinstance(value, Target):
            return value
        normalized = value.strip().lower()
        if not normalized:
            return DEFAULT_TARGET
        try:
            return cls(normalized)
        except ValueError as e:
            raise InvalidTargetError(value, [t.value for t in cls]) from e


DEFAULT_TARGET = Target.STAGING
PROTECTED_TARGET = Target.PRODUCTION
