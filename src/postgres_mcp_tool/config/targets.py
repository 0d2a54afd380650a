"""Registry of deployment targets and their connection configuration."""

from postgres_mcp_tool.config.settings import ConfigurationSource
from postgres_mcp_tool.models.connection import ConnectionConfig
from postgres_mcp_tool.models.errors import ConfigInvalidError
from postgres_mcp_tool.models.target import PROTECTED_TARGET, Target


class TargetRegistry:
    """Enumerates targets and validates which have complete credentials.

    Configuration is read from the source on every call; nothing is cached.

    Example:
        >>> registry = TargetRegistry(ConfigurationSource(get_settings()))
        >>> registry.configured_targets()
        [<Target.STAGING: 'staging'>]
    """

    def __init__(self, source: ConfigurationSource) -> None:
        self.source = source

    def all_targets(self) -> list[Target]:
        return list(Target)

    def has_complete_configuration(self, target: Target) -> bool:
        """Check that URL, username and password are present for ``target``."""
        try:
            return self.source.target_settings(target).is_complete
        except ConfigInvalidError:
            return False

    def configured_targets(self) -> list[Target]:
        return [target for target in Target if self.has_complete_configuration(target)]

    def connection_config(self, target: Target) -> ConnectionConfig:
        """Build a fresh connection config for ``target``.

        Per-target pool overrides win over the shared pool defaults.

        Raises:
            ConfigInvalidError: If properties are missing or malformed.
        """
        properties = self.source.target_settings(target)
        pool_config = self.source.pool_config()
        return ConnectionConfig.create(
            target=target,
            url=properties.url,
            username=properties.username,
            password=properties.password,
            max_pool_size=properties.max_pool_size or pool_config.max_size,
            min_idle=(
                properties.min_idle if properties.min_idle is not None else pool_config.min_idle
            ),
        )

    @staticmethod
    def is_protected(target: Target) -> bool:
        return target is PROTECTED_TARGET
