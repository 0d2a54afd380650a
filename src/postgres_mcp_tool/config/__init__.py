"""Configuration management module."""

from postgres_mcp_tool.config.settings import (
    ConfigurationSource,
    ObservabilityConfig,
    PiiConfig,
    PoolConfig,
    QueryConfig,
    Settings,
    TargetSettings,
    get_settings,
    reset_settings,
)
from postgres_mcp_tool.config.targets import TargetRegistry

__all__ = [
    "ConfigurationSource",
    "ObservabilityConfig",
    "PiiConfig",
    "PoolConfig",
    "QueryConfig",
    "Settings",
    "TargetRegistry",
    "TargetSettings",
    "get_settings",
    "reset_settings",
]
