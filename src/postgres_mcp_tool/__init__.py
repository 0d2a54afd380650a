"""PostgreSQL MCP tool - read-only access to several database targets.

An MCP server exposing introspection and SELECT execution against staging,
release and production databases, with per-target connection pools,
on-demand reconnection and PII column filtering on production.
"""

__version__ = "0.1.0"

from postgres_mcp_tool.config.settings import Settings, get_settings
from postgres_mcp_tool.models.errors import (
    ErrorCode,
    NoConnectionError,
    PostgresToolError,
    SecurityViolationError,
    UnsafeRewriteError,
)
from postgres_mcp_tool.models.query import PiiFilteredQuery, QueryResult
from postgres_mcp_tool.models.target import Target

__all__ = [
    "__version__",
    # Config
    "Settings",
    "get_settings",
    # Models
    "PiiFilteredQuery",
    "QueryResult",
    "Target",
    # Errors
    "ErrorCode",
    "NoConnectionError",
    "PostgresToolError",
    "SecurityViolationError",
    "UnsafeRewriteError",
]
