"""Observability for the PostgreSQL MCP tool.

Provides Prometheus metrics, stderr logging with JSON or text output, and
request ID propagation. Formatters and filters are imported from their
submodules.

Example:
    >>> from postgres_mcp_tool.observability import configure_logging, metrics, request_context
    >>> configure_logging(level="INFO", log_format="json")
    >>> async with request_context():
    ...     metrics.increment_tool_request(tool="list-tables", status="success", target="staging")
"""

from postgres_mcp_tool.observability.logging import configure_logging
from postgres_mcp_tool.observability.metrics import metrics
from postgres_mcp_tool.observability.tracing import request_context

__all__ = ["configure_logging", "metrics", "request_context"]
