"""Service layer: statement execution and plan summaries."""

from postgres_mcp_tool.services.plan_summary import summarize_plan
from postgres_mcp_tool.services.query_executor import QueryExecutor

__all__ = [
    "QueryExecutor",
    "summarize_plan",
]
