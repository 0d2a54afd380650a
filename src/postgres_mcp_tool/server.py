"""FastMCP server exposing read-only PostgreSQL tools for several targets.

The lifespan builds the pool supervisor and connects every configured
target. Unreachable targets do not prevent startup; they can be connected
later with the reconnect tool.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastmcp import Context, FastMCP
from pydantic import Field

from postgres_mcp_tool.config.settings import ConfigurationSource, get_settings
from postgres_mcp_tool.config.targets import TargetRegistry
from postgres_mcp_tool.db.supervisor import PoolSupervisor
from postgres_mcp_tool.observability.logging import configure_logging
from postgres_mcp_tool.observability.metrics import metrics
from postgres_mcp_tool.tools import PostgresTools

logger = logging.getLogger(__name__)

TargetParam = Annotated[
    str | None,
    Field(description="Target database: staging (default), release or production"),
]
TableParam = Annotated[
    str, Field(description="Table name, optionally schema-qualified (e.g. sales.orders)")
]
SqlParam = Annotated[str, Field(description="A single SELECT statement")]


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[PostgresTools]:
    """Connect all configured targets on startup and close their pools on shutdown.

    Args:
        server: The FastMCP server instance.

    Yields:
        PostgresTools: Dispatcher available to tools as the lifespan context.
    """
    settings = get_settings()
    configure_logging(
        level=settings.observability.log_level,
        log_format=settings.observability.log_format,
    )

    if settings.observability.metrics_enabled:
        try:
            metrics.start_metrics_server(settings.observability.metrics_port)
            logger.info(f"Metrics server started on port {settings.observability.metrics_port}")
        except OSError as e:
            logger.warning(f"Failed to start metrics server: {e!s}")

    source = ConfigurationSource(settings)
    supervisor = PoolSupervisor(TargetRegistry(source), source.pool_config())
    await supervisor.initialize_all()
    tools = PostgresTools(supervisor, settings)
    logger.info("PostgreSQL MCP tool ready")

    try:
        yield tools
    finally:
        logger.info("Shutting down PostgreSQL MCP tool")
        await supervisor.shutdown()


mcp = FastMCP("postgres-mcp-tool", lifespan=lifespan)


def _tools(ctx: Context) -> PostgresTools:
    return ctx.request_context.lifespan_context


async def run_query(
    ctx: Context,
    sql: SqlParam,
    target: TargetParam = None,
    max_rows: Annotated[
        int | None, Field(description="Maximum rows to return (default 100)", ge=1)
    ] = None,
) -> dict[str, Any]:
    """Execute a read-only SELECT statement.

    On the production target, columns not marked non-personal are removed
    from the select list before execution.
    """
    return await _tools(ctx).run_query(sql, target=target, max_rows=max_rows)


async def list_tables(ctx: Context, target: TargetParam = None) -> dict[str, Any]:
    """List tables, views and materialized views visible on a target."""
    return await _tools(ctx).list_tables(target=target)


async def table_schema(
    ctx: Context, table: TableParam, target: TargetParam = None
) -> dict[str, Any]:
    """Describe a table's columns and keys.

    On production, each column also carries its PII classification.
    """
    return await _tools(ctx).table_schema(table, target=target)


async def table_relationships(
    ctx: Context, table: TableParam, target: TargetParam = None
) -> dict[str, Any]:
    """Show primary keys, foreign keys (both directions) and unique constraints of a table."""
    return await _tools(ctx).table_relationships(table, target=target)


async def suggest_joins(
    ctx: Context, table: TableParam, target: TargetParam = None
) -> dict[str, Any]:
    """Suggest JOIN clauses derived from the table's foreign keys."""
    return await _tools(ctx).suggest_joins(table, target=target)


async def pii_columns(
    ctx: Context, table: TableParam, target: TargetParam = None
) -> dict[str, Any]:
    """Classify each column of a table as safe, pii or unknown from its comment."""
    return await _tools(ctx).pii_columns(table, target=target)


async def explain_query(ctx: Context, sql: SqlParam, target: TargetParam = None) -> dict[str, Any]:
    """Run EXPLAIN ANALYZE on a SELECT statement and summarize the plan."""
    return await _tools(ctx).explain_query(sql, target=target)


async def database_info(ctx: Context, target: TargetParam = None) -> dict[str, Any]:
    """Show the database name, server version and user behind a target."""
    return await _tools(ctx).database_info(target=target)


async def connection_stats(ctx: Context) -> dict[str, Any]:
    """Show pool statistics for every connected target."""
    return await _tools(ctx).connection_stats()


async def connection_health(ctx: Context) -> dict[str, Any]:
    """Run the validation query on every connected target."""
    return await _tools(ctx).connection_health()


async def reconnect(
    ctx: Context,
    target: Annotated[
        str | None, Field(description="Target to reconnect; omit to reconnect all targets")
    ] = None,
    test_connection: Annotated[
        bool, Field(description="Run a validation query before using the new pool")
    ] = True,
) -> dict[str, Any]:
    """Rebuild connection pools after network/VPN access is restored or credentials change."""
    return await _tools(ctx).reconnect(target=target, test_connection=test_connection)


TOOLS = {
    "run-query": run_query,
    "list-tables": list_tables,
    "table-schema": table_schema,
    "table-relationships": table_relationships,
    "suggest-joins": suggest_joins,
    "pii-columns": pii_columns,
    "explain-query": explain_query,
    "database-info": database_info,
    "connection-stats": connection_stats,
    "connection-health": connection_health,
    "reconnect": reconnect,
}

for _name, _func in TOOLS.items():
    mcp.tool(name=_name)(_func)
