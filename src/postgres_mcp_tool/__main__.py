"""Main entry point for the PostgreSQL MCP tool.

Runs the FastMCP server over stdio. Logs go to stderr so they never mix
with protocol traffic on stdout.
"""

import anyio

from postgres_mcp_tool.server import mcp


def main() -> None:
    """Start the server using stdio transport.

    Example:
        Run with one target configured:
        >>> POSTGRES_STAGING_URL=jdbc:postgresql://localhost:5432/app \\
        ...     POSTGRES_STAGING_USERNAME=reader POSTGRES_STAGING_PASSWORD=secret \\
        ...     python -m postgres_mcp_tool
    """
    anyio.run(mcp.run_stdio_async)


if __name__ == "__main__":
    main()
