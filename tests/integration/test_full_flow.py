"""Integration tests against a live PostgreSQL server.

These run only when ``POSTGRES_STAGING_URL``, ``POSTGRES_STAGING_USERNAME``
and ``POSTGRES_STAGING_PASSWORD`` are exported, for example:

    POSTGRES_STAGING_URL=jdbc:postgresql://localhost:5432/postgres \\
    POSTGRES_STAGING_USERNAME=postgres POSTGRES_STAGING_PASSWORD=postgres \\
    pytest -m integration
"""

import os

import pytest

from postgres_mcp_tool.server import lifespan, mcp

# Captured at import time; the autouse fixture in conftest clears POSTGRES_* per test.
LIVE_ENVIRONMENT = {
    name: value for name, value in os.environ.items() if name.startswith("POSTGRES_STAGING_")
}

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not {"POSTGRES_STAGING_URL", "POSTGRES_STAGING_USERNAME", "POSTGRES_STAGING_PASSWORD"}
        <= LIVE_ENVIRONMENT.keys(),
        reason="POSTGRES_STAGING_URL, _USERNAME and _PASSWORD are not set",
    ),
]


@pytest.fixture(autouse=True)
def live_environment(clean_target_environment, monkeypatch: pytest.MonkeyPatch) -> None:
    for name, value in LIVE_ENVIRONMENT.items():
        monkeypatch.setenv(name, value)


class TestFullFlow:
    """End-to-end tool calls through the real lifespan."""

    @pytest.mark.asyncio
    async def test_staging_connects(self) -> None:
        """Test that the staging target is connected on startup."""
        async with lifespan(mcp) as tools:
            health = await tools.connection_health()

        assert health["success"] is True
        assert health["health"]["staging"] is True

    @pytest.mark.asyncio
    async def test_query_with_row_cap(self) -> None:
        """Test execution, the row cap and the has_more_rows flag."""
        async with lifespan(mcp) as tools:
            result = await tools.run_query(
                "SELECT g AS n FROM generate_series(1, 5) AS g", max_rows=3
            )

        assert result["success"] is True
        assert result["row_count"] == 3
        assert result["has_more_rows"] is True
        assert [row["n"] for row in result["rows"]] == [1, 2, 3]
        assert result["columns"][0]["name"] == "n"

    @pytest.mark.asyncio
    async def test_driver_error_omits_statement(self) -> None:
        """Test that a server-side failure maps to query_failed without echoing SQL."""
        async with lifespan(mcp) as tools:
            result = await tools.run_query("SELECT nextval('mcp_missing_sequence')")

        assert result["success"] is False
        assert result["error"]["code"] == "query_failed"
        assert "SELECT nextval" not in result["error"]["message"]

    @pytest.mark.asyncio
    async def test_catalog_tools(self) -> None:
        """Test listing tables and describing the first one found."""
        async with lifespan(mcp) as tools:
            listing = await tools.list_tables()
            assert listing["success"] is True
            if not listing["tables"]:
                pytest.skip("staging database has no user tables")

            table = listing["tables"][0]["full_name"]
            schema = await tools.table_schema(table)
            relationships = await tools.table_relationships(table)
            info = await tools.database_info()

        assert schema["success"] is True
        assert schema["columns"]
        assert relationships["success"] is True
        assert info["database_name"]

    @pytest.mark.asyncio
    async def test_explain_query(self) -> None:
        async with lifespan(mcp) as tools:
            result = await tools.explain_query("SELECT 1")

        assert result["success"] is True
        assert result["summary"]

    @pytest.mark.asyncio
    async def test_reconnect_staging(self) -> None:
        """Test that reconnecting replaces the pool and keeps the target available."""
        async with lifespan(mcp) as tools:
            result = await tools.reconnect(target="staging")
            stats = await tools.connection_stats()

        assert result["succeeded"] == 1
        assert stats["available_targets"] == ["staging"]
