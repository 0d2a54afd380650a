"""Unit tests for the tool dispatcher."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from postgres_mcp_tool.config.settings import QueryConfig, Settings
from postgres_mcp_tool.models.connection import ReconnectionOutcome
from postgres_mcp_tool.models.errors import (
    ErrorCode,
    NoConnectionError,
    SecurityViolationError,
)
from postgres_mcp_tool.models.query import QueryResult
from postgres_mcp_tool.models.schema import (
    ColumnInfo,
    JoinSuggestion,
    RelationshipSummary,
    TableSummary,
)
from postgres_mcp_tool.models.target import Target
from postgres_mcp_tool.tools import PostgresTools, ensure_select

SAFE = '{"sensitivity": "internal", "privacy": "non-personal"}'
PERSONAL = '{"sensitivity": "restricted", "privacy": "personal"}'

USER_COLUMNS = [
    ColumnInfo(name="id", data_type="integer", is_nullable=False, comment=SAFE),
    ColumnInfo(name="email", data_type="text", is_nullable=False, comment=PERSONAL),
    ColumnInfo(name="nickname", data_type="text", is_nullable=True),
]


def make_pool(target: Target) -> MagicMock:
    pool = MagicMock()
    pool.target = target
    pool.executor.execute = AsyncMock(
        return_value=QueryResult(
            rows=[{"id": 1}], execution_time_ms=1.5, row_count=1, has_more_rows=False
        )
    )
    pool.executor.explain = AsyncMock(
        return_value=json.dumps([{"Plan": {"Node Type": "Seq Scan", "Relation Name": "users"}}])
    )
    pool.introspector.list_tables = AsyncMock(
        return_value=[TableSummary(name="users", table_type="TABLE")]
    )
    pool.introspector.get_columns = AsyncMock(return_value=USER_COLUMNS)
    pool.introspector.column_comments = AsyncMock(
        return_value={c.name: c.comment for c in USER_COLUMNS if c.comment}
    )
    pool.relationships.relationships = AsyncMock(
        return_value=RelationshipSummary(table_name="users")
    )
    pool.relationships.join_suggestions = AsyncMock(
        return_value=[
            JoinSuggestion(
                from_table="orders", to_table="users", join_condition="orders.user_id = users.id"
            )
        ]
    )
    return pool


@pytest.fixture
def pools() -> dict[Target, MagicMock]:
    return {target: make_pool(target) for target in Target}


@pytest.fixture
def supervisor(pools: dict[Target, MagicMock]) -> MagicMock:
    supervisor = MagicMock()
    supervisor.get_pool.side_effect = lambda target: pools[target]
    supervisor.available_targets.return_value = list(Target)
    return supervisor


@pytest.fixture
def tools(supervisor: MagicMock) -> PostgresTools:
    settings = Settings(query=QueryConfig(default_max_rows=100, max_rows_limit=500))
    return PostgresTools(supervisor, settings)


class TestEnsureSelect:
    """Tests for the SELECT-only guard."""

    def test_select_accepted(self) -> None:
        """Test leading whitespace and case are tolerated."""
        assert ensure_select("  select 1 ") == "select 1"

    @pytest.mark.parametrize(
        "sql",
        [
            "",
            "DELETE FROM users",
            "WITH x AS (SELECT 1) SELECT * FROM x",
            "SELECTED",
            "-- SELECT\nDROP TABLE users",
        ],
    )
    def test_everything_else_rejected(self, sql: str) -> None:
        """Test non-SELECT statements raise SecurityViolationError."""
        with pytest.raises(SecurityViolationError):
            ensure_select(sql)


class TestRunQuery:
    """Tests for the run-query tool."""

    @pytest.mark.asyncio
    async def test_default_target_and_row_cap(
        self, tools: PostgresTools, pools: dict[Target, MagicMock]
    ) -> None:
        """Test that staging and the default row cap are used when omitted."""
        # Act
        result = await tools.run_query("SELECT id FROM users")

        # Assert
        assert result["success"] is True
        assert result["target"] == "staging"
        assert result["rows"] == [{"id": 1}]
        assert result["request_id"]
        assert "pii_filter" not in result
        pools[Target.STAGING].executor.execute.assert_awaited_once_with(
            "SELECT id FROM users", max_rows=100
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("requested", "effective"), [(0, 1), (-5, 1), (10_000, 500)])
    async def test_max_rows_clamped(
        self,
        tools: PostgresTools,
        pools: dict[Target, MagicMock],
        requested: int,
        effective: int,
    ) -> None:
        """Test that max_rows is clamped into the configured range."""
        await tools.run_query("SELECT 1", target="release", max_rows=requested)

        pools[Target.RELEASE].executor.execute.assert_awaited_once_with(
            "SELECT 1", max_rows=effective
        )

    @pytest.mark.asyncio
    async def test_non_select_rejected_before_pool_access(
        self, tools: PostgresTools, supervisor: MagicMock
    ) -> None:
        """Test that a write statement never reaches a pool."""
        result = await tools.run_query("UPDATE users SET email = NULL", target="production")

        assert result["success"] is False
        assert result["error"]["code"] == ErrorCode.SECURITY_VIOLATION
        supervisor.get_pool.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_target(self, tools: PostgresTools) -> None:
        """Test that an unknown target names the supported ones."""
        result = await tools.run_query("SELECT 1", target="qa")

        assert result["error"]["code"] == ErrorCode.INVALID_TARGET
        assert result["error"]["details"]["supported_targets"] == [
            "staging",
            "release",
            "production",
        ]

    @pytest.mark.asyncio
    async def test_missing_pool_points_at_reconnect(
        self, tools: PostgresTools, supervisor: MagicMock
    ) -> None:
        """Test the no-connection error for a target that failed at startup."""
        supervisor.get_pool.side_effect = NoConnectionError("release", ["staging"])

        result = await tools.run_query("SELECT 1", target="release")

        assert result["success"] is False
        assert result["error"]["code"] == ErrorCode.NO_CONNECTION
        assert "reconnect" in result["error"]["message"]

    @pytest.mark.asyncio
    async def test_production_is_filtered(
        self, tools: PostgresTools, pools: dict[Target, MagicMock]
    ) -> None:
        """Test that PII columns are stripped before execution on production."""
        result = await tools.run_query("SELECT id, email FROM users", target="production")

        assert result["success"] is True
        assert result["pii_filter"]["modified"] is True
        assert result["pii_filter"]["removed_items"] == ["email"]
        pools[Target.PRODUCTION].executor.execute.assert_awaited_once_with(
            "SELECT id FROM users", max_rows=100
        )

    @pytest.mark.asyncio
    async def test_production_star_refused(
        self, tools: PostgresTools, pools: dict[Target, MagicMock]
    ) -> None:
        """Test that SELECT * over PII is refused and never executed."""
        result = await tools.run_query("SELECT * FROM users", target="production")

        assert result["error"]["code"] == ErrorCode.UNSAFE_REWRITE
        pools[Target.PRODUCTION].executor.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal(
        self, tools: PostgresTools, pools: dict[Target, MagicMock]
    ) -> None:
        """Test that unexpected exceptions become internal_error dicts."""
        pools[Target.STAGING].executor.execute.side_effect = RuntimeError("boom")

        result = await tools.run_query("SELECT 1")

        assert result["success"] is False
        assert result["error"]["code"] == ErrorCode.INTERNAL_ERROR
        assert "RuntimeError" in result["error"]["message"]


class TestCatalogTools:
    """Tests for the schema and relationship tools."""

    @pytest.mark.asyncio
    async def test_list_tables(self, tools: PostgresTools) -> None:
        """Test table listing with full names."""
        result = await tools.list_tables(target="release")

        assert result["count"] == 1
        assert result["tables"][0]["full_name"] == "public.users"

    @pytest.mark.asyncio
    async def test_table_schema_on_staging_has_no_classification(
        self, tools: PostgresTools
    ) -> None:
        """Test that non-protected targets return plain column metadata."""
        result = await tools.table_schema("users")

        assert [c["name"] for c in result["columns"]] == ["id", "email", "nickname"]
        assert "classification" not in result["columns"][0]
        assert "pii_protection" not in result

    @pytest.mark.asyncio
    async def test_table_schema_on_production_classifies(self, tools: PostgresTools) -> None:
        """Test accessibility flags and annotation suggestions on production."""
        result = await tools.table_schema("users", target="production")

        by_name = {c["name"]: c for c in result["columns"]}
        assert by_name["id"]["accessible"] is True
        assert by_name["email"]["classification"] == "pii"
        assert by_name["email"]["accessible"] is False
        assert by_name["nickname"]["classification"] == "unknown"
        assert result["pii_protection"] is True
        assert result["classification_suggestions"] == [
            "COMMENT ON COLUMN users.nickname IS "
            '\'{"sensitivity": "internal", "privacy": "non-personal"}\';'
        ]

    @pytest.mark.asyncio
    async def test_pii_columns_counts(self, tools: PostgresTools) -> None:
        """Test per-classification counts."""
        result = await tools.pii_columns("users", target="production")

        assert result["counts"] == {"safe": 1, "pii": 1, "unknown": 1}
        assert result["protection_enabled"] is True

    @pytest.mark.asyncio
    async def test_suggest_joins(self, tools: PostgresTools) -> None:
        """Test that rendered join clauses are included."""
        result = await tools.suggest_joins("orders", target="release")

        assert result["suggestions"][0]["clause"] == (
            "INNER JOIN users ON orders.user_id = users.id"
        )

    @pytest.mark.asyncio
    async def test_table_relationships(self, tools: PostgresTools) -> None:
        result = await tools.table_relationships("users")

        assert result["table_name"] == "users"
        assert result["foreign_keys"] == []

    @pytest.mark.asyncio
    async def test_explain_query(self, tools: PostgresTools) -> None:
        """Test that the plan is parsed and summarized."""
        result = await tools.explain_query("SELECT * FROM users", target="release")

        assert result["plan"][0]["Plan"]["Node Type"] == "Seq Scan"
        assert result["summary"] == ["Seq Scan on users"]

    @pytest.mark.asyncio
    async def test_explain_rejects_non_select(self, tools: PostgresTools) -> None:
        result = await tools.explain_query("DROP TABLE users")

        assert result["error"]["code"] == ErrorCode.SECURITY_VIOLATION


class TestConnectionTools:
    """Tests for stats, health and reconnect."""

    @pytest.mark.asyncio
    async def test_connection_health(self, tools: PostgresTools, supervisor: MagicMock) -> None:
        """Test health aggregation."""
        supervisor.health = AsyncMock(
            return_value={Target.STAGING: True, Target.RELEASE: False}
        )

        result = await tools.connection_health()

        assert result["health"] == {"staging": True, "release": False}
        assert result["all_healthy"] is False

    @pytest.mark.asyncio
    async def test_connection_health_with_no_pools(
        self, tools: PostgresTools, supervisor: MagicMock
    ) -> None:
        """Test that an empty pool set is not reported healthy."""
        supervisor.health = AsyncMock(return_value={})
        supervisor.available_targets.return_value = []

        result = await tools.connection_health()

        assert result["all_healthy"] is False
        assert result["available_targets"] == []

    @pytest.mark.asyncio
    async def test_connection_stats_passthrough(
        self, tools: PostgresTools, supervisor: MagicMock
    ) -> None:
        supervisor.stats.return_value = {"status": "no_connections", "pools": {}}

        result = await tools.connection_stats()

        assert result["success"] is True
        assert result["status"] == "no_connections"

    @pytest.mark.asyncio
    async def test_reconnect_all(self, tools: PostgresTools, supervisor: MagicMock) -> None:
        """Test that omitting the target reconnects every target."""
        supervisor.reconnect_all = AsyncMock(
            return_value=[
                ReconnectionOutcome(target=Target.STAGING, success=True, message="ok"),
                ReconnectionOutcome(
                    target=Target.RELEASE, success=False, message="failed", error="refused"
                ),
                ReconnectionOutcome(target=Target.PRODUCTION, success=True, message="ok"),
            ]
        )

        result = await tools.reconnect()

        assert result["succeeded"] == 2
        assert result["failed"] == 1
        assert [o["target"] for o in result["outcomes"]] == ["staging", "release", "production"]
        supervisor.reconnect_all.assert_awaited_once_with(True)

    @pytest.mark.asyncio
    async def test_reconnect_single_target(
        self, tools: PostgresTools, supervisor: MagicMock
    ) -> None:
        """Test reconnecting one named target."""
        supervisor.reconnect = AsyncMock(
            return_value=ReconnectionOutcome(
                target=Target.RELEASE,
                success=True,
                message="ok",
                connection_info="release-db.internal:5432/app",
            )
        )

        result = await tools.reconnect(target="RELEASE", test_connection=False)

        assert result["outcomes"][0]["connection_info"] == "release-db.internal:5432/app"
        supervisor.reconnect.assert_awaited_once_with(Target.RELEASE, False)
