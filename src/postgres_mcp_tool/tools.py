"""Tool implementations behind the MCP surface.

Every tool returns a plain dict: ``{"success": True, ...}`` on success or
``{"success": False, "error": {...}}`` on failure. Errors never escape to the
protocol layer, so the calling agent always gets an actionable message.
"""

import json
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any

from postgres_mcp_tool.config.settings import Settings
from postgres_mcp_tool.db.supervisor import PoolSupervisor
from postgres_mcp_tool.models.errors import (
    ErrorCode,
    ErrorDetail,
    InvalidTargetError,
    PostgresToolError,
    SecurityViolationError,
)
from postgres_mcp_tool.models.target import Target
from postgres_mcp_tool.observability.metrics import metrics
from postgres_mcp_tool.observability.tracing import request_context
from postgres_mcp_tool.security.pii_rewriter import PiiRewriter
from postgres_mcp_tool.security.sensitivity import Classification, SensitivityClassifier
from postgres_mcp_tool.services.plan_summary import summarize_plan

logger = logging.getLogger(__name__)

SELECT_PATTERN = re.compile(r"^\s*SELECT\b", re.IGNORECASE)

SAFE_COMMENT_TEMPLATE = (
    "COMMENT ON COLUMN {table}.{column} IS "
    '\'{{"sensitivity": "internal", "privacy": "non-personal"}}\';'
)


def ensure_select(sql: str) -> str:
    """Reject anything but a SELECT statement.

    Raises:
        SecurityViolationError: If the trimmed statement does not start with SELECT.
    """
    if not sql or not SELECT_PATTERN.match(sql):
        raise SecurityViolationError(
            message="Only SELECT statements are allowed. The statement was not executed.",
            details={"allowed": "SELECT"},
        )
    return sql.strip()


def _target_label(target: str | None) -> str:
    try:
        return Target.parse(target).value
    except InvalidTargetError:
        return "invalid"


class PostgresTools:
    """Dispatches tool calls to the pool supervisor and its per-target services.

    Example:
        >>> tools = PostgresTools(supervisor, get_settings())
        >>> await tools.list_tables(target="release")
        {'success': True, 'target': 'release', 'tables': [...], 'count': 12}
    """

    def __init__(
        self,
        supervisor: PoolSupervisor,
        settings: Settings,
        pii_rewriter: PiiRewriter | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            supervisor: Owner of the per-target pools.
            settings: Application settings (row limits, PII flag).
            pii_rewriter: Rewriter for the protected target; built from settings if omitted.
        """
        self.supervisor = supervisor
        self.settings = settings
        self.pii_rewriter = pii_rewriter or PiiRewriter(settings.pii.protection_enabled)

    async def run_query(
        self, sql: str, target: str | None = None, max_rows: int | None = None
    ) -> dict[str, Any]:
        return await self._invoke(
            "run-query", target, lambda: self._run_query(sql, target, max_rows)
        )

    async def list_tables(self, target: str | None = None) -> dict[str, Any]:
        return await self._invoke("list-tables", target, lambda: self._list_tables(target))

    async def table_schema(self, table: str, target: str | None = None) -> dict[str, Any]:
        return await self._invoke(
            "table-schema", target, lambda: self._table_schema(table, target)
        )

    async def table_relationships(self, table: str, target: str | None = None) -> dict[str, Any]:
        return await self._invoke(
            "table-relationships", target, lambda: self._table_relationships(table, target)
        )

    async def suggest_joins(self, table: str, target: str | None = None) -> dict[str, Any]:
        return await self._invoke(
            "suggest-joins", target, lambda: self._suggest_joins(table, target)
        )

    async def pii_columns(self, table: str, target: str | None = None) -> dict[str, Any]:
        return await self._invoke("pii-columns", target, lambda: self._pii_columns(table, target))

    async def explain_query(self, sql: str, target: str | None = None) -> dict[str, Any]:
        return await self._invoke("explain-query", target, lambda: self._explain_query(sql, target))

    async def database_info(self, target: str | None = None) -> dict[str, Any]:
        return await self._invoke("database-info", target, lambda: self._database_info(target))

    async def connection_stats(self) -> dict[str, Any]:
        return await self._invoke("connection-stats", None, self._connection_stats, label="all")

    async def connection_health(self) -> dict[str, Any]:
        return await self._invoke(
            "connection-health", None, self._connection_health, label="all"
        )

    async def reconnect(
        self, target: str | None = None, test_connection: bool = True
    ) -> dict[str, Any]:
        return await self._invoke(
            "reconnect",
            target,
            lambda: self._reconnect(target, test_connection),
            label=None if target else "all",
        )

    async def _invoke(
        self,
        tool: str,
        target: str | None,
        handler: Callable[[], Awaitable[dict[str, Any]]],
        label: str | None = None,
    ) -> dict[str, Any]:
        """Run one tool call inside a request context and map errors to dicts.

        Args:
            tool: Tool name used in logs and metrics.
            target: Raw target argument as supplied by the caller.
            handler: Coroutine factory producing the success payload.
            label: Metrics target label; derived from ``target`` if omitted.

        Returns:
            dict: Success payload or structured error, both with ``request_id``.
        """
        label = label or _target_label(target)
        async with request_context() as request_id:
            logger.info("Tool call started", extra={"tool": tool, "target": label})
            try:
                payload = await handler()
            except PostgresToolError as e:
                logger.warning(
                    f"Tool '{tool}' failed: {e.message}",
                    extra={"tool": tool, "target": label, "error_code": str(e.code)},
                )
                metrics.increment_tool_request(tool, "error", label)
                return {
                    "success": False,
                    "request_id": request_id,
                    "error": e.to_error_detail().to_dict(),
                }
            except Exception as e:
                logger.exception(f"Unexpected error in tool '{tool}'", extra={"tool": tool})
                metrics.increment_tool_request(tool, "error", label)
                detail = ErrorDetail(
                    code=ErrorCode.INTERNAL_ERROR,
                    message=f"Internal error while running '{tool}': {type(e).__name__}",
                    details={"error": str(e)},
                )
                return {"success": False, "request_id": request_id, "error": detail.to_dict()}

            metrics.increment_tool_request(tool, "success", label)
            logger.info("Tool call completed", extra={"tool": tool, "target": label})
            return {"success": True, "request_id": request_id, **payload}

    def _clamp_rows(self, max_rows: int | None) -> int:
        limit = self.settings.query.max_rows_limit
        if max_rows is None:
            return min(self.settings.query.default_max_rows, limit)
        return max(1, min(max_rows, limit))

    async def _run_query(
        self, sql: str, target: str | None, max_rows: int | None
    ) -> dict[str, Any]:
        sql = ensure_select(sql)
        resolved = Target.parse(target)
        rows = self._clamp_rows(max_rows)
        pool = self.supervisor.get_pool(resolved)

        if self.pii_rewriter.applies_to(resolved):
            filtered, result = await self.pii_rewriter.run(pool, sql, rows)
            return {
                "target": resolved.value,
                **result.to_dict(),
                "pii_filter": filtered.to_dict(),
            }

        result = await pool.executor.execute(sql, max_rows=rows)
        return {"target": resolved.value, **result.to_dict()}

    async def _list_tables(self, target: str | None) -> dict[str, Any]:
        resolved = Target.parse(target)
        tables = await self.supervisor.get_pool(resolved).introspector.list_tables()
        return {
            "target": resolved.value,
            "tables": [{**table.model_dump(), "full_name": table.full_name} for table in tables],
            "count": len(tables),
        }

    async def _table_schema(self, table: str, target: str | None) -> dict[str, Any]:
        resolved = Target.parse(target)
        pool = self.supervisor.get_pool(resolved)
        columns = await pool.introspector.get_columns(table)
        relationships = await pool.relationships.relationships(table)

        column_dicts = [column.model_dump() for column in columns]
        payload: dict[str, Any] = {
            "target": resolved.value,
            "table": table,
            "columns": column_dicts,
            "relationships": relationships.to_dict(),
        }

        if self.pii_rewriter.applies_to(resolved):
            classifications = await SensitivityClassifier(pool.introspector).classify_table(table)
            by_name = {c.column_name: c for c in classifications}
            suggestions = []
            for column in column_dicts:
                classification = by_name.get(column["name"])
                column["classification"] = (
                    classification.classification.value
                    if classification
                    else Classification.UNKNOWN.value
                )
                column["accessible"] = bool(classification and classification.is_safe)
                if classification and classification.classification is Classification.UNKNOWN:
                    suggestions.append(
                        SAFE_COMMENT_TEMPLATE.format(table=table, column=column["name"])
                    )
            payload["pii_protection"] = True
            if suggestions:
                payload["classification_suggestions"] = suggestions
        return payload

    async def _table_relationships(self, table: str, target: str | None) -> dict[str, Any]:
        resolved = Target.parse(target)
        pool = self.supervisor.get_pool(resolved)
        summary = await pool.relationships.relationships(table)
        return {"target": resolved.value, **summary.to_dict()}

    async def _suggest_joins(self, table: str, target: str | None) -> dict[str, Any]:
        resolved = Target.parse(target)
        pool = self.supervisor.get_pool(resolved)
        suggestions = await pool.relationships.join_suggestions(table)
        return {
            "target": resolved.value,
            "table": table,
            "suggestions": [
                {**suggestion.model_dump(), "clause": suggestion.clause}
                for suggestion in suggestions
            ],
        }

    async def _pii_columns(self, table: str, target: str | None) -> dict[str, Any]:
        resolved = Target.parse(target)
        pool = self.supervisor.get_pool(resolved)
        classifications = await SensitivityClassifier(pool.introspector).classify_table(table)

        counts = {classification.value: 0 for classification in Classification}
        for column in classifications:
            counts[column.classification.value] += 1
        return {
            "target": resolved.value,
            "table": table,
            "protection_enabled": self.pii_rewriter.applies_to(resolved),
            "columns": [column.to_dict() for column in classifications],
            "counts": counts,
        }

    async def _explain_query(self, sql: str, target: str | None) -> dict[str, Any]:
        sql = ensure_select(sql)
        resolved = Target.parse(target)
        plan_text = await self.supervisor.get_pool(resolved).executor.explain(sql)
        try:
            plan: Any = json.loads(plan_text)
        except ValueError:
            plan = plan_text
        return {"target": resolved.value, "plan": plan, "summary": summarize_plan(plan_text)}

    async def _database_info(self, target: str | None) -> dict[str, Any]:
        resolved = Target.parse(target)
        info = await self.supervisor.get_pool(resolved).introspector.database_info()
        return {"target": resolved.value, **info.model_dump()}

    async def _connection_stats(self) -> dict[str, Any]:
        return self.supervisor.stats()

    async def _connection_health(self) -> dict[str, Any]:
        health = await self.supervisor.health()
        return {
            "health": {target.value: healthy for target, healthy in health.items()},
            "available_targets": [target.value for target in self.supervisor.available_targets()],
            "all_healthy": bool(health) and all(health.values()),
        }

    async def _reconnect(self, target: str | None, test_connection: bool) -> dict[str, Any]:
        if target is None or not target.strip():
            outcomes = await self.supervisor.reconnect_all(test_connection)
        else:
            outcomes = [await self.supervisor.reconnect(Target.parse(target), test_connection)]

        succeeded = sum(1 for outcome in outcomes if outcome.success)
        return {
            "outcomes": [outcome.to_dict() for outcome in outcomes],
            "succeeded": succeeded,
            "failed": len(outcomes) - succeeded,
            "available_targets": [t.value for t in self.supervisor.available_targets()],
        }
