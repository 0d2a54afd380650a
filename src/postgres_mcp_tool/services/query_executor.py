"""Read-only statement execution against a target pool.

Statements run inside a read-only transaction through a server-side cursor,
so at most ``max_rows + 1`` rows ever leave the server.
"""

import asyncio
import datetime
import decimal
import json
import logging
import time
import uuid
from typing import TYPE_CHECKING, Any

import asyncpg
from asyncpg import Connection

from postgres_mcp_tool.models.errors import (
    ExecutionTimeoutError,
    QueryFailedError,
)
from postgres_mcp_tool.models.query import ColumnDescriptor, QueryResult
from postgres_mcp_tool.observability.metrics import metrics

if TYPE_CHECKING:
    from postgres_mcp_tool.db.pool import TargetPool

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROWS = 100
EXPLAIN_PREFIX = "EXPLAIN (ANALYZE, BUFFERS, FORMAT JSON) "


class QueryExecutor:
    """Executes single statements against one target's pool.

    Example:
        >>> executor = QueryExecutor(pool, statement_timeout=30.0)
        >>> result = await executor.execute("SELECT id, name FROM users", max_rows=10)
        >>> result.row_count, result.has_more_rows
        (10, True)
    """

    def __init__(self, pool: "TargetPool", statement_timeout: float = 30.0) -> None:
        """Initialize query executor.

        Args:
            pool: Pool of the target the executor is bound to.
            statement_timeout: Per-statement timeout in seconds, enforced both
                server-side and client-side.
        """
        self.pool = pool
        self.statement_timeout = statement_timeout

    async def execute(self, sql: str, max_rows: int = DEFAULT_MAX_ROWS) -> QueryResult:
        """Execute a statement and return at most ``max_rows`` rows.

        One row past the cap is fetched only to set ``has_more_rows``; it is
        never included in the result.

        Args:
            sql: Statement to execute.
            max_rows: Hard ceiling on returned rows.

        Returns:
            QueryResult: Columns, rows, timing and truncation flag.

        Raises:
            PoolExhaustedError: If no connection frees up in time.
            ExecutionTimeoutError: If the statement exceeds the timeout.
            QueryFailedError: If the server rejects the statement.
        """
        if max_rows < 1:
            raise ValueError("max_rows must be at least 1")

        try:
            async with (
                asyncio.timeout(self.statement_timeout),
                self.pool.acquire() as connection,
                connection.transaction(readonly=True),
            ):
                await self._set_statement_timeout(connection)
                start = time.perf_counter()
                statement = await connection.prepare(sql)
                columns = [
                    ColumnDescriptor(name=attr.name, data_type=attr.type.name)
                    for attr in statement.get_attributes()
                ]
                cursor = await statement.cursor()
                records = await cursor.fetch(max_rows)
                # Look-ahead row: only decides has_more_rows, never returned
                lookahead = await cursor.fetchrow()
                elapsed = time.perf_counter() - start
        except (TimeoutError, asyncpg.QueryCanceledError) as e:
            raise self._timeout_error() from e
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise self._query_failed(e, "execute") from e

        metrics.observe_query_duration(str(self.pool.target), elapsed)
        rows = self._serialize_results([dict(record) for record in records])
        logger.debug(
            "Statement executed",
            extra={"target": str(self.pool.target), "row_count": len(rows)},
        )
        return QueryResult(
            columns=columns,
            rows=rows,
            execution_time_ms=round(elapsed * 1000, 3),
            row_count=len(rows),
            has_more_rows=lookahead is not None,
        )

    async def explain(self, sql: str) -> str:
        """Run ``EXPLAIN (ANALYZE, BUFFERS, FORMAT JSON)`` for a statement.

        The read-only transaction keeps ANALYZE from persisting anything.

        Returns:
            str: Raw JSON plan text.
        """
        try:
            async with (
                asyncio.timeout(self.statement_timeout),
                self.pool.acquire() as connection,
                connection.transaction(readonly=True),
            ):
                await self._set_statement_timeout(connection)
                plan = await connection.fetchval(EXPLAIN_PREFIX + sql)
        except (TimeoutError, asyncpg.QueryCanceledError) as e:
            raise self._timeout_error() from e
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise self._query_failed(e, "explain") from e

        if isinstance(plan, str):
            return plan
        return json.dumps(plan)

    async def _set_statement_timeout(self, conn: Connection) -> None:
        # SET LOCAL ends with the transaction, before the connection returns to the pool
        timeout_ms = int(self.statement_timeout * 1000)
        await conn.execute(f"SET LOCAL statement_timeout = {timeout_ms}")

    def _timeout_error(self) -> ExecutionTimeoutError:
        target = str(self.pool.target)
        return ExecutionTimeoutError(
            message=(
                f"Query on target '{target}' exceeded the timeout of "
                f"{self.statement_timeout} seconds. Add filters or a LIMIT."
            ),
            details={"target": target, "timeout_seconds": self.statement_timeout},
        )

    def _query_failed(self, error: Exception, operation: str) -> QueryFailedError:
        # Statement text is withheld: literals in it may be sensitive
        target = str(self.pool.target)
        return QueryFailedError(
            message=f"Query failed on target '{target}': {error!s}",
            details={
                "target": target,
                "operation": operation,
                "sqlstate": getattr(error, "sqlstate", None),
                "error_type": type(error).__name__,
            },
        )

    def _serialize_results(self, results: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Serialize PostgreSQL-specific types to JSON-compatible types.

        Handles datetime types (ISO strings), timedelta (str), Decimal (float),
        UUID (str), bytes (hex), and nested lists and dicts.

        Args:
            results: List of row dictionaries with potentially unserializable values.

        Returns:
            list: Results with all values serialized to JSON-compatible types.
        """

        def serialize_value(value: Any) -> Any:
            if value is None:
                return None
            if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
                return value.isoformat()
            if isinstance(value, datetime.timedelta):
                return str(value)
            if isinstance(value, decimal.Decimal):
                return float(value)
            if isinstance(value, uuid.UUID):
                return str(value)
            if isinstance(value, (bytes, bytearray, memoryview)):
                return bytes(value).hex()
            if isinstance(value, (list, tuple)):
                return [serialize_value(v) for v in value]
            if isinstance(value, dict):
                return {k: serialize_value(v) for k, v in value.items()}
            if isinstance(value, (str, int, float, bool)):
                return value
            # Ranges, geometric types, network addresses, etc.
            return str(value)

        return [{key: serialize_value(value) for key, value in row.items()} for row in results]


