"""Per-target connection pool.

This module wraps one asyncpg pool together with the target it serves and
the services bound to it.
"""

import asyncio
import datetime
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg
from asyncpg import Connection, Pool

from postgres_mcp_tool.config.settings import PoolConfig
from postgres_mcp_tool.db.introspection import SchemaIntrospector
from postgres_mcp_tool.db.relationships import RelationshipInspector
from postgres_mcp_tool.models.connection import ConnectionConfig
from postgres_mcp_tool.models.errors import (
    ConnectTimeoutError,
    DatabaseConnectionError,
    PoolExhaustedError,
)
from postgres_mcp_tool.models.target import Target
from postgres_mcp_tool.services.query_executor import QueryExecutor

logger = logging.getLogger(__name__)

VALIDATION_QUERY = "SELECT 1"


async def create_pool(config: ConnectionConfig, pool_config: PoolConfig) -> Pool:
    """Create an asyncpg pool for one target.

    Every session starts with ``default_transaction_read_only`` on, so no
    statement issued through the pool can write.

    Args:
        config: Target connection properties and pool sizing.
        pool_config: Shared timeouts.

    Returns:
        Pool: An asyncpg connection pool instance.

    Raises:
        asyncpg.PostgresError: If connection to the database fails.
        OSError: If the host is unreachable.
    """
    pool = await asyncpg.create_pool(
        host=config.host,
        port=config.port,
        database=config.database,
        user=config.username,
        password=config.password.get_secret_value(),
        min_size=config.min_idle,
        max_size=config.max_pool_size,
        timeout=pool_config.connect_timeout,
        command_timeout=pool_config.command_timeout,
        max_inactive_connection_lifetime=pool_config.idle_timeout,
        server_settings={
            "default_transaction_read_only": "on",
            "application_name": f"postgres-mcp-tool-{config.target}",
        },
    )

    if pool is None:
        raise RuntimeError(f"Failed to create connection pool for {config.target}")

    return pool


class TargetPool:
    """A live pool for one target plus the services bound to it.

    Owned by :class:`~postgres_mcp_tool.db.supervisor.PoolSupervisor`; created
    on startup or reconnect and closed on reconnect or shutdown.

    Attributes:
        target: Target served by this pool.
        config: Connection properties used to build the pool.
        executor: Cached query executor bound to this pool.
        introspector: Catalog reader bound to this pool.
        relationships: Key and join inspector bound to this pool.
        last_used: UTC time of the last lookup through the supervisor.
    """

    def __init__(self, config: ConnectionConfig, pool: Pool, pool_config: PoolConfig) -> None:
        self.target: Target = config.target
        self.config = config
        self.pool_config = pool_config
        self._pool = pool
        self._closed = False
        self.last_used = datetime.datetime.now(datetime.UTC)
        self.executor = QueryExecutor(self, statement_timeout=pool_config.command_timeout)
        self.introspector = SchemaIntrospector(self)
        self.relationships = RelationshipInspector(self)

    @property
    def name(self) -> str:
        return f"PostgreSQL-{self.target}"

    @property
    def is_closed(self) -> bool:
        return self._closed or self._pool.is_closing()

    @classmethod
    async def open(cls, config: ConnectionConfig, pool_config: PoolConfig) -> "TargetPool":
        """Open a pool, bounded by the startup timeout.

        Args:
            config: Target connection properties.
            pool_config: Shared pool timeouts.

        Returns:
            TargetPool: The opened pool; not yet health-checked.

        Raises:
            ConnectTimeoutError: If the pool does not open in time.
            DatabaseConnectionError: If the server refuses or is unreachable.
        """
        logger.info(f"Opening pool for '{config.target}' at {config.descriptor}")
        try:
            async with asyncio.timeout(pool_config.startup_timeout):
                pool = await create_pool(config, pool_config)
        except TimeoutError as e:
            raise ConnectTimeoutError(
                message=(
                    f"Connection timeout for target '{config.target}' ({config.descriptor}) "
                    f"after {pool_config.startup_timeout} seconds. Check network/VPN access, "
                    "then call the reconnect tool."
                ),
                details={"target": config.target.value, "connection_info": config.descriptor},
            ) from e
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            raise DatabaseConnectionError(
                message=(
                    f"Could not connect to target '{config.target}' ({config.descriptor}): {e!s}. "
                    f"Check {config.target.env_prefix}* settings and network access, "
                    "then call the reconnect tool."
                ),
                details={
                    "target": config.target.value,
                    "connection_info": config.descriptor,
                    "error_type": type(e).__name__,
                },
            ) from e
        return cls(config, pool, pool_config)

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Connection]:
        """Borrow a connection, waiting at most ``acquire_timeout`` seconds.

        Raises:
            PoolExhaustedError: If no connection becomes available in time.
        """
        try:
            connection = await self._pool.acquire(timeout=self.pool_config.acquire_timeout)
        except TimeoutError as e:
            raise PoolExhaustedError(
                message=(
                    f"All {self.config.max_pool_size} connections for target '{self.target}' "
                    f"are busy (waited {self.pool_config.acquire_timeout} seconds). Retry shortly."
                ),
                details={
                    "target": self.target.value,
                    "max_pool_size": self.config.max_pool_size,
                },
            ) from e
        try:
            yield connection
        finally:
            await self._pool.release(connection)

    async def health_check(self) -> bool:
        """Run the validation query; never raises.

        Returns:
            bool: True if ``SELECT 1`` answered within the health check timeout.
        """
        try:
            async with asyncio.timeout(self.pool_config.health_check_timeout):
                async with self.acquire() as connection:
                    value = await connection.fetchval(VALIDATION_QUERY)
        except Exception as e:
            logger.warning(f"Health check failed for '{self.target}': {type(e).__name__}: {e!s}")
            return False
        return value == 1

    def touch(self) -> None:
        self.last_used = datetime.datetime.now(datetime.UTC)

    def stats(self) -> dict[str, Any]:
        total = self._pool.get_size()
        idle = self._pool.get_idle_size()
        return {
            "pool_name": self.name,
            "connection_info": self.config.descriptor,
            "active_connections": total - idle,
            "idle_connections": idle,
            "total_connections": total,
            "maximum_pool_size": self._pool.get_max_size(),
            "minimum_idle": self._pool.get_min_size(),
            "acquire_timeout_seconds": self.pool_config.acquire_timeout,
            "idle_timeout_seconds": self.pool_config.idle_timeout,
            "last_used": self.last_used.isoformat(),
            "is_closed": self.is_closed,
        }

    async def close(self) -> None:
        """Close every connection before returning.

        Tries a graceful close first and terminates the pool if that does not
        finish within ``close_timeout`` or fails.
        """
        if self._closed:
            return
        self._closed = True
        try:
            await asyncio.wait_for(self._pool.close(), timeout=self.pool_config.close_timeout)
            logger.info(f"Connection pool for '{self.target}' closed gracefully")
        except TimeoutError:
            logger.warning(f"Graceful close timed out for '{self.target}', forcing termination")
            self._pool.terminate()
        except Exception as e:
            logger.error(f"Error closing pool for '{self.target}': {e!s}")
            self._pool.terminate()
