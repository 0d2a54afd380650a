"""Pool lifecycle across all targets.

The supervisor owns the Target -> TargetPool map. Startup tolerates any
number of unreachable targets (the usual cause is a VPN that is down), and
each target can be reconnected later without restarting the process.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from postgres_mcp_tool.config.settings import PoolConfig
from postgres_mcp_tool.config.targets import TargetRegistry
from postgres_mcp_tool.db.pool import TargetPool
from postgres_mcp_tool.models.connection import ConnectionConfig, ReconnectionOutcome
from postgres_mcp_tool.models.errors import (
    DatabaseConnectionError,
    NoConnectionError,
    PostgresToolError,
)
from postgres_mcp_tool.models.target import Target
from postgres_mcp_tool.observability.metrics import metrics
from postgres_mcp_tool.services.query_executor import QueryExecutor

logger = logging.getLogger(__name__)

PoolFactory = Callable[[ConnectionConfig, PoolConfig], Awaitable[TargetPool]]

DEGRADED_START_GUIDANCE = (
    "No database connections established. The server keeps running in degraded mode. "
    "Check VPN/network access and the POSTGRES_<TARGET>_URL, _USERNAME and _PASSWORD "
    "variables, then call the reconnect tool."
)


class PoolSupervisor:
    """Owns one pool per reachable target.

    Lookups read the map without locking; structural changes for a target are
    serialized by that target's lock, so a reconnect never races another
    reconnect of the same target.

    Example:
        >>> supervisor = PoolSupervisor(registry, settings.pool)
        >>> await supervisor.initialize_all()
        [<Target.STAGING: 'staging'>]
        >>> executor = supervisor.get_executor(Target.STAGING)
    """

    def __init__(
        self,
        registry: TargetRegistry,
        pool_config: PoolConfig,
        pool_factory: PoolFactory | None = None,
    ) -> None:
        """Initialize the supervisor.

        Args:
            registry: Source of per-target connection configuration.
            pool_config: Shared pool timeouts.
            pool_factory: Coroutine building a pool; defaults to ``TargetPool.open``.
        """
        self.registry = registry
        self.pool_config = pool_config
        self._pool_factory: PoolFactory = pool_factory or TargetPool.open
        self._pools: dict[Target, TargetPool] = {}
        self._locks: dict[Target, asyncio.Lock] = {target: asyncio.Lock() for target in Target}

    async def initialize_all(self) -> list[Target]:
        """Connect every configured target; never raises.

        Returns:
            list[Target]: Targets with a live, healthy pool, in enum order.
        """
        for target in self.registry.all_targets():
            if not self.registry.has_complete_configuration(target):
                logger.warning(
                    f"Skipping target '{target}': set {target.env_prefix}URL, "
                    f"{target.env_prefix}USERNAME and {target.env_prefix}PASSWORD to enable it"
                )
                continue
            try:
                self._pools[target] = await self._connect(target, test_connection=True)
                logger.info(f"Connected to target '{target}'")
            except PostgresToolError as e:
                logger.warning(f"Failed to connect to target '{target}': {e.message}")
            except Exception:
                logger.exception(f"Unexpected error connecting to target '{target}'")

        available = self.available_targets()
        if available:
            logger.info(
                f"Initialized {len(available)} target(s): {', '.join(t.value for t in available)}"
            )
        else:
            logger.warning(DEGRADED_START_GUIDANCE)
        return available

    def available_targets(self) -> list[Target]:
        return [target for target in Target if target in self._pools]

    def get_pool(self, target: Target) -> TargetPool:
        """Return the live pool for ``target`` and mark it used.

        Raises:
            NoConnectionError: If the target has no live pool.
        """
        pool = self._pools.get(target)
        if pool is None:
            raise NoConnectionError(target, [t.value for t in self.available_targets()])
        pool.touch()
        return pool

    def get_executor(self, target: Target) -> QueryExecutor:
        return self.get_pool(target).executor

    async def reconnect(self, target: Target, test_connection: bool = True) -> ReconnectionOutcome:
        """Replace the pool for ``target`` with a freshly configured one.

        Any existing pool is closed first. Configuration is re-read, so
        credentials exported after startup take effect. Never raises.

        Args:
            target: Target to reconnect.
            test_connection: Run the validation query before registering.

        Returns:
            ReconnectionOutcome: Success with connection info, or the failure reason.
        """
        async with self._locks[target]:
            existing = self._pools.pop(target, None)
            if existing is not None:
                logger.info(f"Closing existing pool for target '{target}'")
                try:
                    await existing.close()
                except Exception as e:
                    logger.warning(f"Error closing old pool for target '{target}': {e!s}")

            try:
                pool = await self._connect(target, test_connection)
            except PostgresToolError as e:
                logger.warning(f"Reconnect to target '{target}' failed: {e.message}")
                metrics.increment_reconnect(target.value, success=False)
                return ReconnectionOutcome(
                    target=target,
                    success=False,
                    message=f"Failed to reconnect to target '{target}'",
                    error=e.message,
                )
            except Exception as e:
                logger.exception(f"Unexpected error reconnecting to target '{target}'")
                metrics.increment_reconnect(target.value, success=False)
                return ReconnectionOutcome(
                    target=target,
                    success=False,
                    message=f"Failed to reconnect to target '{target}'",
                    error=f"{type(e).__name__}: {e!s}",
                )

            self._pools[target] = pool
            metrics.increment_reconnect(target.value, success=True)
            logger.info(f"Reconnected to target '{target}' at {pool.config.descriptor}")
            return ReconnectionOutcome(
                target=target,
                success=True,
                message=f"Successfully connected to target '{target}'",
                connection_info=pool.config.descriptor,
            )

    async def reconnect_all(self, test_connection: bool = True) -> list[ReconnectionOutcome]:
        """Reconnect every target sequentially in enum order.

        Returns:
            list[ReconnectionOutcome]: Exactly one outcome per target.
        """
        outcomes = [await self.reconnect(target, test_connection) for target in Target]
        succeeded = sum(1 for outcome in outcomes if outcome.success)
        logger.info(f"Reconnection complete: {succeeded}/{len(outcomes)} targets connected")
        return outcomes

    async def health(self) -> dict[Target, bool]:
        """Health-check every registered pool without repairing anything."""
        results: dict[Target, bool] = {}
        for target in self.available_targets():
            pool = self._pools.get(target)
            if pool is None:
                continue
            healthy = await pool.health_check()
            metrics.set_pool_healthy(target.value, healthy)
            results[target] = healthy
        return results

    def stats(self) -> dict[str, Any]:
        """Per-pool statistics plus aggregate utilization.

        With no pools registered the status is ``no_connections`` so callers
        can tell "never connected" apart from "connected but idle".
        """
        stats: dict[str, Any] = {
            "total_targets": len(Target),
            "available_targets": [target.value for target in self.available_targets()],
        }

        if not self._pools:
            stats.update(
                {
                    "status": "no_connections",
                    "message": DEGRADED_START_GUIDANCE,
                    "pools": {},
                    "summary": {
                        "total_active_connections": 0,
                        "total_idle_connections": 0,
                        "total_maximum_connections": 0,
                        "connection_utilization_percent": 0,
                    },
                }
            )
            return stats

        pools: dict[str, dict[str, Any]] = {}
        for target in self.available_targets():
            pool = self._pools.get(target)
            if pool is None:
                continue
            pool_stats = pool.stats()
            metrics.set_pool_connections(
                target.value, pool_stats["active_connections"], pool_stats["idle_connections"]
            )
            pools[target.value] = pool_stats

        total_active = sum(p["active_connections"] for p in pools.values())
        total_idle = sum(p["idle_connections"] for p in pools.values())
        total_max = sum(p["maximum_pool_size"] for p in pools.values())
        stats.update(
            {
                "status": "connected",
                "pools": pools,
                "summary": {
                    "total_active_connections": total_active,
                    "total_idle_connections": total_idle,
                    "total_maximum_connections": total_max,
                    "connection_utilization_percent": (
                        total_active * 100 // total_max if total_max > 0 else 0
                    ),
                },
            }
        )
        return stats

    async def shutdown(self) -> None:
        """Close every pool and clear the registry; safe to call twice."""
        pools = list(self._pools.items())
        self._pools.clear()
        for target, pool in pools:
            try:
                await pool.close()
            except Exception as e:
                logger.error(f"Error closing pool for target '{target}': {e!s}")
        if pools:
            logger.info(f"Closed {len(pools)} connection pool(s)")

    async def _connect(self, target: Target, test_connection: bool) -> TargetPool:
        config = self.registry.connection_config(target)
        pool = await self._pool_factory(config, self.pool_config)
        if test_connection and not await pool.health_check():
            await pool.close()
            raise DatabaseConnectionError(
                message=(
                    f"Connection test failed for target '{target}' ({config.descriptor}). "
                    "Check network/VPN access, then call the reconnect tool."
                ),
                details={"target": target.value, "connection_info": config.descriptor},
            )
        return pool
