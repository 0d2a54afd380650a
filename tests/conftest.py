"""Pytest configuration and shared fixtures.

This module provides shared fixtures and configuration for all tests.
"""

import os
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from postgres_mcp_tool.config.settings import PoolConfig, reset_settings
from postgres_mcp_tool.models.connection import ConnectionConfig
from postgres_mcp_tool.models.target import Target

ENV_PREFIXES = ("POSTGRES_", "PII_", "POOL_", "QUERY_")


@pytest.fixture(autouse=True)
def reset_config() -> None:
    """Reset global settings before each test."""
    reset_settings()


@pytest.fixture(autouse=True)
def disable_metrics_for_tests():
    """Disable metrics for tests to avoid port conflicts."""
    os.environ["OBSERVABILITY_METRICS_ENABLED"] = "false"
    yield
    # Clean up
    if "OBSERVABILITY_METRICS_ENABLED" in os.environ:
        del os.environ["OBSERVABILITY_METRICS_ENABLED"]


@pytest.fixture(autouse=True)
def clean_target_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Remove target credentials and run from an empty directory (no stray .env)."""
    for name in list(os.environ):
        if name.startswith(ENV_PREFIXES):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def pool_config() -> PoolConfig:
    """Pool timeouts short enough for tests."""
    return PoolConfig(
        acquire_timeout=0.5,
        health_check_timeout=0.5,
        startup_timeout=1.0,
        close_timeout=0.5,
        command_timeout=2.0,
    )


def make_connection_config(target: Target = Target.STAGING, **overrides: Any) -> ConnectionConfig:
    """Build a valid connection config for ``target``."""
    values: dict[str, Any] = {
        "url": f"jdbc:postgresql://{target.value}-db.internal:5432/app",
        "username": "reader",
        "password": "secret",
    }
    values.update(overrides)
    return ConnectionConfig.create(target=target, **values)


def create_mock_record(data: dict[str, Any]) -> MagicMock:
    """Create a mock asyncpg.Record object that supports dict() conversion.

    Args:
        data: Dictionary of column names to values.

    Returns:
        MagicMock that behaves like an asyncpg.Record.
    """
    mock_record = MagicMock()
    mock_record.keys = MagicMock(return_value=list(data.keys()))
    mock_record.items = MagicMock(return_value=list(data.items()))
    mock_record.__iter__ = MagicMock(return_value=iter(data.items()))
    mock_record.__getitem__ = lambda self, key: data[key]
    mock_record.__len__ = lambda self: len(data)
    return mock_record


def create_mock_connection() -> MagicMock:
    """Create a mock asyncpg connection with a working transaction context."""
    conn = MagicMock()
    conn.execute = AsyncMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock()
    conn.fetchval = AsyncMock()
    conn.prepare = AsyncMock()

    transaction_mock = MagicMock()
    transaction_mock.__aenter__ = AsyncMock(return_value=None)
    transaction_mock.__aexit__ = AsyncMock(return_value=None)
    conn.transaction = MagicMock(return_value=transaction_mock)
    return conn


def create_mock_asyncpg_pool(connection: MagicMock | None = None) -> MagicMock:
    """Create a mock asyncpg pool handing out ``connection``."""
    pool = MagicMock()
    pool.acquire = AsyncMock(return_value=connection or create_mock_connection())
    pool.release = AsyncMock()
    pool.close = AsyncMock()
    pool.terminate = MagicMock()
    pool.is_closing = MagicMock(return_value=False)
    pool.get_size = MagicMock(return_value=3)
    pool.get_idle_size = MagicMock(return_value=2)
    pool.get_max_size = MagicMock(return_value=10)
    pool.get_min_size = MagicMock(return_value=2)
    return pool


@pytest.fixture
def mock_connection() -> MagicMock:
    """Create a mock asyncpg connection."""
    return create_mock_connection()


@pytest.fixture
def connection_config_factory():
    """Factory fixture for valid connection configs."""
    return make_connection_config


@pytest.fixture
def record_factory():
    """Factory fixture for asyncpg-like records."""
    return create_mock_record


@pytest.fixture
def asyncpg_pool_factory():
    """Factory fixture for mock asyncpg pools."""
    return create_mock_asyncpg_pool
