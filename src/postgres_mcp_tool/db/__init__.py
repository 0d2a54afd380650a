"""Database connection and catalog access.

This package provides the per-target pools, their supervisor, and the
catalog readers bound to each pool.
"""

from postgres_mcp_tool.db.introspection import SchemaIntrospector
from postgres_mcp_tool.db.pool import TargetPool, create_pool
from postgres_mcp_tool.db.relationships import RelationshipInspector
from postgres_mcp_tool.db.supervisor import PoolSupervisor

__all__ = [
    "PoolSupervisor",
    "RelationshipInspector",
    "SchemaIntrospector",
    "TargetPool",
    "create_pool",
]
