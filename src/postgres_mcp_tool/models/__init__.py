"""Data models for the PostgreSQL MCP tool."""

from postgres_mcp_tool.models.connection import ConnectionConfig, ReconnectionOutcome
from postgres_mcp_tool.models.errors import ErrorCode, ErrorDetail, PostgresToolError
from postgres_mcp_tool.models.query import ColumnDescriptor, PiiFilteredQuery, QueryResult
from postgres_mcp_tool.models.schema import (
    ColumnInfo,
    DatabaseInfo,
    ForeignKeyRelationship,
    JoinSuggestion,
    PrimaryKeyColumn,
    RelationshipSummary,
    TableSummary,
    UniqueConstraint,
)
from postgres_mcp_tool.models.target import DEFAULT_TARGET, PROTECTED_TARGET, Target

__all__ = [
    "DEFAULT_TARGET",
    "PROTECTED_TARGET",
    "ColumnDescriptor",
    "ColumnInfo",
    "ConnectionConfig",
    "DatabaseInfo",
    "ErrorCode",
    "ErrorDetail",
    "ForeignKeyRelationship",
    "JoinSuggestion",
    "PiiFilteredQuery",
    "PostgresToolError",
    "PrimaryKeyColumn",
    "QueryResult",
    "ReconnectionOutcome",
    "RelationshipSummary",
    "TableSummary",
    "Target",
    "UniqueConstraint",
]
