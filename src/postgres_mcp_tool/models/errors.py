"""Custom exceptions and error codes for the PostgreSQL MCP tool.

Every caller-facing message names the target involved and the remediation
(a tool to call or an environment variable to set), because the caller is
usually an automated agent with no access to server logs.
"""

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Standardized error codes for the application."""

    # Client errors
    INVALID_REQUEST = "invalid_request"
    INVALID_TARGET = "invalid_target"
    SECURITY_VIOLATION = "security_violation"
    TABLE_NOT_FOUND = "table_not_found"
    UNSAFE_REWRITE = "unsafe_rewrite"

    # Configuration and connectivity
    CONFIG_INVALID = "config_invalid"
    NO_CONNECTION = "no_connection"
    POOL_EXHAUSTED = "pool_exhausted"
    CONNECT_TIMEOUT = "connect_timeout"
    DATABASE_CONNECTION_ERROR = "database_connection_error"

    # Execution
    QUERY_FAILED = "query_failed"
    EXECUTION_TIMEOUT = "execution_timeout"
    REWRITE_ABANDONED = "rewrite_abandoned"

    INTERNAL_ERROR = "internal_error"


class ErrorDetail:
    """Structured error detail information."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize error detail.

        Args:
            code: Error code identifier.
            message: Human-readable error message.
            details: Optional additional context.
        """
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation.

        Returns:
            dict: Dictionary containing error information.
        """
        result: dict[str, Any] = {
            "code": str(self.code),
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __repr__(self) -> str:
        return f"ErrorDetail(code={self.code}, message={self.message!r})"


class PostgresToolError(Exception):
    """Base exception for all PostgreSQL MCP tool errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize base error.

        Args:
            message: Human-readable error message.
            code: Error code identifier.
            details: Optional additional context.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_error_detail(self) -> ErrorDetail:
        """Convert exception to ErrorDetail.

        Returns:
            ErrorDetail: Structured error detail.
        """
        return ErrorDetail(code=self.code, message=self.message, details=self.details)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code}, message={self.message!r})"


class ConfigInvalidError(PostgresToolError):
    """Raised when a target's connection properties are missing or malformed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code=ErrorCode.CONFIG_INVALID, details=details)


class InvalidTargetError(PostgresToolError):
    """Raised when a caller names a target that does not exist."""

    def __init__(self, value: str, supported: list[str]) -> None:
        """Initialize invalid target error.

        Args:
            value: The rejected target name.
            supported: Names of all supported targets.
        """
        super().__init__(
            message=f"Unknown target '{value}'. Supported targets: {', '.join(supported)}",
            code=ErrorCode.INVALID_TARGET,
            details={"target": value, "supported_targets": supported},
        )


class NoConnectionError(PostgresToolError):
    """Raised when a target has no live pool.

    The message always points at the reconnect tool, since the usual cause is a
    target that was unreachable at startup (for example a VPN that was down).
    """

    def __init__(self, target: str, available: list[str] | None = None) -> None:
        available = available or []
        super().__init__(
            message=(
                f"No database connection available for target '{target}'. "
                f"Available targets: {', '.join(available) if available else 'none'}. "
                f"Check network/VPN access, then call the reconnect tool with target='{target}'."
            ),
            code=ErrorCode.NO_CONNECTION,
            details={"target": str(target), "available_targets": available},
        )


class PoolExhaustedError(PostgresToolError):
    """Raised when no pooled connection becomes free within the acquire timeout."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code=ErrorCode.POOL_EXHAUSTED, details=details)


class ConnectTimeoutError(PostgresToolError):
    """Raised when opening a pool does not complete in time."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code=ErrorCode.CONNECT_TIMEOUT, details=details)


class DatabaseConnectionError(PostgresToolError):
    """Exception raised when database connection fails."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code=ErrorCode.DATABASE_CONNECTION_ERROR, details=details)


class QueryFailedError(PostgresToolError):
    """Raised for driver-level execution errors.

    Carries the driver message and SQLSTATE, never the statement text.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code=ErrorCode.QUERY_FAILED, details=details)


class ExecutionTimeoutError(PostgresToolError):
    """Exception raised when query execution exceeds timeout."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code=ErrorCode.EXECUTION_TIMEOUT, details=details)


class UnsafeRewriteError(PostgresToolError):
    """Raised when a query cannot be filtered safely (e.g. ``SELECT *`` over PII)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code=ErrorCode.UNSAFE_REWRITE, details=details)


class RewriteAbandonedError(PostgresToolError):
    """Internal signal that column discovery failed; logged, never surfaced."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code=ErrorCode.REWRITE_ABANDONED, details=details)


class SecurityViolationError(PostgresToolError):
    """Raised when a statement other than SELECT reaches a query tool."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code=ErrorCode.SECURITY_VIOLATION, details=details)


class TableNotFoundError(PostgresToolError):
    """Raised when a table is absent from the target's catalog."""

    def __init__(self, table: str, target: str) -> None:
        super().__init__(
            message=(
                f"Table '{table}' not found on target '{target}'. "
                "Use the list-tables tool to see available tables."
            ),
            code=ErrorCode.TABLE_NOT_FOUND,
            details={"table": table, "target": str(target)},
        )
