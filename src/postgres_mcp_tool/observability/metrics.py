"""Prometheus metrics collector for the PostgreSQL MCP tool.

Tracks tool invocations, query latency, PII filtering outcomes, pool
occupancy and reconnection attempts per target.
"""

from prometheus_client import Counter, Gauge, Histogram, start_http_server


class MetricsCollector:
    """Centralized metrics collector using Prometheus client.

    Metrics Categories:
    - Tool metrics: invocation counts by tool, status and target
    - Query metrics: statement execution latency
    - PII metrics: filtering outcomes on the protected target
    - Pool metrics: connection occupancy, health and reconnect attempts

    Example:
        >>> metrics = MetricsCollector()
        >>> metrics.increment_tool_request(tool="run-query", status="success", target="staging")
    """

    _instance: "MetricsCollector | None" = None

    def __new__(cls) -> "MetricsCollector":
        """Ensure singleton instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialize_metrics()
        return cls._instance

    def _initialize_metrics(self) -> None:
        self.tool_requests: Counter = Counter(
            "postgres_mcp_tool_requests_total",
            "Total number of tool invocations",
            labelnames=["tool", "status", "target"],
        )

        self.query_duration: Histogram = Histogram(
            "postgres_mcp_query_duration_seconds",
            "Statement execution duration in seconds",
            labelnames=["target"],
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
        )

        self.pii_rewrites: Counter = Counter(
            "postgres_mcp_pii_rewrites_total",
            "PII filtering outcomes on the protected target",
            labelnames=["outcome"],
        )

        self.pool_connections: Gauge = Gauge(
            "postgres_mcp_pool_connections",
            "Pooled connections by state",
            labelnames=["target", "state"],
        )

        self.pool_healthy: Gauge = Gauge(
            "postgres_mcp_pool_healthy",
            "1 when the target's pool passed its last health check",
            labelnames=["target"],
        )

        self.reconnect_attempts: Counter = Counter(
            "postgres_mcp_reconnect_attempts_total",
            "Reconnection attempts by result",
            labelnames=["target", "result"],
        )

    def start_metrics_server(self, port: int) -> None:
        """Start the Prometheus metrics HTTP server.

        Args:
            port: Port number to listen on for metrics scraping.
        """
        start_http_server(port)

    def increment_tool_request(self, tool: str, status: str, target: str) -> None:
        self.tool_requests.labels(tool=tool, status=status, target=target).inc()

    def observe_query_duration(self, target: str, duration: float) -> None:
        """Record statement duration.

        Args:
            target: Target the statement ran against.
            duration: Duration in seconds.
        """
        self.query_duration.labels(target=target).observe(duration)

    def increment_pii_rewrite(self, outcome: str) -> None:
        """Count a PII filtering outcome.

        Args:
            outcome: One of passthrough, clean, rewritten, refused, abandoned.
        """
        self.pii_rewrites.labels(outcome=outcome).inc()

    def set_pool_connections(self, target: str, active: int, idle: int) -> None:
        self.pool_connections.labels(target=target, state="active").set(active)
        self.pool_connections.labels(target=target, state="idle").set(idle)

    def set_pool_healthy(self, target: str, healthy: bool) -> None:
        self.pool_healthy.labels(target=target).set(1 if healthy else 0)

    def increment_reconnect(self, target: str, success: bool) -> None:
        result = "success" if success else "failure"
        self.reconnect_attempts.labels(target=target, result=result).inc()


# Singleton instance
metrics = MetricsCollector()
