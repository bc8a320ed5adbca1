"""Prometheus metrics export."""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Request metrics
request_count = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

# Reasoning service metrics
reasoning_calls_total = Counter(
    "reasoning_calls_total",
    "Total reasoning service calls",
    ["purpose", "status"],
)

reasoning_call_duration = Histogram(
    "reasoning_call_duration_seconds",
    "Reasoning service call duration in seconds",
    ["purpose"],
)

fallbacks_total = Counter(
    "pipeline_fallbacks_total",
    "Deterministic fallbacks taken by analyzer and synthesizer",
    ["stage"],
)

# Build metrics
tool_builds_total = Counter(
    "tool_builds_total",
    "Total tool build requests",
    ["status"],
)

tool_build_duration = Histogram(
    "tool_build_duration_seconds",
    "Tool build duration in seconds",
)

program_merges_total = Counter(
    "program_merges_total",
    "Program merge and removal operations",
    ["operation", "status"],
)

version_conflicts_total = Counter(
    "version_conflicts_total",
    "Optimistic version check conflicts during builds",
)

# Execution metrics
tool_executions_total = Counter(
    "tool_executions_total",
    "Total tool executions",
    ["status"],
)

tool_execution_duration = Histogram(
    "tool_execution_duration_seconds",
    "Sandboxed tool execution duration in seconds",
)

runner_cache_events = Counter(
    "runner_cache_events_total",
    "Runner cache hits, misses and invalidations",
    ["event"],
)

# OAuth metrics
oauth_exchanges_total = Counter(
    "oauth_exchanges_total",
    "OAuth authorization code exchanges",
    ["provider", "status"],
)

# Circuit breaker metrics
circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["service"],
)


def get_metrics_response() -> Response:
    """Get Prometheus metrics as HTTP response."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
