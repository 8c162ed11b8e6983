"""
Prometheus Metrics Module

HTTP, cache, token and cost metrics for the coaching service.
Circuit breaker and retry metrics live in divecoach.resilience.metrics.

Pattern: Module-level metric singletons plus small record_* helpers
Pattern: Path normalisation keeps the path label low-cardinality
"""

import re
import time
from typing import Any, Callable, Optional

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


# =============================================================================
# Path Normalization
# =============================================================================

# Order matters: more specific patterns first
_PATH_PATTERNS = [
    (re.compile(r"/[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"), "/{id}"),
    (re.compile(r"/[0-9a-fA-F]{8,}(?=/|$)"), "/{id}"),
    (re.compile(r"/\d+(?=/|$)"), "/{id}"),
]


def normalize_path(path: str) -> str:
    """
    Replace dynamic path segments with an {id} placeholder.

    Examples:
        >>> normalize_path("/health")
        '/health'
        >>> normalize_path("/api/dive-logs/12345")
        '/api/dive-logs/{id}'
    """
    if path == "/":
        return path

    normalized = path
    for pattern, replacement in _PATH_PATTERNS:
        normalized = pattern.sub(replacement, normalized)
    return normalized


# =============================================================================
# HTTP Metrics
# =============================================================================

REQUESTS_TOTAL = Counter(
    name="divecoach_requests_total",
    documentation="Total number of HTTP requests",
    labelnames=["method", "path", "status"],
)

REQUEST_DURATION_SECONDS = Histogram(
    name="divecoach_request_duration_seconds",
    documentation="HTTP request duration in seconds",
    labelnames=["method", "path"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0, 30.0),
)

REQUESTS_IN_PROGRESS = Gauge(
    name="divecoach_requests_in_progress",
    documentation="Number of HTTP requests currently being processed",
    labelnames=["method"],
)


# =============================================================================
# Coaching Metrics
# =============================================================================

TOKEN_USAGE_TOTAL = Counter(
    name="divecoach_tokens_total",
    documentation="Total number of model tokens used",
    labelnames=["endpoint", "model"],
)

CACHE_OPERATIONS_TOTAL = Counter(
    name="divecoach_cache_operations_total",
    documentation="Response cache lookups by result (hit/miss)",
    labelnames=["result"],
)

REQUEST_COST_DOLLARS = Histogram(
    name="divecoach_request_cost_dollars",
    documentation="Estimated model cost per request in dollars",
    labelnames=["endpoint", "model"],
    buckets=(0.0001, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0),
)

FALLBACK_RESPONSES_TOTAL = Counter(
    name="divecoach_fallback_responses_total",
    documentation="Chat replies answered with a fallback message",
    labelnames=["endpoint", "error_type"],
)


def record_token_usage(endpoint: str, model: str, count: int) -> None:
    """Record tokens consumed by one model call."""
    TOKEN_USAGE_TOTAL.labels(endpoint=endpoint, model=model).inc(count)


def record_cache_operation(result: str) -> None:
    """
    Record a cache lookup.

    Args:
        result: "hit" or "miss"
    """
    CACHE_OPERATIONS_TOTAL.labels(result=result).inc()


def record_request_cost(endpoint: str, model: str, cost: float) -> None:
    REQUEST_COST_DOLLARS.labels(endpoint=endpoint, model=model).observe(cost)


def record_fallback_response(endpoint: str, error_type: str) -> None:
    FALLBACK_RESPONSES_TOTAL.labels(endpoint=endpoint, error_type=error_type).inc()


# =============================================================================
# MetricsMiddleware ASGI Middleware
# =============================================================================


class MetricsMiddleware:
    """
    ASGI middleware for Prometheus metrics collection.

    Counts requests per method/path/status, records latency and tracks
    in-flight requests. Paths in exclude_paths are not measured.
    """

    def __init__(
        self,
        app: Callable[..., Any],
        exclude_paths: Optional[list[str]] = None,
    ) -> None:
        self.app = app
        self.exclude_paths = exclude_paths or ["/metrics"]

    async def __call__(
        self,
        scope: dict[str, Any],
        receive: Callable[..., Any],
        send: Callable[..., Any],
    ) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        raw_path = scope.get("path", "/")
        if raw_path in self.exclude_paths:
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "GET")
        path = normalize_path(raw_path)

        REQUESTS_IN_PROGRESS.labels(method=method).inc()
        start_time = time.perf_counter()
        status_code = "500"

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = str(message.get("status", 500))
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration = time.perf_counter() - start_time
            REQUESTS_TOTAL.labels(method=method, path=path, status=status_code).inc()
            REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(duration)
            REQUESTS_IN_PROGRESS.labels(method=method).dec()


def generate_metrics() -> str:
    """Return the Prometheus exposition text for the default registry."""
    return generate_latest(REGISTRY).decode("utf-8")
