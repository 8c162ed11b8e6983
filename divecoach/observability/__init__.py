"""
Observability Package

- Structured JSON logging (structlog)
- Prometheus metrics
"""

from divecoach.observability.logging import (
    clear_correlation_id,
    configure_logging,
    correlation_id_context,
    get_correlation_id,
    get_logger,
    set_correlation_id,
)
from divecoach.observability.metrics import (
    MetricsMiddleware,
    generate_metrics,
    record_cache_operation,
    record_fallback_response,
    record_request_cost,
    record_token_usage,
)

__all__ = [
    "clear_correlation_id",
    "configure_logging",
    "correlation_id_context",
    "get_correlation_id",
    "get_logger",
    "set_correlation_id",
    "MetricsMiddleware",
    "generate_metrics",
    "record_cache_operation",
    "record_fallback_response",
    "record_request_cost",
    "record_token_usage",
]
