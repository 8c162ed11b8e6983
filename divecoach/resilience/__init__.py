"""
Resilience Package

- ResilienceStore backends (in-memory LRU, Redis)
- CircuitBreakerRegistry (per-endpoint closed/open/half_open)
- classify_error (failure taxonomy)
- RetryExecutor (capped exponential backoff)
"""

from divecoach.resilience.circuit_breaker import CircuitBreakerRegistry
from divecoach.resilience.classification import classify_error
from divecoach.resilience.retry import RetryContext, RetryExecutor
from divecoach.resilience.store import (
    InMemoryResilienceStore,
    RedisResilienceStore,
    ResilienceStore,
)

__all__ = [
    "CircuitBreakerRegistry",
    "classify_error",
    "RetryContext",
    "RetryExecutor",
    "InMemoryResilienceStore",
    "RedisResilienceStore",
    "ResilienceStore",
]
