"""
Resilience Metrics

Prometheus metrics for circuit breaker transitions and retry outcomes.

Metrics Provided:
- Circuit breaker state transitions (counter)
- Circuit breaker current state (gauge)
- Retry executor outcomes (counter)
- Classified upstream errors (counter)
"""

from prometheus_client import Counter, Gauge


METRIC_CIRCUIT_TRANSITIONS = "divecoach_circuit_breaker_state_transitions_total"
METRIC_CIRCUIT_STATE = "divecoach_circuit_breaker_state"
METRIC_RETRY_OUTCOMES = "divecoach_retry_outcomes_total"
METRIC_UPSTREAM_ERRORS = "divecoach_upstream_errors_total"


# =============================================================================
# Circuit Breaker
# =============================================================================

CIRCUIT_STATE_TRANSITIONS = Counter(
    name=METRIC_CIRCUIT_TRANSITIONS,
    documentation="Total number of circuit breaker state transitions",
    labelnames=["endpoint", "to_state", "from_state"],
)

CIRCUIT_STATE_GAUGE = Gauge(
    name=METRIC_CIRCUIT_STATE,
    documentation="Current state of circuit breaker (0=closed, 1=half_open, 2=open)",
    labelnames=["endpoint"],
)

_STATE_TO_NUMERIC = {
    "closed": 0,
    "half_open": 1,
    "open": 2,
}


def record_circuit_state_transition(endpoint: str, to_state: str, from_state: str) -> None:
    """
    Record a circuit breaker state transition and update the state gauge.

    Args:
        endpoint: Logical endpoint the circuit protects
        to_state: closed, open or half_open
        from_state: closed, open or half_open
    """
    CIRCUIT_STATE_TRANSITIONS.labels(
        endpoint=endpoint,
        to_state=to_state,
        from_state=from_state,
    ).inc()
    CIRCUIT_STATE_GAUGE.labels(endpoint=endpoint).set(_STATE_TO_NUMERIC.get(to_state, 0))


# =============================================================================
# Retry Executor
# =============================================================================

RETRY_OUTCOMES = Counter(
    name=METRIC_RETRY_OUTCOMES,
    documentation="Retry executor outcomes (success, retry, failure, short_circuit)",
    labelnames=["endpoint", "outcome"],
)

UPSTREAM_ERRORS = Counter(
    name=METRIC_UPSTREAM_ERRORS,
    documentation="Failed upstream attempts by classified error type",
    labelnames=["endpoint", "error_type"],
)


def record_retry_outcome(endpoint: str, outcome: str) -> None:
    RETRY_OUTCOMES.labels(endpoint=endpoint, outcome=outcome).inc()


def record_upstream_error(endpoint: str, error_type: str) -> None:
    UPSTREAM_ERRORS.labels(endpoint=endpoint, error_type=error_type).inc()
