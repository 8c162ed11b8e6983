"""
Retry Executor

Runs an async upstream operation with capped exponential backoff, guarded by
the endpoint's circuit breaker, reporting every failed attempt to the error
log.

Per attempt k (1-based):
    1. refuse with CircuitOpenError if the endpoint's circuit is open
    2. await the operation
    3. on failure classify it; stop when not retryable or out of attempts
    4. otherwise wait min(base * 2**(k-1), max_delay) and try again

Only the terminal failure of a run counts against the circuit breaker.
A success at any attempt closes it.
"""

import asyncio
import random
import uuid
from typing import Any, Awaitable, Callable, Optional, Protocol, TypeVar

from pydantic import BaseModel

from divecoach.core.exceptions import CircuitOpenError
from divecoach.models.domain import ErrorClassification, ErrorLogEntry
from divecoach.observability.logging import get_logger
from divecoach.resilience.circuit_breaker import CircuitBreakerRegistry
from divecoach.resilience.classification import (
    CIRCUIT_OPEN,
    classify_error,
    describe_error,
    error_code,
)
from divecoach.resilience.metrics import record_retry_outcome, record_upstream_error

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_MAX_DELAY_SECONDS = 10.0


class ErrorSink(Protocol):
    """Anything that can persist an ErrorLogEntry (UsageRecorder does)."""

    async def log_error(self, entry: ErrorLogEntry) -> None: ...


class RetryContext(BaseModel):
    """Who is calling which endpoint; copied into every error log entry."""

    endpoint_name: str
    user_id: Optional[str] = None


class RetryExecutor:
    """
    Retry with capped exponential backoff and circuit breaker integration.

    Args:
        circuit_breakers: Registry consulted before every attempt
        error_sink: Receives one ErrorLogEntry per failed attempt
        max_retries: Default attempt budget (including the first attempt)
        base_delay_seconds: Delay before the second attempt
        max_delay_seconds: Upper bound for any single delay
        jitter_ratio: Extra random delay as a fraction of the computed delay
            (0 disables jitter)
        sleep: Awaitable sleep function (injectable for tests)
        rng: Uniform [0, 1) source for jitter
    """

    def __init__(
        self,
        circuit_breakers: CircuitBreakerRegistry,
        error_sink: Optional[ErrorSink] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS,
        max_delay_seconds: float = DEFAULT_MAX_DELAY_SECONDS,
        jitter_ratio: float = 0.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._breakers = circuit_breakers
        self._error_sink = error_sink
        self._max_retries = max_retries
        self._base_delay = base_delay_seconds
        self._max_delay = max_delay_seconds
        self._jitter_ratio = jitter_ratio
        self._sleep = sleep
        self._rng = rng

    @property
    def circuit_breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    def backoff_delay(self, attempt: int) -> float:
        """
        Seconds to wait after failed attempt number `attempt` (1-based).

        Example (defaults, no jitter): 1.0, 2.0, 4.0, 8.0, 10.0, 10.0 ...
        """
        delay = min(self._base_delay * (2 ** (attempt - 1)), self._max_delay)
        if self._jitter_ratio:
            delay *= 1 + self._jitter_ratio * self._rng()
        return delay

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        context: RetryContext,
        max_retries: Optional[int] = None,
    ) -> T:
        """
        Execute operation with retries.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt
            context: Endpoint and user for breaker lookup and error logging
            max_retries: Attempt budget for this call (defaults to the executor's)

        Returns:
            The operation's result.

        Raises:
            CircuitOpenError: The endpoint's circuit refused the call.
            Exception: The operation's last error once retries are exhausted
                or the error is not retryable.
            ValueError: max_retries is below 1.
        """
        if max_retries is not None and max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        attempts = self._max_retries if max_retries is None else max_retries
        endpoint = context.endpoint_name
        # One token per run: a run that claimed the half-open trial keeps it
        # across its own retries.
        owner = uuid.uuid4().hex

        for attempt in range(1, attempts + 1):
            if await self._breakers.is_open(endpoint, owner=owner):
                state = await self._breakers.get_state(endpoint)
                error = CircuitOpenError(endpoint, next_attempt_time=state.next_attempt_time)
                record_retry_outcome(endpoint, "short_circuit")
                await self._report(error, CIRCUIT_OPEN, context, attempt, attempts)
                logger.warning(
                    "circuit open, call refused",
                    endpoint=endpoint,
                    user_id=context.user_id,
                    next_attempt_time=str(state.next_attempt_time),
                )
                raise error

            try:
                result = await operation()
            except Exception as e:
                classification = classify_error(e)
                record_upstream_error(endpoint, classification.type.value)
                await self._report(e, classification, context, attempt, attempts)

                if not classification.retryable or attempt >= attempts:
                    await self._breakers.record_failure(endpoint)
                    record_retry_outcome(endpoint, "failure")
                    logger.error(
                        "upstream call failed",
                        endpoint=endpoint,
                        user_id=context.user_id,
                        attempt=attempt,
                        error_type=classification.type.value,
                        retryable=classification.retryable,
                    )
                    raise

                delay = self.backoff_delay(attempt)
                record_retry_outcome(endpoint, "retry")
                logger.info(
                    "retrying upstream call",
                    endpoint=endpoint,
                    attempt=attempt,
                    max_retries=attempts,
                    delay_seconds=round(delay, 3),
                    error_type=classification.type.value,
                )
                await self._sleep(delay)
                continue

            await self._breakers.record_success(endpoint)
            record_retry_outcome(endpoint, "success")
            return result

        # Unreachable: the final attempt either returns or raises
        raise RuntimeError("retry loop exited without result")

    async def _report(
        self,
        error: BaseException,
        classification: ErrorClassification,
        context: RetryContext,
        attempt: int,
        attempts: int,
    ) -> None:
        if self._error_sink is None:
            return
        entry = ErrorLogEntry(
            user_id=context.user_id,
            endpoint=context.endpoint_name,
            error_type=classification.type.value,
            error_message=describe_error(error),
            error_code=error_code(error),
            severity=classification.severity,
            context={
                "attempt": attempt,
                "max_retries": attempts,
                "retryable": classification.retryable,
                "exception": error.__class__.__name__,
            },
        )
        await self._error_sink.log_error(entry)
