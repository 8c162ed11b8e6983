"""
Circuit Breaker Registry

Per-endpoint circuit breakers whose state lives in a ResilienceStore, so
every worker (and every instance, with the Redis store) sees the same view.

State Machine:
    CLOSED: Normal operation, all requests pass through
    OPEN: Circuit tripped, requests fail fast until next_attempt_time
    HALF_OPEN: One trial request (its owner) passes; everyone else waits

Transitions:
    CLOSED    --failure_count >= threshold-->  OPEN
    OPEN      --now >= next_attempt_time--->  HALF_OPEN (caller owns the trial)
    HALF_OPEN --success-------------------->  CLOSED (failure_count = 0)
    HALF_OPEN --failure-------------------->  OPEN (fresh cooldown)

A trial that has not reported back within trial_timeout_seconds is treated
as abandoned and the next caller takes it over.

Pattern: Mutations serialised with asyncio.Lock() within a registry
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from divecoach.models.domain import CircuitState, CircuitStatus
from divecoach.observability.logging import get_logger
from divecoach.resilience.metrics import record_circuit_state_transition
from divecoach.resilience.store import ResilienceStore

logger = get_logger(__name__)


DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_COOLDOWN_SECONDS = 300.0
DEFAULT_TRIAL_TIMEOUT_SECONDS = 60.0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CircuitBreakerRegistry:
    """
    Registry of circuit breakers keyed by logical endpoint name.

    Example:
        >>> registry = CircuitBreakerRegistry(InMemoryResilienceStore())
        >>> if not await registry.is_open("/api/openai/chat"):
        ...     ...
        >>> await registry.record_failure("/api/openai/chat")

    Attributes:
        failure_threshold: Consecutive failures that open a circuit
        cooldown_seconds: How long an open circuit refuses calls
        trial_timeout_seconds: How long a half-open trial may stay unreported
    """

    KEY_PREFIX = "circuit:"

    def __init__(
        self,
        store: ResilienceStore,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        trial_timeout_seconds: float = DEFAULT_TRIAL_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._failure_threshold = failure_threshold
        self._cooldown = timedelta(seconds=cooldown_seconds)
        self._trial_timeout = timedelta(seconds=trial_timeout_seconds)
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def failure_threshold(self) -> int:
        return self._failure_threshold

    @property
    def cooldown_seconds(self) -> float:
        return self._cooldown.total_seconds()

    # =========================================================================
    # Persistence
    # =========================================================================

    def _key(self, endpoint: str) -> str:
        return f"{self.KEY_PREFIX}{endpoint}"

    async def _load(self, endpoint: str) -> Optional[CircuitState]:
        data = await self._store.get(self._key(endpoint))
        if data is None:
            return None
        return CircuitState.model_validate(data)

    async def _save(self, state: CircuitState) -> None:
        await self._store.set(self._key(state.endpoint_name), state.model_dump(mode="json"))

    def _transition(self, state: CircuitState, to_state: CircuitStatus) -> None:
        from_state = state.state
        state.state = to_state
        record_circuit_state_transition(state.endpoint_name, to_state.value, from_state.value)
        log = logger.warning if to_state == CircuitStatus.OPEN else logger.info
        log(
            "circuit state changed",
            endpoint=state.endpoint_name,
            from_state=from_state.value,
            to_state=to_state.value,
            failure_count=state.failure_count,
        )

    # =========================================================================
    # Public API
    # =========================================================================

    async def get_state(self, endpoint: str) -> CircuitState:
        """Current state for an endpoint (closed if never failed)."""
        state = await self._load(endpoint)
        return state or CircuitState(endpoint_name=endpoint)

    async def is_open(self, endpoint: str, owner: Optional[str] = None) -> bool:
        """
        Decide whether a call to endpoint must be refused.

        An open circuit whose cooldown has elapsed moves to half-open and the
        caller becomes the trial owner. While half-open, only calls carrying
        the trial owner's token pass.

        Args:
            endpoint: Logical endpoint name
            owner: Token identifying the caller (one per retry run). When
                omitted a fresh token is used, so the caller can claim the
                trial but never re-enter it.

        Returns:
            True if the call must fail fast.
        """
        owner = owner or uuid.uuid4().hex
        async with self._lock:
            state = await self._load(endpoint)
            if state is None or state.state == CircuitStatus.CLOSED:
                return False

            now = self._clock()

            if state.state == CircuitStatus.OPEN:
                if state.next_attempt_time is not None and now < state.next_attempt_time:
                    return True
                self._transition(state, CircuitStatus.HALF_OPEN)
                state.trial_owner = owner
                state.trial_started_at = now
                await self._save(state)
                return False

            # HALF_OPEN
            if state.trial_owner == owner:
                return False
            started = state.trial_started_at
            if started is None or now - started >= self._trial_timeout:
                logger.info("abandoned circuit trial reassigned", endpoint=endpoint)
                state.trial_owner = owner
                state.trial_started_at = now
                await self._save(state)
                return False
            return True

    async def record_success(self, endpoint: str) -> None:
        """Reset the failure count and close the circuit."""
        async with self._lock:
            state = await self._load(endpoint)
            if state is None:
                return
            if state.state == CircuitStatus.CLOSED and state.failure_count == 0:
                return
            state.failure_count = 0
            state.next_attempt_time = None
            state.trial_owner = None
            state.trial_started_at = None
            if state.state != CircuitStatus.CLOSED:
                self._transition(state, CircuitStatus.CLOSED)
            await self._save(state)

    async def record_failure(self, endpoint: str) -> CircuitState:
        """
        Count a terminal failure.

        Opens the circuit when the threshold is reached, or immediately when
        the failure was the half-open trial.

        Returns:
            The updated state.
        """
        async with self._lock:
            state = await self._load(endpoint) or CircuitState(endpoint_name=endpoint)
            now = self._clock()
            state.failure_count += 1
            state.last_failure_time = now

            if (
                state.state == CircuitStatus.HALF_OPEN
                or state.failure_count >= self._failure_threshold
            ):
                state.next_attempt_time = now + self._cooldown
                state.trial_owner = None
                state.trial_started_at = None
                if state.state != CircuitStatus.OPEN:
                    self._transition(state, CircuitStatus.OPEN)
            await self._save(state)
            return state

    async def reset(self, endpoint: str) -> None:
        """Forget an endpoint's state (administrative)."""
        async with self._lock:
            await self._store.delete(self._key(endpoint))

    async def snapshot(self) -> dict[str, CircuitState]:
        """All known circuit states keyed by endpoint."""
        states: dict[str, CircuitState] = {}
        for key in await self._store.keys(self.KEY_PREFIX):
            data = await self._store.get(key)
            if data is None:
                continue
            state = CircuitState.model_validate(data)
            states[state.endpoint_name] = state
        return states
