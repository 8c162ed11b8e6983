"""
Tests for RetryExecutor.

- Retryable failures are retried with capped exponential backoff
- Non-retryable failures are raised after one attempt
- Only terminal failures count against the circuit breaker
- An open circuit refuses the call without invoking the operation
- Every failed attempt is reported to the error sink
"""

from unittest.mock import AsyncMock

import pytest

from divecoach.core.exceptions import CircuitOpenError, UpstreamError
from divecoach.models.domain import CircuitStatus, Severity
from divecoach.resilience.retry import RetryContext, RetryExecutor

ENDPOINT = "/api/openai/chat"


@pytest.fixture
def context() -> RetryContext:
    return RetryContext(endpoint_name=ENDPOINT, user_id="diver-1")


class TestBackoff:
    def test_delays_double_and_cap(self, circuit_breakers) -> None:
        executor = RetryExecutor(circuit_breakers)
        assert [executor.backoff_delay(k) for k in range(1, 7)] == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]

    def test_jitter_scales_delay(self, circuit_breakers) -> None:
        executor = RetryExecutor(circuit_breakers, jitter_ratio=0.1, rng=lambda: 0.5)
        assert executor.backoff_delay(2) == pytest.approx(2.0 * 1.05)

    def test_rejects_zero_attempts(self, circuit_breakers) -> None:
        with pytest.raises(ValueError):
            RetryExecutor(circuit_breakers, max_retries=0)


class TestRetryableFailures:
    @pytest.mark.asyncio
    async def test_success_after_retries(self, executor, context, sleeps) -> None:
        operation = AsyncMock(side_effect=[TimeoutError(), TimeoutError(), "reply"])

        result = await executor.run(operation, context)

        assert result == "reply"
        assert operation.await_count == 3
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_last_error(self, executor, context, sleeps) -> None:
        operation = AsyncMock(side_effect=TimeoutError("read timed out"))

        with pytest.raises(TimeoutError):
            await executor.run(operation, context)

        assert operation.await_count == 3
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_per_call_attempt_budget(self, executor, context, sleeps) -> None:
        operation = AsyncMock(side_effect=TimeoutError())

        with pytest.raises(TimeoutError):
            await executor.run(operation, context, max_retries=5)

        assert operation.await_count == 5
        assert sleeps == [1.0, 2.0, 4.0, 8.0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("budget", [0, -1])
    async def test_per_call_budget_below_one_rejected(self, executor, context, budget) -> None:
        operation = AsyncMock(return_value="reply")

        with pytest.raises(ValueError):
            await executor.run(operation, context, max_retries=budget)

        operation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_single_attempt_budget(self, executor, context, sleeps) -> None:
        operation = AsyncMock(side_effect=TimeoutError())

        with pytest.raises(TimeoutError):
            await executor.run(operation, context, max_retries=1)

        assert operation.await_count == 1
        assert sleeps == []


class TestNonRetryableFailures:
    @pytest.mark.asyncio
    async def test_quota_is_not_retried(self, executor, context, sleeps) -> None:
        operation = AsyncMock(
            side_effect=UpstreamError("insufficient quota", service="openai", code="insufficient_quota")
        )

        with pytest.raises(UpstreamError):
            await executor.run(operation, context)

        assert operation.await_count == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_quota_error_logged_as_critical(self, executor, context, repository, clock) -> None:
        operation = AsyncMock(
            side_effect=UpstreamError("insufficient quota", service="openai", code="insufficient_quota")
        )
        with pytest.raises(UpstreamError):
            await executor.run(operation, context)

        entries = await repository.query_errors(clock.now.replace(year=2000))
        assert len(entries) == 1
        assert entries[0].error_type == "quota_exceeded"
        assert entries[0].severity == Severity.CRITICAL
        assert entries[0].error_code == "insufficient_quota"


class TestCircuitIntegration:
    @pytest.mark.asyncio
    async def test_only_terminal_failure_counts(self, executor, context, circuit_breakers) -> None:
        operation = AsyncMock(side_effect=TimeoutError())

        with pytest.raises(TimeoutError):
            await executor.run(operation, context)

        state = await circuit_breakers.get_state(ENDPOINT)
        assert state.failure_count == 1

    @pytest.mark.asyncio
    async def test_success_resets_breaker(self, executor, context, circuit_breakers) -> None:
        for _ in range(3):
            await circuit_breakers.record_failure(ENDPOINT)

        await executor.run(AsyncMock(return_value="ok"), context)

        assert (await circuit_breakers.get_state(ENDPOINT)).failure_count == 0

    @pytest.mark.asyncio
    async def test_open_circuit_short_circuits(self, executor, context, circuit_breakers) -> None:
        for _ in range(5):
            await circuit_breakers.record_failure(ENDPOINT)
        operation = AsyncMock(return_value="never")

        with pytest.raises(CircuitOpenError) as exc_info:
            await executor.run(operation, context)

        operation.assert_not_awaited()
        assert exc_info.value.next_attempt_time is not None

    @pytest.mark.asyncio
    async def test_refusal_does_not_count_as_failure(
        self, executor, context, circuit_breakers, repository, clock
    ) -> None:
        for _ in range(5):
            await circuit_breakers.record_failure(ENDPOINT)

        with pytest.raises(CircuitOpenError):
            await executor.run(AsyncMock(), context)

        assert (await circuit_breakers.get_state(ENDPOINT)).failure_count == 5
        entries = await repository.query_errors(clock.now.replace(year=2000))
        assert [e.error_type for e in entries] == ["circuit_open"]

    @pytest.mark.asyncio
    async def test_trial_run_keeps_ownership_across_retries(
        self, executor, context, circuit_breakers, clock
    ) -> None:
        for _ in range(5):
            await circuit_breakers.record_failure(ENDPOINT)
        clock.advance(seconds=300)
        operation = AsyncMock(side_effect=[TimeoutError(), "recovered"])

        assert await executor.run(operation, context) == "recovered"

        state = await circuit_breakers.get_state(ENDPOINT)
        assert state.state == CircuitStatus.CLOSED


class TestErrorReporting:
    @pytest.mark.asyncio
    async def test_each_failed_attempt_reported(self, circuit_breakers, fake_sleep, context) -> None:
        sink = AsyncMock()
        executor = RetryExecutor(circuit_breakers, error_sink=sink, sleep=fake_sleep)

        with pytest.raises(TimeoutError):
            await executor.run(AsyncMock(side_effect=TimeoutError()), context)

        assert sink.log_error.await_count == 3
        attempts = [call.args[0].context["attempt"] for call in sink.log_error.await_args_list]
        assert attempts == [1, 2, 3]
        first = sink.log_error.await_args_list[0].args[0]
        assert first.user_id == "diver-1"
        assert first.endpoint == ENDPOINT
        assert first.context["retryable"] is True
