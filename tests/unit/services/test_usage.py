"""
Tests for UsageRecorder and cost estimation.

Prices are per 1M tokens; without a prompt/completion split 70% of the
tokens are priced as input.
"""

import datetime as dt
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from divecoach.core.exceptions import MonitoringError
from divecoach.models.domain import CostBudget, ErrorLogEntry, Severity, UsageRecord
from divecoach.services.repository import hour_bucket
from divecoach.services.usage import (
    UsageRecorder,
    calculate_cost,
    get_model_pricing,
    period_start,
)

EPOCH = dt.datetime(2000, 1, 1, tzinfo=dt.timezone.utc)


class TestPricing:
    def test_exact_model(self) -> None:
        assert get_model_pricing("gpt-4o-mini")["input"] == Decimal("0.15")

    def test_dated_variant_uses_longest_prefix(self) -> None:
        assert get_model_pricing("gpt-4o-2024-08-06")["input"] == Decimal("2.50")

    def test_unknown_model_priced_as_gpt4(self) -> None:
        assert get_model_pricing("mystery-model")["input"] == Decimal("30.00")

    def test_cost_with_token_split(self) -> None:
        # 1000 * 30/1M + 500 * 60/1M
        assert calculate_cost("gpt-4", 1500, 1000, 500) == pytest.approx(0.06)

    def test_cost_with_total_only(self) -> None:
        # 700 input + 300 output on gpt-4
        assert calculate_cost("gpt-4", 1000) == pytest.approx(0.021 + 0.018)

    def test_zero_tokens(self) -> None:
        assert calculate_cost("gpt-4", 0) == 0.0


class TestPeriodStart:
    def test_daily(self) -> None:
        now = dt.datetime(2024, 6, 12, 15, 45, tzinfo=dt.timezone.utc)
        assert period_start("daily", now) == dt.datetime(2024, 6, 12, tzinfo=dt.timezone.utc)

    def test_weekly_starts_sunday(self) -> None:
        wednesday = dt.datetime(2024, 6, 12, 15, 45, tzinfo=dt.timezone.utc)
        assert period_start("weekly", wednesday) == dt.datetime(2024, 6, 9, tzinfo=dt.timezone.utc)

    def test_weekly_on_sunday(self) -> None:
        sunday = dt.datetime(2024, 6, 9, 8, tzinfo=dt.timezone.utc)
        assert period_start("weekly", sunday) == dt.datetime(2024, 6, 9, tzinfo=dt.timezone.utc)

    def test_monthly(self) -> None:
        now = dt.datetime(2024, 6, 12, 15, 45, tzinfo=dt.timezone.utc)
        assert period_start("monthly", now) == dt.datetime(2024, 6, 1, tzinfo=dt.timezone.utc)


class TestRecordUsage:
    @pytest.mark.asyncio
    async def test_appends_record_and_updates_rollup(self, recorder, repository, clock) -> None:
        record = UsageRecord(
            user_id="diver-1",
            endpoint="/api/chat/general",
            tokens_used=120,
            response_time_ms=800,
            model_used="gpt-4",
            cost_estimate=0.005,
            timestamp=clock.now,
        )
        await recorder.record_usage(record)
        await recorder.record_usage(
            record.model_copy(update={"id": "second", "success": False, "error_type": "timeout"})
        )

        assert len(await repository.query_usage(EPOCH)) == 2
        [rollup] = await repository.query_rollups(EPOCH)
        assert rollup.bucket == hour_bucket(clock.now)
        assert rollup.request_count == 2
        assert rollup.success_count == 1
        assert rollup.error_count == 1
        assert rollup.total_tokens == 240
        assert rollup.avg_response_time_ms == pytest.approx(800)
        assert rollup.success_rate == pytest.approx(50)

    @pytest.mark.asyncio
    async def test_repository_failure_is_swallowed(self) -> None:
        repository = AsyncMock()
        repository.append_usage.side_effect = MonitoringError("redis down")
        recorder = UsageRecorder(repository)

        await recorder.record_usage(UsageRecord(user_id="u", endpoint="/api/chat/general"))

        repository.increment_rollup.assert_not_awaited()


class TestBudgets:
    @pytest.mark.asyncio
    async def test_warning_at_threshold_sent_once(self, recorder, repository, clock) -> None:
        await recorder.set_budget(CostBudget(user_id="diver-1", period="daily", limit_amount=1.0))

        for _ in range(3):
            await recorder.record_usage(
                UsageRecord(
                    user_id="diver-1",
                    endpoint="/api/chat/general",
                    cost_estimate=0.3,
                    timestamp=clock.now,
                )
            )

        alerts = await repository.query_alerts(EPOCH)
        assert [a.alert_type for a in alerts] == ["budget_warning"]
        budget = await repository.get_budget("diver-1")
        assert budget.alert_sent is True
        assert budget.current_usage == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_warning_rearms_in_next_period(self, recorder, repository, clock) -> None:
        await recorder.set_budget(CostBudget(user_id="diver-1", period="daily", limit_amount=1.0))

        async def spend(amount: float) -> None:
            await recorder.record_usage(
                UsageRecord(
                    user_id="diver-1",
                    endpoint="/api/chat/general",
                    cost_estimate=amount,
                    timestamp=clock.now,
                )
            )

        await spend(0.9)
        clock.advance(days=1)
        await spend(0.1)
        assert (await repository.get_budget("diver-1")).alert_sent is False
        await spend(0.8)

        alerts = await repository.query_alerts(EPOCH)
        assert [a.alert_type for a in alerts] == ["budget_warning", "budget_warning"]
        assert sorted(a.sent_at for a in alerts) == [
            clock.now - dt.timedelta(days=1),
            clock.now,
        ]

    @pytest.mark.asyncio
    async def test_critical_error_alert_uses_recorder_clock(self, recorder, repository, clock) -> None:
        await recorder.log_error(
            ErrorLogEntry(
                endpoint="/api/openai/chat",
                error_type="quota_exceeded",
                error_message="quota",
                severity=Severity.CRITICAL,
            )
        )

        [alert] = await repository.query_alerts(EPOCH)
        assert alert.alert_type == "critical_error"
        assert alert.sent_at == clock.now

    @pytest.mark.asyncio
    async def test_exceeded_alert(self, recorder, repository, clock) -> None:
        await recorder.set_budget(CostBudget(user_id="diver-1", period="daily", limit_amount=0.5))

        await recorder.record_usage(
            UsageRecord(user_id="diver-1", endpoint="/api/chat/general", cost_estimate=0.6, timestamp=clock.now)
        )

        [alert] = await repository.query_alerts(EPOCH)
        assert alert.alert_type == "budget_exceeded"
        assert alert.budget_limit == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_usage_before_period_not_counted(self, recorder, repository, clock) -> None:
        await recorder.set_budget(CostBudget(user_id="diver-1", period="daily", limit_amount=1.0))
        await repository.append_usage(
            UsageRecord(
                user_id="diver-1",
                endpoint="/api/chat/general",
                cost_estimate=5.0,
                timestamp=clock.now - dt.timedelta(days=1),
            )
        )

        await recorder.record_usage(
            UsageRecord(user_id="diver-1", endpoint="/api/chat/general", cost_estimate=0.1, timestamp=clock.now)
        )

        assert await repository.query_alerts(EPOCH) == []

    @pytest.mark.asyncio
    async def test_inactive_budget_ignored(self, recorder, repository, clock) -> None:
        await recorder.set_budget(
            CostBudget(user_id="diver-1", period="daily", limit_amount=0.1, active=False)
        )
        await recorder.record_usage(
            UsageRecord(user_id="diver-1", endpoint="/api/chat/general", cost_estimate=1.0, timestamp=clock.now)
        )
        assert await repository.query_alerts(EPOCH) == []


class TestLogError:
    @pytest.mark.asyncio
    async def test_appends_entry(self, recorder, repository) -> None:
        await recorder.log_error(
            ErrorLogEntry(
                endpoint="/api/chat/general",
                error_type="timeout",
                error_message="timed out",
                severity=Severity.MEDIUM,
            )
        )
        [entry] = await repository.query_errors(EPOCH)
        assert entry.error_type == "timeout"
        assert await repository.query_alerts(EPOCH) == []

    @pytest.mark.asyncio
    async def test_critical_entry_raises_alert(self, recorder, repository) -> None:
        await recorder.log_error(
            ErrorLogEntry(
                user_id="diver-1",
                endpoint="/api/openai/chat",
                error_type="auth_failure",
                error_message="Invalid API key",
                severity=Severity.CRITICAL,
            )
        )
        [alert] = await repository.query_alerts(EPOCH)
        assert alert.alert_type == "critical_error"
        assert "auth_failure" in alert.message

    @pytest.mark.asyncio
    async def test_repository_failure_is_swallowed(self) -> None:
        repository = AsyncMock()
        repository.append_error.side_effect = MonitoringError("redis down")
        recorder = UsageRecorder(repository)

        await recorder.log_error(
            ErrorLogEntry(endpoint="/x", error_type="timeout", error_message="t", severity=Severity.CRITICAL)
        )

        repository.append_alert.assert_not_awaited()
