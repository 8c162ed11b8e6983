"""
Tests for MonitoringService aggregations.

Data is written through UsageRecorder so rollups and records agree, and
every read uses the shared fake clock.
"""

import datetime as dt

import pytest

from divecoach.models.domain import CostBudget, ErrorLogEntry, Severity, UsageRecord
from divecoach.services.monitoring import MonitoringService, summarize_rollups
from divecoach.services.repository import hour_bucket

GENERAL = "/api/chat/general"
STRUCTURED = "/api/openai/chat"


@pytest.fixture
def monitoring(repository, circuit_breakers, clock) -> MonitoringService:
    return MonitoringService(repository, circuit_breakers, clock=clock)


async def _seed_usage(recorder, clock) -> None:
    await recorder.record_usage(
        UsageRecord(
            user_id="a", endpoint=GENERAL, tokens_used=100, response_time_ms=400,
            cost_estimate=0.01, timestamp=clock.now,
        )
    )
    await recorder.record_usage(
        UsageRecord(
            user_id="a", endpoint=GENERAL, tokens_used=0, response_time_ms=600,
            success=False, error_type="timeout", timestamp=clock.now - dt.timedelta(days=2),
        )
    )
    await recorder.record_usage(
        UsageRecord(
            user_id="b", endpoint=STRUCTURED, tokens_used=300, response_time_ms=200,
            cost_estimate=0.03, timestamp=clock.now,
        )
    )


class TestUsageAnalytics:
    @pytest.mark.asyncio
    async def test_summary(self, monitoring, recorder, clock) -> None:
        await _seed_usage(recorder, clock)

        result = await monitoring.usage_analytics(time_range_days=7)
        summary = result["summary"]

        assert summary["totalRequests"] == 3
        assert summary["totalTokens"] == 400
        assert summary["totalCost"] == pytest.approx(0.04)
        assert summary["avgResponseTime"] == 400
        assert summary["successRate"] == 67
        assert summary["errorBreakdown"] == {"timeout": 1}
        assert summary["dailyUsage"]["2024-06-12"]["requests"] == 2
        assert summary["dailyUsage"]["2024-06-10"]["requests"] == 1
        assert result["timeRange"] == "7 days"
        assert len(result["metrics"]) == 3

    @pytest.mark.asyncio
    async def test_user_filter_and_range(self, monitoring, recorder, clock) -> None:
        await _seed_usage(recorder, clock)

        result = await monitoring.usage_analytics(time_range_days=1, user_id="a")
        assert result["summary"]["totalRequests"] == 1

    @pytest.mark.asyncio
    async def test_empty(self, monitoring) -> None:
        summary = (await monitoring.usage_analytics())["summary"]
        assert summary["totalRequests"] == 0
        assert summary["successRate"] == 0
        assert summary["avgResponseTime"] == 0


class TestErrorTracking:
    @pytest.mark.asyncio
    async def test_stats(self, monitoring, repository, circuit_breakers, clock) -> None:
        for severity, error_type in [
            (Severity.MEDIUM, "timeout"),
            (Severity.MEDIUM, "timeout"),
            (Severity.CRITICAL, "quota_exceeded"),
        ]:
            await repository.append_error(
                ErrorLogEntry(
                    endpoint=STRUCTURED, error_type=error_type, error_message="x",
                    severity=severity, timestamp=clock.now,
                )
            )
        await circuit_breakers.record_failure(STRUCTURED)

        result = await monitoring.error_tracking(time_range_hours=24)
        stats = result["stats"]

        assert stats["totalErrors"] == 3
        assert stats["errorsByType"] == {"timeout": 2, "quota_exceeded": 1}
        assert stats["errorsBySeverity"] == {"medium": 2, "critical": 1}
        assert stats["errorsByEndpoint"] == {STRUCTURED: 3}
        assert stats["unresolvedErrors"] == 3
        assert result["circuitBreakers"][STRUCTURED]["failureCount"] == 1
        assert result["circuitBreakers"][STRUCTURED]["state"] == "closed"

    @pytest.mark.asyncio
    async def test_severity_filter(self, monitoring, repository, clock) -> None:
        await repository.append_error(
            ErrorLogEntry(endpoint=GENERAL, error_type="timeout", error_message="x", timestamp=clock.now)
        )
        result = await monitoring.error_tracking(severity=Severity.CRITICAL)
        assert result["stats"]["totalErrors"] == 0


class TestDashboard:
    @pytest.mark.asyncio
    async def test_sections(self, monitoring, recorder, repository, circuit_breakers, clock) -> None:
        await _seed_usage(recorder, clock)
        await recorder.set_budget(CostBudget(user_id="a", limit_amount=10.0))
        await repository.append_error(
            ErrorLogEntry(
                endpoint=STRUCTURED, error_type="auth_failure", error_message="bad key",
                severity=Severity.CRITICAL, timestamp=clock.now,
            )
        )
        for _ in range(5):
            await circuit_breakers.record_failure(STRUCTURED)
        await circuit_breakers.record_failure(GENERAL)

        dashboard = await monitoring.dashboard()

        assert dashboard["performance"]["last24h"][GENERAL]["requestCount"] == 1
        assert dashboard["performance"]["last7d"][GENERAL]["requestCount"] == 2
        assert dashboard["errors"]["recent"] == 1
        assert dashboard["errors"]["byType"] == [
            {"errorType": "auth_failure", "severity": "critical", "count": 1}
        ]
        assert len(dashboard["errors"]["critical"]) == 1
        assert dashboard["costs"]["current"] == pytest.approx(0.04)
        assert [b["user_id"] for b in dashboard["costs"]["budgets"]] == ["a"]
        assert dashboard["health"]["healthScore"] == 50
        assert dashboard["health"]["circuitBreakers"][STRUCTURED]["state"] == "open"
        assert dashboard["summary"]["totalRequests24h"] == 2
        assert dashboard["summary"]["healthScore"] == 50

    @pytest.mark.asyncio
    async def test_health_score_without_circuits(self, monitoring) -> None:
        dashboard = await monitoring.dashboard()
        assert dashboard["health"]["healthScore"] == 100
        assert dashboard["summary"]["errorRate"] == 0


def test_summarize_rollups() -> None:
    from divecoach.models.domain import HourlyRollup

    bucket = hour_bucket(dt.datetime(2024, 6, 12, 10, tzinfo=dt.timezone.utc))
    summary = summarize_rollups(
        [
            HourlyRollup(endpoint=GENERAL, bucket=bucket, request_count=3, success_count=2,
                         error_count=1, total_response_time_ms=900, total_tokens=30, total_cost=0.3),
            HourlyRollup(endpoint=GENERAL, bucket=bucket - dt.timedelta(hours=1), request_count=1,
                         success_count=1, total_response_time_ms=100),
        ]
    )
    assert summary[GENERAL] == {
        "requestCount": 4,
        "errorCount": 1,
        "avgResponseTime": 250,
        "successRate": 75.0,
        "totalTokens": 30,
        "totalCost": 0.3,
    }
