"""
Monitoring Service

Read-only aggregations over the monitoring repository and the circuit
breaker registry, backing the /api/monitor endpoints.
"""

import datetime as dt
from collections import Counter, defaultdict
from typing import Any, Callable, Optional

from divecoach.models.domain import CircuitState, CircuitStatus, HourlyRollup, Severity
from divecoach.resilience.circuit_breaker import CircuitBreakerRegistry
from divecoach.services.repository import MonitoringRepository

RECENT_USAGE_LIMIT = 100
RECENT_ERRORS_LIMIT = 50
CRITICAL_ERRORS_LIMIT = 10
RECENT_ALERTS_LIMIT = 20


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _circuit_payload(state: CircuitState) -> dict[str, Any]:
    return {
        "state": state.state.value,
        "failureCount": state.failure_count,
        "lastFailureTime": state.last_failure_time.isoformat() if state.last_failure_time else None,
        "nextAttemptTime": state.next_attempt_time.isoformat() if state.next_attempt_time else None,
    }


def summarize_rollups(rollups: list[HourlyRollup]) -> dict[str, dict[str, Any]]:
    """Collapse hourly rollups into one summary per endpoint."""
    totals: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
    for rollup in rollups:
        bucket = totals[rollup.endpoint]
        bucket["requests"] += rollup.request_count
        bucket["successes"] += rollup.success_count
        bucket["errors"] += rollup.error_count
        bucket["response_time"] += rollup.total_response_time_ms
        bucket["tokens"] += rollup.total_tokens
        bucket["cost"] += rollup.total_cost

    summary = {}
    for endpoint, t in totals.items():
        requests = int(t["requests"])
        summary[endpoint] = {
            "requestCount": requests,
            "errorCount": int(t["errors"]),
            "avgResponseTime": round(t["response_time"] / requests) if requests else 0,
            "successRate": round(t["successes"] / requests * 100, 1) if requests else 0,
            "totalTokens": int(t["tokens"]),
            "totalCost": round(t["cost"], 6),
        }
    return summary


class MonitoringService:
    """Aggregations for the dashboard, usage analytics and error tracking."""

    def __init__(
        self,
        repository: MonitoringRepository,
        circuit_breakers: CircuitBreakerRegistry,
        clock: Callable[[], dt.datetime] = _utc_now,
    ) -> None:
        self._repository = repository
        self._breakers = circuit_breakers
        self._clock = clock

    async def circuit_states(self) -> dict[str, dict[str, Any]]:
        states = await self._breakers.snapshot()
        return {endpoint: _circuit_payload(state) for endpoint, state in states.items()}

    # =========================================================================
    # Usage analytics
    # =========================================================================

    async def usage_analytics(
        self, time_range_days: int = 7, user_id: Optional[str] = None
    ) -> dict[str, Any]:
        """
        Usage summary over the last time_range_days days.

        Returns:
            {"summary": {...}, "metrics": [newest 100 records]}
        """
        since = self._clock() - dt.timedelta(days=time_range_days)
        records = await self._repository.query_usage(since, user_id=user_id)

        total = len(records)
        successes = sum(1 for r in records if r.success)
        error_breakdown = Counter(r.error_type or "unknown" for r in records if not r.success)

        daily: dict[str, dict[str, float]] = {}
        for record in records:
            day = record.timestamp.date().isoformat()
            bucket = daily.setdefault(day, {"requests": 0, "tokens": 0, "cost": 0.0})
            bucket["requests"] += 1
            bucket["tokens"] += record.tokens_used
            bucket["cost"] += record.cost_estimate

        summary = {
            "totalRequests": total,
            "totalTokens": sum(r.tokens_used for r in records),
            "totalCost": round(sum(r.cost_estimate for r in records), 6),
            "avgResponseTime": round(sum(r.response_time_ms for r in records) / total) if total else 0,
            "successRate": round(successes / total * 100) if total else 0,
            "errorBreakdown": dict(error_breakdown),
            "dailyUsage": daily,
        }
        return {
            "summary": summary,
            "metrics": [r.model_dump(mode="json") for r in records[:RECENT_USAGE_LIMIT]],
            "timeRange": f"{time_range_days} days",
        }

    # =========================================================================
    # Error tracking
    # =========================================================================

    async def error_tracking(
        self,
        time_range_hours: int = 24,
        severity: Optional[Severity] = None,
        endpoint: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Error statistics over the last time_range_hours hours.

        Returns:
            {"stats": {...}, "errors": [newest 50], "circuitBreakers": {...}}
        """
        since = self._clock() - dt.timedelta(hours=time_range_hours)
        entries = await self._repository.query_errors(since, severity=severity, endpoint=endpoint)
        circuits = await self.circuit_states()

        stats = {
            "totalErrors": len(entries),
            "errorsByType": dict(Counter(e.error_type for e in entries)),
            "errorsBySeverity": dict(Counter(e.severity.value for e in entries)),
            "errorsByEndpoint": dict(Counter(e.endpoint for e in entries)),
            "unresolvedErrors": sum(1 for e in entries if not e.resolved),
            "circuitBreakerStates": circuits,
        }
        return {
            "stats": stats,
            "errors": [e.model_dump(mode="json") for e in entries[:RECENT_ERRORS_LIMIT]],
            "circuitBreakers": circuits,
            "timeRange": f"{time_range_hours} hours",
        }

    # =========================================================================
    # Dashboard
    # =========================================================================

    async def dashboard(self) -> dict[str, Any]:
        now = self._clock()
        last_hour = now - dt.timedelta(hours=1)
        last_day = now - dt.timedelta(hours=24)
        last_week = now - dt.timedelta(days=7)

        rollups_week = await self._repository.query_rollups(last_week - dt.timedelta(hours=1))
        rollups_day = [r for r in rollups_week if r.bucket >= last_day - dt.timedelta(hours=1)]
        rollups_hour = [r for r in rollups_day if r.bucket >= last_hour - dt.timedelta(hours=1)]

        errors_day = await self._repository.query_errors(last_day)
        by_type = Counter((e.error_type, e.severity.value) for e in errors_day)
        critical = [
            e for e in errors_day
            if e.severity == Severity.CRITICAL and not e.resolved
        ][:CRITICAL_ERRORS_LIMIT]

        usage_day = await self._repository.query_usage(last_day)
        budgets = [b for b in await self._repository.list_budgets() if b.active]
        alerts = (await self._repository.query_alerts(last_week))[:RECENT_ALERTS_LIMIT]

        states = await self._breakers.snapshot()
        closed = sum(1 for s in states.values() if s.state == CircuitStatus.CLOSED)
        health_score = round(closed / len(states) * 100) if states else 100

        requests_day = sum(r.request_count for r in rollups_day)
        errors_count_day = sum(r.error_count for r in rollups_day)
        response_time_day = sum(r.total_response_time_ms for r in rollups_day)
        cost_day = sum(r.cost_estimate for r in usage_day)

        return {
            "performance": {
                "realtime": summarize_rollups(rollups_hour),
                "last24h": summarize_rollups(rollups_day),
                "last7d": summarize_rollups(rollups_week),
            },
            "errors": {
                "recent": len(errors_day),
                "byType": [
                    {"errorType": error_type, "severity": severity, "count": count}
                    for (error_type, severity), count in by_type.most_common()
                ],
                "critical": [e.model_dump(mode="json") for e in critical],
            },
            "costs": {
                "current": round(cost_day, 6),
                "budgets": [b.model_dump(mode="json") for b in budgets],
                "alerts": [a.model_dump(mode="json") for a in alerts],
            },
            "health": {
                "circuitBreakers": {k: _circuit_payload(v) for k, v in states.items()},
                "healthScore": health_score,
            },
            "summary": {
                "totalRequests24h": requests_day,
                "avgResponseTime": round(response_time_day / requests_day) if requests_day else 0,
                "errorRate": round(errors_count_day / requests_day * 100, 1) if requests_day else 0,
                "totalCost24h": round(cost_day, 6),
                "activeAlerts": len(alerts),
                "healthScore": health_score,
            },
            "generatedAt": now.isoformat(),
        }
