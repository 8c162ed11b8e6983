"""
Monitoring Repository

Durable storage for usage records, error log entries, hourly rollups, cost
budgets and alerts. Two implementations:

- InMemoryMonitoringRepository: per-process lists guarded by asyncio.Lock
- RedisMonitoringRepository: sorted sets scored by timestamp, rollups as
  hashes updated with HINCRBY/HINCRBYFLOAT in a single pipeline

Rollups store only sums and counters, so concurrent writers never need a
read-modify-write cycle.

Pattern: Repository pattern with Redis storage
"""

import asyncio
import datetime as dt
from abc import ABC, abstractmethod
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from divecoach.core.exceptions import MonitoringError
from divecoach.models.domain import (
    CostAlert,
    CostBudget,
    ErrorLogEntry,
    HourlyRollup,
    Severity,
    UsageRecord,
)

ROLLUP_FIELDS = (
    "request_count",
    "success_count",
    "error_count",
    "total_response_time_ms",
    "total_tokens",
    "total_cost",
)


def hour_bucket(timestamp: dt.datetime) -> dt.datetime:
    """Truncate a timestamp to the start of its UTC hour."""
    return timestamp.astimezone(dt.timezone.utc).replace(minute=0, second=0, microsecond=0)


def _matches_error(
    entry: ErrorLogEntry,
    severity: Optional[Severity],
    endpoint: Optional[str],
    unresolved_only: bool,
) -> bool:
    if severity is not None and entry.severity != severity:
        return False
    if endpoint is not None and entry.endpoint != endpoint:
        return False
    if unresolved_only and entry.resolved:
        return False
    return True


class MonitoringRepository(ABC):
    """Storage interface used by UsageRecorder and MonitoringService."""

    @abstractmethod
    async def append_usage(self, record: UsageRecord) -> None: ...

    @abstractmethod
    async def query_usage(
        self, since: dt.datetime, user_id: Optional[str] = None
    ) -> list[UsageRecord]:
        """Usage records at or after `since`, newest first."""

    @abstractmethod
    async def append_error(self, entry: ErrorLogEntry) -> None: ...

    @abstractmethod
    async def query_errors(
        self,
        since: dt.datetime,
        severity: Optional[Severity] = None,
        endpoint: Optional[str] = None,
        unresolved_only: bool = False,
    ) -> list[ErrorLogEntry]:
        """Error entries at or after `since`, newest first."""

    @abstractmethod
    async def increment_rollup(
        self, endpoint: str, bucket: dt.datetime, increments: dict[str, float]
    ) -> None:
        """Atomically add increments to the (endpoint, bucket) rollup."""

    @abstractmethod
    async def query_rollups(self, since: dt.datetime) -> list[HourlyRollup]: ...

    @abstractmethod
    async def get_budget(self, user_id: str) -> Optional[CostBudget]: ...

    @abstractmethod
    async def save_budget(self, budget: CostBudget) -> None: ...

    @abstractmethod
    async def list_budgets(self) -> list[CostBudget]: ...

    @abstractmethod
    async def append_alert(self, alert: CostAlert) -> None: ...

    @abstractmethod
    async def query_alerts(self, since: dt.datetime) -> list[CostAlert]:
        """Alerts sent at or after `since`, newest first."""

    async def ping(self) -> bool:
        return True


# =============================================================================
# In-Memory Implementation
# =============================================================================


class InMemoryMonitoringRepository(MonitoringRepository):
    """Process-local repository; suitable for a single worker and for tests."""

    def __init__(self) -> None:
        self._usage: list[UsageRecord] = []
        self._errors: list[ErrorLogEntry] = []
        self._alerts: list[CostAlert] = []
        self._budgets: dict[str, CostBudget] = {}
        self._rollups: dict[tuple[str, dt.datetime], HourlyRollup] = {}
        self._lock = asyncio.Lock()

    async def append_usage(self, record: UsageRecord) -> None:
        async with self._lock:
            self._usage.append(record)

    async def query_usage(
        self, since: dt.datetime, user_id: Optional[str] = None
    ) -> list[UsageRecord]:
        records = [
            r for r in self._usage
            if r.timestamp >= since and (user_id is None or r.user_id == user_id)
        ]
        return sorted(records, key=lambda r: r.timestamp, reverse=True)

    async def append_error(self, entry: ErrorLogEntry) -> None:
        async with self._lock:
            self._errors.append(entry)

    async def query_errors(
        self,
        since: dt.datetime,
        severity: Optional[Severity] = None,
        endpoint: Optional[str] = None,
        unresolved_only: bool = False,
    ) -> list[ErrorLogEntry]:
        entries = [
            e for e in self._errors
            if e.timestamp >= since and _matches_error(e, severity, endpoint, unresolved_only)
        ]
        return sorted(entries, key=lambda e: e.timestamp, reverse=True)

    async def increment_rollup(
        self, endpoint: str, bucket: dt.datetime, increments: dict[str, float]
    ) -> None:
        unknown = set(increments) - set(ROLLUP_FIELDS)
        if unknown:
            raise ValueError(f"Unknown rollup fields: {sorted(unknown)}")
        async with self._lock:
            rollup = self._rollups.setdefault(
                (endpoint, bucket), HourlyRollup(endpoint=endpoint, bucket=bucket)
            )
            for field, amount in increments.items():
                setattr(rollup, field, getattr(rollup, field) + amount)

    async def query_rollups(self, since: dt.datetime) -> list[HourlyRollup]:
        rollups = [r.model_copy() for r in self._rollups.values() if r.bucket >= since]
        return sorted(rollups, key=lambda r: r.bucket, reverse=True)

    async def get_budget(self, user_id: str) -> Optional[CostBudget]:
        budget = self._budgets.get(user_id)
        return budget.model_copy() if budget else None

    async def save_budget(self, budget: CostBudget) -> None:
        async with self._lock:
            self._budgets[budget.user_id] = budget.model_copy()

    async def list_budgets(self) -> list[CostBudget]:
        return [b.model_copy() for b in self._budgets.values()]

    async def append_alert(self, alert: CostAlert) -> None:
        async with self._lock:
            self._alerts.append(alert)

    async def query_alerts(self, since: dt.datetime) -> list[CostAlert]:
        alerts = [a for a in self._alerts if a.sent_at >= since]
        return sorted(alerts, key=lambda a: a.sent_at, reverse=True)


# =============================================================================
# Redis Implementation
# =============================================================================


class RedisMonitoringRepository(MonitoringRepository):
    """
    Redis-backed repository shared by every instance.

    Layout (all under key_prefix):
        monitor:usage           ZSET  json(UsageRecord) scored by timestamp
        monitor:errors          ZSET  json(ErrorLogEntry) scored by timestamp
        monitor:alerts          ZSET  json(CostAlert) scored by sent_at
        monitor:rollup:{ep}:{h} HASH  rollup counters
        monitor:rollups         ZSET  rollup hash keys scored by bucket
        monitor:budgets         HASH  user_id -> json(CostBudget)
    """

    def __init__(
        self,
        redis_client: Redis,
        key_prefix: str = "divecoach:",
        retention_days: int = 30,
    ) -> None:
        self._redis = redis_client
        self._prefix = f"{key_prefix}monitor:"
        self._retention = dt.timedelta(days=retention_days)

    def _key(self, name: str) -> str:
        return f"{self._prefix}{name}"

    async def _append(self, name: str, payload: str, timestamp: dt.datetime) -> None:
        key = self._key(name)
        cutoff = (timestamp - self._retention).timestamp()
        try:
            pipe = self._redis.pipeline()
            pipe.zadd(key, {payload: timestamp.timestamp()})
            pipe.zremrangebyscore(key, "-inf", cutoff)
            await pipe.execute()
        except RedisError as e:
            raise MonitoringError(f"Failed to append to {name}: {e}") from e

    async def _range(self, name: str, since: dt.datetime) -> list[str]:
        try:
            return await self._redis.zrevrangebyscore(self._key(name), "+inf", since.timestamp())
        except RedisError as e:
            raise MonitoringError(f"Failed to query {name}: {e}") from e

    async def append_usage(self, record: UsageRecord) -> None:
        await self._append("usage", record.model_dump_json(), record.timestamp)

    async def query_usage(
        self, since: dt.datetime, user_id: Optional[str] = None
    ) -> list[UsageRecord]:
        records = [UsageRecord.model_validate_json(raw) for raw in await self._range("usage", since)]
        if user_id is not None:
            records = [r for r in records if r.user_id == user_id]
        return records

    async def append_error(self, entry: ErrorLogEntry) -> None:
        await self._append("errors", entry.model_dump_json(), entry.timestamp)

    async def query_errors(
        self,
        since: dt.datetime,
        severity: Optional[Severity] = None,
        endpoint: Optional[str] = None,
        unresolved_only: bool = False,
    ) -> list[ErrorLogEntry]:
        entries = [ErrorLogEntry.model_validate_json(raw) for raw in await self._range("errors", since)]
        return [e for e in entries if _matches_error(e, severity, endpoint, unresolved_only)]

    async def increment_rollup(
        self, endpoint: str, bucket: dt.datetime, increments: dict[str, float]
    ) -> None:
        rollup_key = self._key(f"rollup:{endpoint}:{bucket.isoformat()}")
        try:
            pipe = self._redis.pipeline()
            pipe.hsetnx(rollup_key, "endpoint", endpoint)
            pipe.hsetnx(rollup_key, "bucket", bucket.isoformat())
            for field, amount in increments.items():
                if isinstance(amount, int):
                    pipe.hincrby(rollup_key, field, amount)
                else:
                    pipe.hincrbyfloat(rollup_key, field, amount)
            pipe.zadd(self._key("rollups"), {rollup_key: bucket.timestamp()})
            pipe.expire(rollup_key, int(self._retention.total_seconds()))
            await pipe.execute()
        except RedisError as e:
            raise MonitoringError(f"Failed to update rollup: {e}") from e

    async def query_rollups(self, since: dt.datetime) -> list[HourlyRollup]:
        rollups = []
        try:
            for rollup_key in await self._range("rollups", since):
                data = await self._redis.hgetall(rollup_key)
                if not data:
                    continue
                rollups.append(
                    HourlyRollup(
                        endpoint=data["endpoint"],
                        bucket=dt.datetime.fromisoformat(data["bucket"]),
                        request_count=int(data.get("request_count", 0)),
                        success_count=int(data.get("success_count", 0)),
                        error_count=int(data.get("error_count", 0)),
                        total_response_time_ms=float(data.get("total_response_time_ms", 0)),
                        total_tokens=int(data.get("total_tokens", 0)),
                        total_cost=float(data.get("total_cost", 0)),
                    )
                )
        except RedisError as e:
            raise MonitoringError(f"Failed to read rollups: {e}") from e
        return rollups

    async def get_budget(self, user_id: str) -> Optional[CostBudget]:
        try:
            raw = await self._redis.hget(self._key("budgets"), user_id)
        except RedisError as e:
            raise MonitoringError(f"Failed to read budget: {e}") from e
        return CostBudget.model_validate_json(raw) if raw else None

    async def save_budget(self, budget: CostBudget) -> None:
        try:
            await self._redis.hset(self._key("budgets"), budget.user_id, budget.model_dump_json())
        except RedisError as e:
            raise MonitoringError(f"Failed to save budget: {e}") from e

    async def list_budgets(self) -> list[CostBudget]:
        try:
            data = await self._redis.hgetall(self._key("budgets"))
        except RedisError as e:
            raise MonitoringError(f"Failed to list budgets: {e}") from e
        return [CostBudget.model_validate_json(raw) for raw in data.values()]

    async def append_alert(self, alert: CostAlert) -> None:
        await self._append("alerts", alert.model_dump_json(), alert.sent_at)

    async def query_alerts(self, since: dt.datetime) -> list[CostAlert]:
        return [CostAlert.model_validate_json(raw) for raw in await self._range("alerts", since)]

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self._redis.aclose()


__all__ = [
    "MonitoringRepository",
    "InMemoryMonitoringRepository",
    "RedisMonitoringRepository",
    "hour_bucket",
]
