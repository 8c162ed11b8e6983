"""
Services Package

- ResponseCache (TTL reply cache over a ResilienceStore)
- UsageRecorder (usage records, error log, budgets)
- MonitoringService (dashboard and analytics aggregations)
- CoachingService (the two chat flows)
"""

from divecoach.services.cache import ResponseCache
from divecoach.services.coaching import CoachingService
from divecoach.services.monitoring import MonitoringService
from divecoach.services.repository import (
    InMemoryMonitoringRepository,
    MonitoringRepository,
    RedisMonitoringRepository,
)
from divecoach.services.usage import UsageRecorder

__all__ = [
    "CoachingService",
    "InMemoryMonitoringRepository",
    "MonitoringRepository",
    "MonitoringService",
    "RedisMonitoringRepository",
    "ResponseCache",
    "UsageRecorder",
]
