"""
Models package: domain records, request bodies and response payloads.
"""

from divecoach.models.domain import (
    CacheEntry,
    CircuitState,
    CircuitStatus,
    CostAlert,
    CostBudget,
    DiveData,
    DiveLog,
    ErrorClassification,
    ErrorLogEntry,
    ErrorType,
    HourlyRollup,
    Severity,
    UsageRecord,
)
from divecoach.models.requests import (
    ChatRequest,
    ErrorReportRequest,
    HistoryMessage,
    UsageMetricRequest,
)
from divecoach.models.responses import (
    AssistantMessage,
    ChatMetadata,
    ChatResponse,
    HealthResponse,
)

__all__ = [
    "CacheEntry",
    "CircuitState",
    "CircuitStatus",
    "CostAlert",
    "CostBudget",
    "DiveData",
    "DiveLog",
    "ErrorClassification",
    "ErrorLogEntry",
    "ErrorType",
    "HourlyRollup",
    "Severity",
    "UsageRecord",
    "ChatRequest",
    "ErrorReportRequest",
    "HistoryMessage",
    "UsageMetricRequest",
    "AssistantMessage",
    "ChatMetadata",
    "ChatResponse",
    "HealthResponse",
]
