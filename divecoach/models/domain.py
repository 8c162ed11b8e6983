"""
Domain Models

Pydantic models for the resilience layer (circuit state, cache entries,
error classification), the monitoring records (usage, errors, rollups,
budgets, alerts) and the dive facts the coaching flow works with.

Anti-Patterns Avoided:
- Optional fields use Optional[T] with explicit None default
- Naive datetimes: every timestamp defaults to an aware UTC value
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Circuit Breaker State
# =============================================================================


class CircuitStatus(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitState(BaseModel):
    """
    Persisted state of one endpoint's circuit breaker.

    Invariants:
        - state OPEN implies next_attempt_time is set
        - failure_count is reset to 0 by any success
        - trial_owner is only set while HALF_OPEN
    """

    endpoint_name: str
    failure_count: int = Field(default=0, ge=0)
    last_failure_time: Optional[datetime] = None
    state: CircuitStatus = CircuitStatus.CLOSED
    next_attempt_time: Optional[datetime] = None
    trial_owner: Optional[str] = None
    trial_started_at: Optional[datetime] = None


# =============================================================================
# Error Classification
# =============================================================================


class ErrorType(str, Enum):
    """Failure taxonomy shared by retry, monitoring and fallback messages."""

    RATE_LIMIT = "rate_limit"
    QUOTA_EXCEEDED = "quota_exceeded"
    AUTH_FAILURE = "auth_failure"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    VALIDATION_ERROR = "validation_error"
    UNKNOWN_ERROR = "unknown_error"
    CIRCUIT_OPEN = "circuit_open"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorClassification(BaseModel):
    """Result of classifying one failed upstream call."""

    model_config = ConfigDict(frozen=True)

    type: ErrorType
    severity: Severity
    retryable: bool


# =============================================================================
# Response Cache
# =============================================================================


class CacheEntry(BaseModel):
    """A cached coaching reply. Valid while now - stored_at < TTL."""

    key: str
    value: Any
    stored_at: float = Field(..., description="Epoch seconds when stored")


# =============================================================================
# Monitoring Records
# =============================================================================


class UsageRecord(BaseModel):
    """One completed (or failed) model-backed request. Write-once."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str
    endpoint: str
    tokens_used: int = Field(default=0, ge=0)
    response_time_ms: int = Field(default=0, ge=0)
    model_used: str = ""
    cost_estimate: float = Field(default=0.0, ge=0.0)
    success: bool = True
    error_type: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)


class ErrorLogEntry(BaseModel):
    """One failed attempt or terminal failure. Append-only."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: Optional[str] = None
    endpoint: str
    error_type: str
    error_message: str
    error_code: Optional[str] = None
    context: dict[str, Any] = Field(default_factory=dict)
    severity: Severity = Severity.MEDIUM
    resolved: bool = False
    timestamp: datetime = Field(default_factory=utc_now)


class HourlyRollup(BaseModel):
    """
    Per-endpoint, per-hour aggregate.

    Only sums and counters are stored so that concurrent writers can
    update a bucket with atomic increments. Averages are derived.
    """

    endpoint: str
    bucket: datetime
    request_count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_response_time_ms: float = 0.0
    total_tokens: int = 0
    total_cost: float = 0.0

    @property
    def avg_response_time_ms(self) -> float:
        if not self.request_count:
            return 0.0
        return self.total_response_time_ms / self.request_count

    @property
    def success_rate(self) -> float:
        if not self.request_count:
            return 0.0
        return self.success_count / self.request_count * 100


BudgetPeriod = Literal["daily", "weekly", "monthly"]
AlertType = Literal["budget_warning", "budget_exceeded", "critical_error"]


class CostBudget(BaseModel):
    """A user's spending limit for a period."""

    user_id: str
    period: BudgetPeriod = "monthly"
    limit_amount: float = Field(..., gt=0)
    alert_threshold_percent: float = Field(default=80.0, gt=0, le=100)
    current_usage: float = 0.0
    alert_sent: bool = False
    active: bool = True


class CostAlert(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: Optional[str] = None
    alert_type: AlertType
    message: str
    current_usage: Optional[float] = None
    budget_limit: Optional[float] = None
    sent_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# Dive Facts
# =============================================================================


class DiveData(BaseModel):
    """Dive facts extracted from a member's chat message."""

    discipline: Optional[str] = None
    depth: Optional[int] = None
    target_depth: Optional[int] = None
    reached_depth: Optional[int] = None
    total_time: Optional[str] = None
    issues: list[str] = Field(default_factory=list)


class DiveLog(BaseModel):
    """
    A logged dive.

    Accepts the camelCase shape the chat widget sends and the snake_case
    rows stored in the dive_logs table.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    date: Optional[str] = None
    discipline: Optional[str] = None
    location: Optional[str] = None
    target_depth: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("targetDepth", "target_depth")
    )
    reached_depth: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("reachedDepth", "reached_depth")
    )
    mouthfill_depth: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("mouthfillDepth", "mouthfill_depth")
    )
    issue_depth: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("issueDepth", "issue_depth")
    )
    issue_comment: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("issueComment", "issue_comment")
    )
    total_dive_time: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("totalDiveTime", "total_dive_time")
    )
    notes: Optional[str] = None

    @field_validator(
        "target_depth", "reached_depth", "mouthfill_depth", "issue_depth", mode="before"
    )
    @classmethod
    def blank_depth_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("total_dive_time", mode="before")
    @classmethod
    def numeric_time_as_text(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @property
    def deepest(self) -> Optional[float]:
        return self.reached_depth or self.target_depth
