"""
Usage Recorder Service

Records one UsageRecord per model-backed request and one ErrorLogEntry per
failed attempt, keeps hourly rollups current, and raises cost alerts.

Recording is a side effect of serving a chat request: repository failures
are logged and dropped so they never fail the request.

Pattern: Repository pattern; per-1M-token pricing table
"""

import datetime as dt
from decimal import Decimal
from typing import Callable, Optional

from divecoach.core.exceptions import MonitoringError
from divecoach.models.domain import (
    CostAlert,
    CostBudget,
    ErrorLogEntry,
    Severity,
    UsageRecord,
)
from divecoach.observability.logging import get_logger
from divecoach.observability.metrics import record_request_cost, record_token_usage
from divecoach.services.repository import MonitoringRepository, hour_bucket

logger = get_logger(__name__)


# =============================================================================
# Model Pricing - prices per 1M tokens (input/output)
# =============================================================================

DEFAULT_PRICING: dict[str, dict[str, Decimal]] = {
    "gpt-4": {
        "input": Decimal("30.00"),
        "output": Decimal("60.00"),
    },
    "gpt-4-turbo": {
        "input": Decimal("10.00"),
        "output": Decimal("30.00"),
    },
    "gpt-4o": {
        "input": Decimal("2.50"),
        "output": Decimal("10.00"),
    },
    "gpt-4o-mini": {
        "input": Decimal("0.15"),
        "output": Decimal("0.60"),
    },
    "gpt-3.5-turbo": {
        "input": Decimal("0.50"),
        "output": Decimal("1.50"),
    },
}

FALLBACK_PRICING_MODEL = "gpt-4"

# Split applied when only the total token count is known
ESTIMATED_INPUT_SHARE = Decimal("0.7")


def get_model_pricing(
    model: str, pricing: Optional[dict[str, dict[str, Decimal]]] = None
) -> dict[str, Decimal]:
    """Exact match, then longest prefix match (dated variants), then gpt-4."""
    pricing = pricing or DEFAULT_PRICING
    if model in pricing:
        return pricing[model]
    for prefix in sorted(pricing, key=len, reverse=True):
        if model.startswith(prefix):
            return pricing[prefix]
    return pricing.get(FALLBACK_PRICING_MODEL, DEFAULT_PRICING[FALLBACK_PRICING_MODEL])


def calculate_cost(
    model: str,
    total_tokens: int,
    prompt_tokens: Optional[int] = None,
    completion_tokens: Optional[int] = None,
    pricing: Optional[dict[str, dict[str, Decimal]]] = None,
) -> float:
    """
    Estimated cost in USD.

    Args:
        model: Model name
        total_tokens: Total tokens of the request
        prompt_tokens: Input tokens, if known
        completion_tokens: Output tokens, if known

    Returns:
        Cost in USD. Without a prompt/completion split, 70% of the total is
        priced as input and 30% as output.
    """
    rates = get_model_pricing(model, pricing)
    if prompt_tokens is None or completion_tokens is None:
        prompt = Decimal(total_tokens) * ESTIMATED_INPUT_SHARE
        completion = Decimal(total_tokens) - prompt
    else:
        prompt = Decimal(prompt_tokens)
        completion = Decimal(completion_tokens)
    million = Decimal("1000000")
    return float(prompt / million * rates["input"] + completion / million * rates["output"])


def period_start(period: str, now: dt.datetime) -> dt.datetime:
    """Start of the budget period containing now (weeks start on Sunday)."""
    midnight = now.astimezone(dt.timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "daily":
        return midnight
    if period == "weekly":
        return midnight - dt.timedelta(days=(midnight.weekday() + 1) % 7)
    return midnight.replace(day=1)


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


# =============================================================================
# UsageRecorder
# =============================================================================


class UsageRecorder:
    """
    Sink for usage records and error log entries.

    Attributes:
        repository: Durable storage for records, rollups, budgets and alerts
    """

    def __init__(
        self,
        repository: MonitoringRepository,
        pricing: Optional[dict[str, dict[str, Decimal]]] = None,
        clock: Callable[[], dt.datetime] = _utc_now,
    ) -> None:
        self._repository = repository
        self._pricing = pricing or DEFAULT_PRICING
        self._clock = clock

    @property
    def repository(self) -> MonitoringRepository:
        return self._repository

    def calculate_cost(
        self,
        model: str,
        total_tokens: int,
        prompt_tokens: Optional[int] = None,
        completion_tokens: Optional[int] = None,
    ) -> float:
        return calculate_cost(model, total_tokens, prompt_tokens, completion_tokens, self._pricing)

    async def record_usage(self, record: UsageRecord) -> None:
        """
        Append a usage record, update its hourly rollup, check the budget.

        Never raises for storage failures.
        """
        increments: dict[str, float] = {
            "request_count": 1,
            "success_count": 1 if record.success else 0,
            "error_count": 0 if record.success else 1,
            "total_response_time_ms": record.response_time_ms,
            "total_tokens": record.tokens_used,
            "total_cost": record.cost_estimate,
        }
        try:
            await self._repository.append_usage(record)
            await self._repository.increment_rollup(
                record.endpoint, hour_bucket(record.timestamp), increments
            )
            if record.cost_estimate > 0:
                await self._check_budget(record.user_id)
        except MonitoringError as e:
            logger.warning("usage record dropped", endpoint=record.endpoint, error=str(e))
            return

        if record.tokens_used:
            record_token_usage(record.endpoint, record.model_used or "unknown", record.tokens_used)
        if record.cost_estimate:
            record_request_cost(record.endpoint, record.model_used or "unknown", record.cost_estimate)

    async def log_error(self, entry: ErrorLogEntry) -> None:
        """
        Append an error log entry. Critical entries also raise an alert.

        Never raises for storage failures.
        """
        log = logger.error if entry.severity == Severity.CRITICAL else logger.warning
        log(
            "upstream error recorded",
            endpoint=entry.endpoint,
            error_type=entry.error_type,
            severity=entry.severity.value,
            user_id=entry.user_id,
            attempt=entry.context.get("attempt"),
        )
        try:
            await self._repository.append_error(entry)
            if entry.severity == Severity.CRITICAL:
                await self._repository.append_alert(
                    CostAlert(
                        user_id=entry.user_id,
                        alert_type="critical_error",
                        message=(
                            f"Critical error in {entry.endpoint}: "
                            f"{entry.error_type} - {entry.error_message}"
                        ),
                        sent_at=self._clock(),
                    )
                )
        except MonitoringError as e:
            logger.warning("error log entry dropped", endpoint=entry.endpoint, error=str(e))

    async def set_budget(self, budget: CostBudget) -> None:
        await self._repository.save_budget(budget)

    async def _check_budget(self, user_id: str) -> None:
        budget = await self._repository.get_budget(user_id)
        if budget is None or not budget.active:
            return

        since = period_start(budget.period, self._clock())
        records = await self._repository.query_usage(since, user_id=user_id)
        budget.current_usage = sum(r.cost_estimate for r in records)
        percent_used = budget.current_usage / budget.limit_amount * 100

        if percent_used >= budget.alert_threshold_percent and not budget.alert_sent:
            exceeded = percent_used >= 100
            alert = CostAlert(
                user_id=user_id,
                alert_type="budget_exceeded" if exceeded else "budget_warning",
                message=(
                    f"{'Budget exceeded' if exceeded else 'Budget warning'}: "
                    f"{percent_used:.1f}% of {budget.period} budget used "
                    f"(${budget.current_usage:.4f} / ${budget.limit_amount:.2f})"
                ),
                current_usage=budget.current_usage,
                budget_limit=budget.limit_amount,
                sent_at=self._clock(),
            )
            await self._repository.append_alert(alert)
            logger.warning(
                "cost budget alert",
                user_id=user_id,
                alert_type=alert.alert_type,
                percent_used=round(percent_used, 1),
            )

        # Re-arms once usage falls back under the threshold (e.g. a new period)
        budget.alert_sent = percent_used >= budget.alert_threshold_percent
        await self._repository.save_budget(budget)
