"""
Monitoring Router

GET  /api/monitor/dashboard          performance, errors, costs, health
GET  /api/monitor/usage-analytics    usage summary over timeRange days
POST /api/monitor/usage-analytics    record a usage metric
GET  /api/monitor/error-tracking     error statistics over timeRange hours
POST /api/monitor/error-tracking     log an error entry
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from divecoach.api.deps import get_monitoring_service, get_usage_recorder
from divecoach.models.domain import ErrorLogEntry, ErrorType, Severity, UsageRecord
from divecoach.models.requests import ErrorReportRequest, UsageMetricRequest
from divecoach.resilience.classification import classification_for, classify_error
from divecoach.services.monitoring import MonitoringService
from divecoach.services.usage import UsageRecorder

router = APIRouter(prefix="/api/monitor", tags=["Monitoring"])


@router.get("/dashboard")
async def dashboard(
    monitoring: MonitoringService = Depends(get_monitoring_service),
) -> dict[str, Any]:
    return await monitoring.dashboard()


@router.get("/usage-analytics")
async def get_usage_analytics(
    time_range: int = Query(default=7, ge=1, le=365, alias="timeRange"),
    user_id: Optional[str] = Query(default=None, alias="userId"),
    monitoring: MonitoringService = Depends(get_monitoring_service),
) -> dict[str, Any]:
    """Usage summary over the last timeRange days, optionally for one member."""
    return await monitoring.usage_analytics(time_range_days=time_range, user_id=user_id)


@router.post("/usage-analytics")
async def record_usage_metric(
    body: UsageMetricRequest,
    recorder: UsageRecorder = Depends(get_usage_recorder),
) -> dict[str, Any]:
    """Record a usage metric reported by a client; the cost is computed here."""
    record = UsageRecord(
        user_id=body.user_id,
        endpoint=body.endpoint,
        tokens_used=body.tokens_used,
        response_time_ms=body.response_time_ms,
        model_used=body.model,
        cost_estimate=recorder.calculate_cost(
            body.model, body.tokens_used, body.prompt_tokens, body.completion_tokens
        ),
        success=body.success,
        error_type=body.error_type,
        metadata=body.metadata,
    )
    await recorder.record_usage(record)
    return {"success": True, "id": record.id, "costEstimate": record.cost_estimate}


@router.get("/error-tracking")
async def get_error_tracking(
    time_range: int = Query(default=24, ge=1, le=24 * 30, alias="timeRange"),
    severity: Optional[Severity] = Query(default=None),
    endpoint: Optional[str] = Query(default=None),
    monitoring: MonitoringService = Depends(get_monitoring_service),
) -> dict[str, Any]:
    """Error statistics over the last timeRange hours."""
    return await monitoring.error_tracking(
        time_range_hours=time_range, severity=severity, endpoint=endpoint
    )


def _default_severity(error_type: Optional[str], message: str) -> Severity:
    """Severity the classification rules give a client-reported error."""
    try:
        return classification_for(ErrorType(error_type)).severity
    except ValueError:
        return classify_error(Exception(message)).severity


@router.post("/error-tracking")
async def report_error(
    body: ErrorReportRequest,
    recorder: UsageRecorder = Depends(get_usage_recorder),
) -> dict[str, Any]:
    """Log an error reported by a client."""
    entry = ErrorLogEntry(
        user_id=body.user_id,
        endpoint=body.endpoint,
        error_type=body.error_type or classify_error(Exception(body.error_message)).type.value,
        error_message=body.error_message,
        error_code=body.error_code,
        context=body.context,
        severity=body.severity or _default_severity(body.error_type, body.error_message),
    )
    await recorder.log_error(entry)
    return {"success": True, "id": entry.id}
