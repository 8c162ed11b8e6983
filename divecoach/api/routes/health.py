"""
Health Router

GET /health         liveness
GET /health/ready   readiness: resilience store and monitoring repository
GET /metrics        Prometheus exposition
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, PlainTextResponse

from divecoach.api.deps import CoachServices, get_services
from divecoach.models.responses import HealthResponse
from divecoach.observability.logging import get_logger
from divecoach.observability.metrics import generate_metrics

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health(services: CoachServices = Depends(get_services)) -> HealthResponse:
    settings = services.settings
    return HealthResponse(status="healthy", version=settings.version, service=settings.service_name)


@router.get("/health/ready", response_model=None)
async def readiness(services: CoachServices = Depends(get_services)) -> JSONResponse:
    """
    Readiness check.

    Returns 503 while the circuit/cache store or the monitoring repository
    cannot be reached.
    """
    checks = {
        "store": await services.circuit_store.ping(),
        "monitoring": await services.repository.ping(),
        "openai": services.llm is not None,
    }
    ready = checks["store"] and checks["monitoring"]
    if not ready:
        logger.warning("readiness check failed", checks=checks)
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "not_ready", "checks": checks},
    )


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics() -> PlainTextResponse:
    return PlainTextResponse(
        content=generate_metrics(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
