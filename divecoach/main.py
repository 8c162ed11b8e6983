"""
Dive Coach - Main Application Entry Point

FastAPI application serving the coaching chat endpoints and the monitoring
API. create_app() builds the app; the service graph is wired in the
lifespan unless one is passed in (tests).
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from divecoach.api.deps import CoachServices, build_services
from divecoach.api.middleware.logging import RequestLoggingMiddleware
from divecoach.api.routes.chat import router as chat_router
from divecoach.api.routes.health import router as health_router
from divecoach.api.routes.monitor import router as monitor_router
from divecoach.core.config import Settings, get_settings
from divecoach.observability.logging import configure_logging, get_logger
from divecoach.observability.metrics import MetricsMiddleware

APP_NAME = "Dive Coach"
APP_DESCRIPTION = "Freediving coaching chat with retry, circuit breaking and usage monitoring"

logger = get_logger(__name__)


def get_cors_origins(settings: Settings) -> list[str]:
    """
    CORS allowed origins for the environment.

    - Development: Allow all origins (["*"])
    - Staging/Production: DIVECOACH_CORS_ORIGINS (comma-separated)
    - If not configured outside development: Empty list
    """
    if settings.environment == "development":
        return ["*"]
    return [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings: Settings = app.state.settings
    configure_logging(level=settings.log_level, service_name=settings.service_name)

    owns_services = getattr(app.state, "services", None) is None
    if owns_services:
        app.state.services = build_services(settings)
    logger.info(
        "service starting",
        service=settings.service_name,
        version=settings.version,
        environment=settings.environment,
    )

    yield

    logger.info("service shutting down", service=settings.service_name)
    if owns_services:
        services: CoachServices = app.state.services
        await services.aclose()
        app.state.services = None


def create_app(
    services: Optional[CoachServices] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Pre-wired service graph (default: built at startup from settings)
        settings: Application settings (default: services.settings or get_settings())
    """
    settings = settings or (services.settings if services is not None else get_settings())
    docs_enabled = settings.environment != "production"

    app = FastAPI(
        title=APP_NAME,
        description=APP_DESCRIPTION,
        version=settings.version,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(settings),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(MetricsMiddleware)

    app.include_router(health_router)
    app.include_router(chat_router)
    app.include_router(monitor_router)

    @app.get("/", tags=["Info"])
    async def root() -> dict[str, Any]:
        """Basic service information."""
        return {
            "service": APP_NAME,
            "version": settings.version,
            "docs": "/docs" if docs_enabled else "disabled",
        }

    return app


app = create_app()
