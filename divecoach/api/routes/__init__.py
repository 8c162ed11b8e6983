from divecoach.api.routes.chat import router as chat_router
from divecoach.api.routes.health import router as health_router
from divecoach.api.routes.monitor import router as monitor_router

__all__ = ["chat_router", "health_router", "monitor_router"]
