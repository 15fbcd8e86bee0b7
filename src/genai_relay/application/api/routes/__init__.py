from genai_relay.application.api.routes.chat import router as chat_router
from genai_relay.application.api.routes.health import router as health_router
from genai_relay.application.api.routes.metrics import router as metrics_router

__all__ = ["chat_router", "health_router", "metrics_router"]
