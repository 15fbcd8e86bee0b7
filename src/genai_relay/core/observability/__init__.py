from genai_relay.core.observability.tracing import (
    RequestSpan,
    RequestTracer,
    setup_tracing,
    shutdown_tracing,
)

__all__ = ["RequestSpan", "RequestTracer", "setup_tracing", "shutdown_tracing"]
