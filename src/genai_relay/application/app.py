"""
FastAPI Application Entry Point

Builds the GenAI streaming relay: configures logging and tracing, wires the
relay components onto ``app.state`` during the lifespan, and registers
middleware, routes and exception handlers.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from opentelemetry.sdk.trace import TracerProvider

from genai_relay.application.api.cors import preflight_router
from genai_relay.application.api.middleware import RequestLoggingMiddleware
from genai_relay.application.api.routes import chat_router, health_router, metrics_router
from genai_relay.core.config.constants import HEADER_REQUEST_ID, Stage
from genai_relay.core.config.settings import Settings, get_settings
from genai_relay.core.exceptions import RelayError
from genai_relay.core.logging import get_logger, setup_logging
from genai_relay.core.observability import RequestTracer, setup_tracing, shutdown_tracing
from genai_relay.infrastructure.monitoring import MetricsSink, MetricsSummaryStore
from genai_relay.llm_stream.models import ModelConfig
from genai_relay.llm_stream.providers import CompletionSource, create_completion_source
from genai_relay.llm_stream.services import StreamRelay
from genai_relay.rate_limiting import SlidingWindowRateLimiter
from genai_relay.streaming.request_lifecycle import RequestLifecycleCoordinator

logger = get_logger(__name__)


# ============================================================================
# LIFESPAN
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle (startup and shutdown).

    Collaborators passed to ``create_app`` (a completion source, a tracer
    provider) are used as given; everything else is built from settings.
    """
    settings: Settings = app.state.settings

    setup_logging(log_level=settings.logging.LOG_LEVEL, log_format=settings.logging.LOG_FORMAT)

    logger.info(
        "Starting GenAI streaming relay",
        stage=Stage.INITIALIZATION.value,
        environment=settings.app.ENVIRONMENT,
        version=settings.app.APP_VERSION,
    )

    owns_tracer_provider = app.state.tracer_provider is None
    tracer_provider: TracerProvider = app.state.tracer_provider or setup_tracing(
        settings.tracing.OTEL_SERVICE_NAME, settings.tracing.OTLP_ENDPOINT
    )
    tracer = RequestTracer.from_provider(tracer_provider)

    metrics = MetricsSink()
    summary = MetricsSummaryStore(
        retention_seconds=settings.metrics.METRICS_RETENTION_HOURS * 3600,
        cleanup_interval_seconds=settings.metrics.METRICS_CLEANUP_INTERVAL_SECONDS,
        session_timeout_seconds=settings.metrics.ACTIVE_SESSION_TIMEOUT_SECONDS,
    )
    limiter = SlidingWindowRateLimiter(
        settings.rate_limit.RATE_LIMIT_PER_MINUTE,
        window_seconds=settings.rate_limit.RATE_LIMIT_WINDOW_SECONDS,
    )

    source: CompletionSource = app.state.completion_source or create_completion_source(settings)
    model_config = ModelConfig(
        model=settings.upstream.MODEL,
        temperature=settings.upstream.MODEL_TEMPERATURE,
        max_tokens=settings.upstream.MODEL_MAX_TOKENS,
    )

    relay = StreamRelay(source, metrics, tracer=tracer, summary=summary)
    coordinator = RequestLifecycleCoordinator(
        relay,
        limiter,
        metrics,
        model_config,
        tracer=tracer,
        summary=summary,
        begin_timeout=settings.timeouts.STREAM_BEGIN_TIMEOUT,
        total_timeout=settings.timeouts.STREAM_TOTAL_TIMEOUT,
    )

    app.state.metrics = metrics
    app.state.summary = summary
    app.state.limiter = limiter
    app.state.completion_source = source
    app.state.relay = relay
    app.state.coordinator = coordinator

    logger.info("Application startup complete", stage=Stage.INITIALIZATION.value, source=source.name)

    try:
        yield
    finally:
        logger.info("Shutting down application", stage=Stage.FINALIZATION.value)

        await coordinator.shutdown()
        await source.aclose()
        if owns_tracer_provider:
            shutdown_tracing(tracer_provider)

        logger.info("Application shutdown complete", stage=Stage.FINALIZATION.value)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================


async def relay_exception_handler(request: Request, exc: RelayError) -> Response:
    """Map a RelayError raised outside the relay to its status, without a body."""
    logger.error(
        f"Relay exception: {exc.message}",
        error_type=type(exc).__name__,
        error_class=exc.error_class.value if exc.error_class else None,
        request_id=exc.request_id,
    )
    return Response(status_code=exc.http_status or 500)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed JSON bodies answer 400."""
    logger.warning("Invalid request body", path=request.url.path, errors=len(exc.errors()))
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


# ============================================================================
# APPLICATION FACTORY
# ============================================================================


def create_app(
    settings: Settings | None = None,
    completion_source: CompletionSource | None = None,
    tracer_provider: TracerProvider | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Defaults to the process-wide settings
        completion_source: Upstream to relay from instead of the configured one
        tracer_provider: Provider to trace with instead of a new one

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app.APP_NAME,
        version=settings.app.APP_VERSION,
        description="Streaming relay between chat clients and an OpenAI-compatible model",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.completion_source = completion_source
    app.state.tracer_provider = tracer_provider

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.CORS_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[HEADER_REQUEST_ID],
    )
    # Added last, so it runs outermost and sees every response
    app.add_middleware(RequestLoggingMiddleware)

    app.add_exception_handler(RelayError, relay_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.include_router(chat_router)
    app.include_router(metrics_router)
    app.include_router(health_router)
    app.include_router(preflight_router)

    return app
