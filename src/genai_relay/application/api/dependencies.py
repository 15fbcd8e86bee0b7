"""
FastAPI Dependency Injection Module
===================================

Every long-lived collaborator (coordinator, metrics sink, summary store,
completion source) is built once in the application lifespan and stored on
``app.state``. Routes receive them through the ``Annotated`` aliases below
instead of reaching for globals:

    @router.get("/metrics")
    async def prometheus_metrics(metrics: MetricsSinkDep):
        ...

Tests build their own app with ``create_app`` and a scripted completion
source, so the same routes run against in-memory collaborators.
"""

import uuid
from typing import Annotated

from fastapi import Depends, Request

from genai_relay.core.config.constants import HEADER_REQUEST_ID
from genai_relay.core.config.settings import Settings
from genai_relay.infrastructure.monitoring import MetricsSink, MetricsSummaryStore
from genai_relay.llm_stream.providers import CompletionSource
from genai_relay.rate_limiting import get_client_key
from genai_relay.streaming.request_lifecycle import RequestLifecycleCoordinator

# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def _from_state(request: Request, name: str):
    try:
        return getattr(request.app.state, name)
    except AttributeError as e:
        raise RuntimeError(
            f"'{name}' not initialized in app.state. "
            "This indicates the application lifespan startup didn't complete properly."
        ) from e


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return _from_state(request, "settings")


def get_coordinator(request: Request) -> RequestLifecycleCoordinator:
    """
    Retrieve the request coordinator created during startup.

    Raises:
        RuntimeError: If the lifespan has not run
    """
    return _from_state(request, "coordinator")


def get_metrics_sink(request: Request) -> MetricsSink:
    return _from_state(request, "metrics")


def get_summary_store(request: Request) -> MetricsSummaryStore:
    return _from_state(request, "summary")


def get_completion_source(request: Request) -> CompletionSource:
    return _from_state(request, "completion_source")


def get_request_id(request: Request) -> str:
    """
    Correlation ID of the current request.

    The request middleware assigns it (reusing an inbound X-Request-ID when
    present); the header fallback only applies when the middleware is not
    installed.
    """
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    return request.headers.get(HEADER_REQUEST_ID) or str(uuid.uuid4())


def get_client_id(request: Request) -> str:
    """Rate-limit and session key: user header, then token hash, then IP."""
    return get_client_key(request)


# ============================================================================
# TYPE ALIASES FOR CLEANER ROUTE SIGNATURES
# ============================================================================

SettingsDep = Annotated[Settings, Depends(get_app_settings)]
CoordinatorDep = Annotated[RequestLifecycleCoordinator, Depends(get_coordinator)]
MetricsSinkDep = Annotated[MetricsSink, Depends(get_metrics_sink)]
SummaryStoreDep = Annotated[MetricsSummaryStore, Depends(get_summary_store)]
CompletionSourceDep = Annotated[CompletionSource, Depends(get_completion_source)]
RequestIdDep = Annotated[str, Depends(get_request_id)]
ClientIdDep = Annotated[str, Depends(get_client_id)]
