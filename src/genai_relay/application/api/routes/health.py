"""
Health Check Routes - Educational Documentation
================================================

KUBERNETES HEALTH PROBES:
--------------------------
1. LIVENESS (``GET /health``):
   - Question: "Is the process running?"
   - If fails: the container is restarted
   - Checks nothing but the event loop answering

2. READINESS (``GET /health/ready``):
   - Question: "Should this instance receive traffic?"
   - If fails (503): the instance is removed from the load balancer
   - Fails once shutdown has begun and the coordinator stops accepting

The upstream model is NOT probed: an unreachable upstream is reported per
request as a 502, and taking every replica out of rotation for it would
turn a degraded service into an outage.
"""

from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from genai_relay.application.api.dependencies import CompletionSourceDep, CoordinatorDep, SettingsDep
from genai_relay.application.api.models.health import HealthResponse, ReadinessResponse

router = APIRouter(prefix="/health", tags=["Health"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("", response_model=HealthResponse)
async def health_check(settings: SettingsDep):
    """
    Quick liveness check for load balancers.

    Returns:
        HealthResponse: always "healthy" while the process serves requests
    """
    return HealthResponse(
        status="healthy",
        timestamp=_now(),
        service=settings.app.APP_NAME,
        version=settings.app.APP_VERSION,
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_probe(coordinator: CoordinatorDep, source: CompletionSourceDep):
    """
    Readiness probe.

    HTTP Status Codes:
        200: accepting chat requests
        503: shutting down
    """
    ready = coordinator.accepting
    result = ReadinessResponse(
        status="ready" if ready else "not_ready",
        timestamp=_now(),
        components={
            "coordinator": coordinator.get_stats(),
            "relay": coordinator.relay.get_stats(),
            "upstream": await source.health_check(),
        },
    )
    if not ready:
        return JSONResponse(status_code=503, content=result.model_dump())
    return result
