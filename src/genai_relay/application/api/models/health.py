from typing import Any

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Liveness response."""

    status: str  # "healthy"
    timestamp: str  # ISO 8601
    service: str
    version: str


class ReadinessResponse(BaseModel):
    """
    Readiness response.

    ``components`` holds one entry per dependency the relay needs to serve
    traffic: the request coordinator, the stream relay and the upstream
    completion source.
    """

    status: str  # "ready" or "not_ready"
    timestamp: str
    components: dict[str, Any]
