"""
API Models Package
==================

Pydantic models for the JSON endpoints. The chat endpoint is parsed by the
relay itself (``ChatRequest``) so that a malformed body is finalized like
any other failed relay.

- metrics.py: client metric/error reports and dashboard responses
- health.py: liveness and readiness responses
"""

from genai_relay.application.api.models.health import HealthResponse, ReadinessResponse
from genai_relay.application.api.models.metrics import (
    ClientErrorReport,
    ClientMetricsReport,
    LogAcknowledgement,
    MetricsSummaryResponse,
)

__all__ = [
    "ClientErrorReport",
    "ClientMetricsReport",
    "HealthResponse",
    "LogAcknowledgement",
    "MetricsSummaryResponse",
    "ReadinessResponse",
]
