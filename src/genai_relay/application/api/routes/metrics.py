"""
Metrics Routes
==============

- ``GET /metrics``: Prometheus exposition of every relay metric
- ``GET /metrics/summary``: JSON aggregate for the chat dashboard
- ``POST /metrics/log``: per-message timings measured by the browser
- ``POST /metrics/log-error``: failures seen by the browser

Client reports use the model label "client" so browser-side latency never
mixes with the relay's own measurements. Error reports count with
operation "frontend" and feed the summary's error rate.
"""

from fastapi import APIRouter
from fastapi.responses import Response

from genai_relay.application.api.dependencies import ClientIdDep, MetricsSinkDep, SummaryStoreDep
from genai_relay.application.api.models.metrics import (
    ClientErrorReport,
    ClientMetricsReport,
    LogAcknowledgement,
    MetricsSummaryResponse,
)
from genai_relay.core.config.constants import CLIENT_MODEL_LABEL, METRIC_ERRORS, OPERATION_FRONTEND, Stage
from genai_relay.core.logging import get_logger, log_stage
from genai_relay.infrastructure.monitoring import ErrorLogEntry

router = APIRouter(prefix="/metrics", tags=["Metrics"])
logger = get_logger(__name__)


@router.get("", include_in_schema=False)
async def prometheus_metrics(metrics: MetricsSinkDep):
    return Response(content=metrics.get_prometheus_metrics(), media_type=metrics.get_content_type())


@router.get("/summary", response_model=MetricsSummaryResponse, response_model_by_alias=True)
async def metrics_summary(summary: SummaryStoreDep):
    """Totals over the retention window; response time in seconds."""
    # Requests and tokens count server-side exchanges only; /metrics/log adds
    # to activeUsers but never to totalRequests or tokensGenerated
    return MetricsSummaryResponse.model_validate(summary.summary().to_dict())


@router.post("/log", response_model=LogAcknowledgement)
async def log_client_metrics(
    report: ClientMetricsReport, metrics: MetricsSinkDep, summary: SummaryStoreDep, client_id: ClientIdDep
):
    """
    Record timings the browser measured for one message.

    The exchange itself was already recorded by the relay; this only adds
    the client's view to Prometheus and marks the client active.
    """
    metrics.record_inference(
        CLIENT_MODEL_LABEL,
        start_time=0.0,
        tokens_in=report.tokens_in,
        tokens_out=report.tokens_out,
        first_token_time=report.time_to_first_token_ms / 1000,
        end_time=report.response_time_ms / 1000,
    )
    summary.touch_session(client_id)

    log_stage(
        logger,
        Stage.METRICS,
        "Client metrics recorded",
        level="debug",
        message_id=report.message_id,
        tokens_out=report.tokens_out,
    )
    return LogAcknowledgement()


@router.post("/log-error", response_model=LogAcknowledgement)
async def log_client_error(report: ClientErrorReport, metrics: MetricsSinkDep, summary: SummaryStoreDep):
    """Count a client-side failure and add it to the summary's error rate."""
    metrics.increment_counter(METRIC_ERRORS, {"type": report.error_type, "operation": OPERATION_FRONTEND})
    summary.record_error(
        ErrorLogEntry(
            error_type=report.error_type,
            status_code=report.status_code,
            input_length=report.input_length,
            timestamp=summary.now(),
        )
    )

    log_stage(
        logger,
        Stage.METRICS,
        "Client error recorded",
        level="info",
        error_type=report.error_type,
        status_code=report.status_code,
    )
    return LogAcknowledgement()
