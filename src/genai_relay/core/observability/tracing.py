"""
Request Tracing with OpenTelemetry

This module gives every relayed request one root span with a child span per
processing phase:

    chat_request
    ├── message_construction
    ├── model_inference      (opening the upstream token stream)
    └── stream_relay         (copying tokens downstream)

Architectural Decision: context-manager phases over an explicit root
- Phases are entered with ``with trace.phase(...)`` so a child span ends on
  every exit path, including cancellation
- The root span is closed once by ``finish``; still-open children are closed
  first, and later calls are ignored
- Without a configured collector the provider has no exporter, so span
  operations cost little and never raise

Author: System Architect
Date: 2025-12-05
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ALWAYS_ON
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from genai_relay.core.config.constants import EVENT_FIRST_TOKEN, SPAN_CHAT_REQUEST, TRACER_NAME
from genai_relay.core.logging import get_logger

logger = get_logger(__name__)

BATCH_SCHEDULE_DELAY_MILLIS = 5000
SHUTDOWN_TIMEOUT_MILLIS = 5000


def setup_tracing(service_name: str, otlp_endpoint: str | None = None) -> TracerProvider:
    """
    Build the tracer provider for the service.

    STAGE-T.0: Tracing initialization

    Args:
        service_name: Value of the ``service.name`` resource attribute
        otlp_endpoint: OTLP/HTTP traces endpoint; when empty no exporter is
            attached and spans are dropped on end

    Returns:
        TracerProvider: pass it to ``RequestTracer`` and ``shutdown_tracing``
    """
    provider = TracerProvider(
        resource=Resource.create({SERVICE_NAME: service_name}),
        sampler=ALWAYS_ON,
    )

    if otlp_endpoint:
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

        provider.add_span_processor(
            BatchSpanProcessor(
                OTLPSpanExporter(endpoint=otlp_endpoint),
                schedule_delay_millis=BATCH_SCHEDULE_DELAY_MILLIS,
            )
        )
        logger.info("Tracing enabled", stage="T.0", service=service_name, endpoint=otlp_endpoint)
    else:
        logger.info("Tracing endpoint not configured, spans are not exported", stage="T.0")

    return provider


def shutdown_tracing(provider: TracerProvider) -> None:
    """Flush pending spans and stop the provider's processors."""
    provider.force_flush(timeout_millis=SHUTDOWN_TIMEOUT_MILLIS)
    provider.shutdown()


class RequestSpan:
    """
    Trace state of one request: a root span plus its phase children.

    Not shared between requests; only the task that owns the request touches it.
    """

    def __init__(self, tracer: Tracer, root: Span):
        self._tracer = tracer
        self._root = root
        self._open_children: list[Span] = []
        self._first_token_recorded = False
        self._error_recorded = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def root(self) -> Span:
        return self._root

    @contextmanager
    def phase(self, name: str, **attributes: Any) -> Iterator[Span]:
        """Run a block inside a child span of the root."""
        child = self._tracer.start_span(
            name,
            context=trace.set_span_in_context(self._root),
            attributes=attributes or None,
        )
        self._open_children.append(child)
        try:
            yield child
        except Exception as exc:
            child.record_exception(exc)
            child.set_status(Status(StatusCode.ERROR, str(exc)))
            raise
        finally:
            self._end_child(child)

    def _end_child(self, child: Span) -> None:
        if child in self._open_children:
            self._open_children.remove(child)
            child.end()

    def record_first_token(self, seconds: float) -> None:
        """Add the ``first_token`` event; only the first call has any effect."""
        if self._first_token_recorded or self._closed:
            return
        self._first_token_recorded = True
        self._root.add_event(EVENT_FIRST_TOKEN, {"time_to_first_token_ms": seconds * 1000.0})

    def record_error(self, error: BaseException | str, error_class: str | None = None) -> None:
        """Mark the root span as failed."""
        if self._closed:
            return
        if isinstance(error, BaseException):
            message = str(error) or error.__class__.__name__
            self._root.record_exception(error)
        else:
            message = error
        self._root.set_attribute("error", True)
        self._root.set_attribute("error.message", message)
        if error_class:
            self._root.set_attribute("error.class", error_class)
        self._root.set_status(Status(StatusCode.ERROR, message))
        self._error_recorded = True

    def finish(
        self,
        *,
        model: str,
        status: str,
        tokens_in: int,
        tokens_out: int,
        duration: float,
        time_to_first_token: float | None = None,
    ) -> bool:
        """
        Annotate the root span with aggregate attributes and close it.

        Returns:
            False if the span had already been closed
        """
        if self._closed:
            return False
        self._closed = True

        for child in reversed(self._open_children):
            child.end()
        self._open_children.clear()

        attributes: dict[str, Any] = {
            "model.name": model,
            "relay.status": status,
            "tokens.input": tokens_in,
            "tokens.output": tokens_out,
            "tokens.output.total": tokens_out,
            "duration_sec": duration,
        }
        if time_to_first_token is not None:
            attributes["time_to_first_token_sec"] = time_to_first_token
        self._root.set_attributes(attributes)
        if not self._error_recorded:
            self._root.set_status(Status(StatusCode.OK))
        self._root.end()
        return True


class RequestTracer:
    """
    Factory of per-request spans.

    Usage:
        tracer = RequestTracer(setup_tracing("genai-relay").get_tracer(TRACER_NAME))
        span = tracer.start_request("llama", request_id="abc")
        with span.phase("message_construction"):
            ...
        span.finish(model="llama", status="success", tokens_in=3, tokens_out=9, duration=1.2)
    """

    def __init__(self, tracer: Tracer | None = None):
        self._tracer = tracer if tracer is not None else trace.get_tracer(TRACER_NAME)

    @classmethod
    def from_provider(cls, provider: TracerProvider) -> "RequestTracer":
        return cls(provider.get_tracer(TRACER_NAME))

    def start_request(self, model: str, request_id: str | None = None) -> RequestSpan:
        attributes: dict[str, Any] = {"model.name": model, "inference.type": "streaming"}
        if request_id:
            attributes["request.id"] = request_id
        root = self._tracer.start_span(SPAN_CHAT_REQUEST, attributes=attributes)
        return RequestSpan(self._tracer, root)
