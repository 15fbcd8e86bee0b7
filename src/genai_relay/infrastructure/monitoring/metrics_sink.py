#!/usr/bin/env python3
"""
Metrics Sink with Prometheus Integration

This module provides the process-wide metrics surface of the relay:
- HTTP request counts and latency
- Input/output token counters per model
- Model latency and time-to-first-token histograms
- Error counts by classification
- Terminal-status counter (exactly one increment per relayed request)
- Active request gauge

Architectural Decision: prometheus-client bound to an injected registry
- Every metric object is internally synchronized by prometheus-client, so
  concurrent requests can update the same series without losing increments
- Each MetricsSink owns its CollectorRegistry; tests build a fresh sink and
  read values back with ``registry.get_sample_value`` without touching
  process-wide state

Author: Senior Solution Architect
Date: 2025-12-05
"""

import time
from collections.abc import Callable, Mapping

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from genai_relay.core.config.constants import (
    DIRECTION_INPUT,
    DIRECTION_OUTPUT,
    FIRST_TOKEN_BUCKETS,
    METRIC_ACTIVE_REQUESTS,
    METRIC_CHAT_TOKENS,
    METRIC_ERRORS,
    METRIC_FIRST_TOKEN_LATENCY,
    METRIC_HTTP_DURATION,
    METRIC_HTTP_REQUESTS,
    METRIC_MODEL_LATENCY,
    METRIC_PREFIX,
    METRIC_RELAY_REQUESTS,
    METRIC_TOKENS_PER_SECOND,
    MODEL_LATENCY_BUCKETS,
    OPERATION_INFERENCE,
)
from genai_relay.core.logging.logger import get_logger

logger = get_logger(__name__)

Labels = Mapping[str, str] | None


class MetricsSink:
    """
    Named counters, histograms and gauges behind a small write-only API.

    Callers address metrics by their short name (see ``constants.METRIC_*``);
    the exported name carries the ``genai_app_`` prefix.

    Usage:
        sink = MetricsSink()
        sink.increment_counter(METRIC_ERRORS, {"type": "stream_error", "operation": "chat"})
        sink.record_inference("llama", start, tokens_in=12, tokens_out=40, first_token_time=t1)
    """

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry if registry is not None else CollectorRegistry()
        self._clock = clock

        self._counters: dict[str, Counter] = {
            METRIC_HTTP_REQUESTS: Counter(
                self._full_name(METRIC_HTTP_REQUESTS),
                "Total number of HTTP requests",
                ["method", "endpoint", "status"],
                registry=self.registry,
            ),
            METRIC_CHAT_TOKENS: Counter(
                self._full_name(METRIC_CHAT_TOKENS),
                "Total number of tokens processed",
                ["direction", "model"],
                registry=self.registry,
            ),
            METRIC_ERRORS: Counter(
                self._full_name(METRIC_ERRORS),
                "Total number of errors",
                ["type", "operation"],
                registry=self.registry,
            ),
            METRIC_RELAY_REQUESTS: Counter(
                self._full_name(METRIC_RELAY_REQUESTS),
                "Relayed chat requests by terminal status",
                ["status", "model"],
                registry=self.registry,
            ),
        }

        self._histograms: dict[str, Histogram] = {
            METRIC_HTTP_DURATION: Histogram(
                self._full_name(METRIC_HTTP_DURATION),
                "HTTP request duration in seconds",
                ["method", "endpoint"],
                registry=self.registry,
            ),
            METRIC_MODEL_LATENCY: Histogram(
                self._full_name(METRIC_MODEL_LATENCY),
                "Model inference latency in seconds",
                ["model", "operation"],
                buckets=MODEL_LATENCY_BUCKETS,
                registry=self.registry,
            ),
            METRIC_FIRST_TOKEN_LATENCY: Histogram(
                self._full_name(METRIC_FIRST_TOKEN_LATENCY),
                "Time to first token in seconds",
                ["model"],
                buckets=FIRST_TOKEN_BUCKETS,
                registry=self.registry,
            ),
        }

        self._gauges: dict[str, Gauge] = {
            METRIC_ACTIVE_REQUESTS: Gauge(
                self._full_name(METRIC_ACTIVE_REQUESTS),
                "Number of active requests",
                registry=self.registry,
            ),
            METRIC_TOKENS_PER_SECOND: Gauge(
                self._full_name(METRIC_TOKENS_PER_SECOND),
                "Output tokens per second of the most recent completed request",
                ["model"],
                registry=self.registry,
            ),
        }

        logger.info("Metrics sink initialized", stage="M.0", metrics=len(self.metric_names))

    @staticmethod
    def _full_name(name: str) -> str:
        return f"{METRIC_PREFIX}_{name}"

    @property
    def metric_names(self) -> list[str]:
        return [*self._counters, *self._histograms, *self._gauges]

    # ========================================================================
    # Generic operations
    # ========================================================================

    @staticmethod
    def _child(metric, labels: Labels):
        return metric.labels(**labels) if labels else metric

    def _lookup(self, table: dict, name: str, kind: str):
        try:
            return table[name]
        except KeyError:
            raise ValueError(f"Unknown {kind} metric: {name}") from None

    def increment_counter(self, name: str, labels: Labels = None, amount: float = 1.0) -> None:
        """Increment counter ``name`` for the given label set."""
        self._child(self._lookup(self._counters, name, "counter"), labels).inc(amount)

    def observe_histogram(self, name: str, labels: Labels, value: float) -> None:
        """Record one observation in histogram ``name``."""
        self._child(self._lookup(self._histograms, name, "histogram"), labels).observe(value)

    def set_gauge(self, name: str, labels: Labels, value: float) -> None:
        """Set gauge ``name`` to ``value``."""
        self._child(self._lookup(self._gauges, name, "gauge"), labels).set(value)

    def increment_gauge(self, name: str, labels: Labels = None) -> None:
        self._child(self._lookup(self._gauges, name, "gauge"), labels).inc()

    def decrement_gauge(self, name: str, labels: Labels = None) -> None:
        self._child(self._lookup(self._gauges, name, "gauge"), labels).dec()

    # ========================================================================
    # Inference convenience
    # ========================================================================

    def record_inference(
        self,
        model: str,
        start_time: float,
        tokens_in: int,
        tokens_out: int,
        first_token_time: float | None = None,
        end_time: float | None = None,
    ) -> float:
        """
        Record one completed model inference.

        Updates, in this order and all against the same model label:
        1. input token counter
        2. output token counter
        3. total-latency histogram (operation="inference")
        4. first-token-latency histogram, only when ``first_token_time`` is set

        Times are readings of the sink's clock (``time.monotonic`` by default).

        Returns:
            The total latency in seconds
        """
        end = self._clock() if end_time is None else end_time
        duration = max(0.0, end - start_time)

        self.increment_counter(METRIC_CHAT_TOKENS, {"direction": DIRECTION_INPUT, "model": model}, tokens_in)
        self.increment_counter(METRIC_CHAT_TOKENS, {"direction": DIRECTION_OUTPUT, "model": model}, tokens_out)
        self.observe_histogram(METRIC_MODEL_LATENCY, {"model": model, "operation": OPERATION_INFERENCE}, duration)
        if first_token_time is not None:
            self.observe_histogram(
                METRIC_FIRST_TOKEN_LATENCY, {"model": model}, max(0.0, first_token_time - start_time)
            )
        return duration

    # ========================================================================
    # Exposition
    # ========================================================================

    def get_prometheus_metrics(self) -> bytes:
        """Render all metrics of this sink in the Prometheus text format."""
        return generate_latest(self.registry)

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST
