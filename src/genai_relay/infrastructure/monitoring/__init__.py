"""
Monitoring Module

- **metrics_sink.py**: Prometheus counters, histograms and gauges
- **metrics_summary.py**: Locally buffered summary for dashboards
"""

from genai_relay.infrastructure.monitoring.metrics_sink import MetricsSink
from genai_relay.infrastructure.monitoring.metrics_summary import (
    ErrorLogEntry,
    MessageMetrics,
    MetricsSummary,
    MetricsSummaryStore,
)

__all__ = [
    "ErrorLogEntry",
    "MessageMetrics",
    "MetricsSink",
    "MetricsSummary",
    "MetricsSummaryStore",
]
