"""
Pytest Configuration and Shared Test Fixtures

This module provides pytest configuration and reusable fixtures for all tests.
All fixtures defined here are automatically available to all test files.
"""

import os
import sys

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

# Add project root to sys.path so tests can import the shared test_fixtures package
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from genai_relay.core.config.settings import reload_settings  # noqa: E402
from genai_relay.core.observability import RequestTracer  # noqa: E402
from genai_relay.infrastructure.monitoring import MetricsSink, MetricsSummaryStore  # noqa: E402
from genai_relay.llm_stream.models import ModelConfig  # noqa: E402
from tests.test_fixtures import FakeClock, RecordingSink  # noqa: E402

# ============================================================================
# Settings isolation
# ============================================================================

RELAY_ENV_VARS = (
    "BASE_URL",
    "MODEL",
    "UPSTREAM_CLIENT",
    "UPSTREAM_API_KEY",
    "RATE_LIMIT_PER_MINUTE",
    "STREAM_BEGIN_TIMEOUT",
    "STREAM_TOTAL_TIMEOUT",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "OTLP_ENDPOINT",
)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """
    Drop relay variables from the environment and reset the settings cache.

    Tests that need a variable set it with ``monkeypatch.setenv`` and call
    ``reload_settings()``.
    """
    for name in RELAY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reload_settings()
    yield
    reload_settings()


# ============================================================================
# Observability fixtures
# ============================================================================


@pytest.fixture
def metrics_sink():
    """MetricsSink bound to a private CollectorRegistry."""
    return MetricsSink()


@pytest.fixture
def span_exporter():
    return InMemorySpanExporter()


@pytest.fixture
def tracer_provider(span_exporter):
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    yield provider
    provider.shutdown()


@pytest.fixture
def request_tracer(tracer_provider):
    return RequestTracer.from_provider(tracer_provider)


@pytest.fixture
def summary_store():
    return MetricsSummaryStore()


# ============================================================================
# Relay fixtures
# ============================================================================


@pytest.fixture
def model_config():
    return ModelConfig(model="test-model")


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def recording_sink():
    return RecordingSink()

