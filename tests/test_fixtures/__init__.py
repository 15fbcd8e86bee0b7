"""
Test Fixtures Package

Shared test utilities and helpers for consistent testing across all modules.
"""

from .metrics_helpers import sample
from .relay_factory import FakeClock, RecordingSink, RelayTestFactory
from .request_factory import RequestFactory

__all__ = ["FakeClock", "RecordingSink", "RelayTestFactory", "RequestFactory", "sample"]
