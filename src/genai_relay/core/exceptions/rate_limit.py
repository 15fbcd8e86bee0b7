"""
Rate Limiting Exceptions

All exceptions related to rate limiting operations

Author: System Architect
Date: 2025-12-08
"""

from genai_relay.core.config.constants import ErrorClass
from genai_relay.core.exceptions.base import RelayError


class RateLimitExceededError(RelayError):
    """
    Raised when a client exceeds its sliding-window quota.

    The response carries a Retry-After header. The relay never retries a
    rejected request on the client's behalf.
    """

    error_class = ErrorClass.RATE_LIMITED
