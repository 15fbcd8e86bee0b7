"""
Upstream Exceptions

All exceptions raised by completion sources

Author: System Architect
Date: 2025-12-08
"""

from genai_relay.core.config.constants import ErrorClass
from genai_relay.core.exceptions.base import RelayError


class UpstreamError(RelayError):
    """Base exception for upstream completion source errors."""
    pass


class UpstreamUnavailableError(UpstreamError):
    """
    Raised when the token stream could not be opened.

    Common causes:
    - Connection refused or DNS failure
    - Upstream answered with a non-2xx status
    - Connect timeout
    """

    error_class = ErrorClass.UPSTREAM_UNAVAILABLE


class UpstreamStreamError(UpstreamError):
    """
    Raised when the upstream fails after the stream was opened.

    Common causes:
    - Connection reset mid-stream
    - Read timeout between chunks
    - Undecodable chunk payload
    """

    error_class = ErrorClass.STREAM_ERROR
