"""
Streaming Exceptions

All exceptions related to writing the token stream to the caller

Author: System Architect
Date: 2025-12-08
"""

from genai_relay.core.config.constants import ErrorClass
from genai_relay.core.exceptions.base import RelayError


class DownstreamWriteError(RelayError):
    """
    Raised when a token cannot be written to the caller.

    The client has disconnected or the exchange deadline passed, so no
    response of any kind can be delivered.
    """

    error_class = ErrorClass.DOWNSTREAM_WRITE_FAILED
