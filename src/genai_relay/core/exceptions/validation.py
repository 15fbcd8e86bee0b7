"""
Validation Exceptions

All exceptions related to inbound request validation

Author: System Architect
Date: 2025-12-08
"""

from genai_relay.core.config.constants import ErrorClass
from genai_relay.core.exceptions.base import RelayError


class InvalidRequestError(RelayError):
    """
    Raised when the inbound body cannot be turned into a conversation.

    Common causes:
    - Body is not valid JSON
    - ``messages`` is not a list of ``{role, content}`` objects
    - No usable message remains after unrecognized roles are dropped

    Always answered locally with 400, never forwarded upstream.
    """

    error_class = ErrorClass.INVALID_REQUEST
