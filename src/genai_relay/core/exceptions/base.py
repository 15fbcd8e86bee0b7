"""
Base Exception Class

This module contains ONLY the base exception class that all other exceptions inherit from.
All specialized exceptions are in their respective themed modules.

Author: System Architect
Date: 2025-12-08
"""

from typing import Any

from genai_relay.core.config.constants import ERROR_HTTP_STATUS, ErrorClass


class RelayError(Exception):
    """
    Base exception for all relay errors.

    Every subclass carries the classification it maps to, so the relay can
    turn an exception into a terminal status without inspecting its type.

    Attributes:
        message: Error message
        request_id: Request ID for correlation (if available)
        details: Additional error details (dict)
        error_class: Classification used for metrics labels (class attribute)

    Example:
        raise UpstreamUnavailableError(
            "Upstream refused the connection",
            request_id="abc-123",
            details={"base_url": "http://model-runner/v1", "status_code": 503}
        )
    """

    error_class: ErrorClass | None = None

    def __init__(
        self, message: str, request_id: str | None = None, details: dict[str, Any] | None = None
    ):
        self.message = message
        self.request_id = request_id
        self.details = (details or {}).copy()
        super().__init__(self.message)

    @property
    def http_status(self) -> int | None:
        """HTTP-equivalent status for the caller, None when no response is possible."""
        if self.error_class is None:
            return 500
        return ERROR_HTTP_STATUS[self.error_class]

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for logging.

        Returns:
            Dict with error_type, error_class, message, request_id, and details
        """
        return {
            "error_type": self.__class__.__name__,
            "error_class": self.error_class.value if self.error_class else None,
            "message": self.message,
            "request_id": self.request_id,
            "details": self.details,
        }

    def with_suggestion(self, suggestion: str) -> "RelayError":
        """Add a suggestion to help users fix the error."""
        self.details["suggestion"] = suggestion
        return self

    def with_context(self, **context) -> "RelayError":
        """Add additional context to the error details."""
        self.details.update(context)
        return self

    def __repr__(self) -> str:
        details_str = f", details={self.details}" if self.details else ""
        request_id_str = f", request_id='{self.request_id}'" if self.request_id else ""
        return f"{self.__class__.__name__}(message='{self.message}'{request_id_str}{details_str})"

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        message: str | None = None,
        request_id: str | None = None,
        **details
    ) -> "RelayError":
        """
        Create a relay error from another exception.

        Useful for wrapping third-party exceptions with additional context.

        Example:
            >>> try:
            ...     await client.send(request, stream=True)
            ... except httpx.ConnectError as e:
            ...     raise UpstreamUnavailableError.from_exception(e, base_url=url)
        """
        error_message = message or str(exc) or exc.__class__.__name__
        error_details = {
            "original_error": exc.__class__.__name__,
            "original_message": str(exc),
            **details
        }
        return cls(error_message, request_id=request_id, details=error_details)


class ConfigurationError(RelayError):
    """Raised when configuration is invalid or missing."""
    pass
