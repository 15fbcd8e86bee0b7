"""
Per-request accounting and results of the stream relay.
"""

from dataclasses import dataclass

from genai_relay.core.config.constants import ERROR_HTTP_STATUS, ErrorClass, RequestStatus


@dataclass
class RequestMetrics:
    """
    Mutable accumulator owned by one relay invocation.

    Times are monotonic clock readings. ``first_token_time`` is assigned once,
    for the first non-empty token.
    """

    model: str
    start_time: float
    tokens_in: int = 0
    tokens_out: int = 0
    input_chars: int = 0
    first_token_time: float | None = None
    upstream_attempted: bool = False
    outcome: "RequestOutcome | None" = None

    def mark_first_token(self, now: float) -> bool:
        """Record the first-token time; returns True only on the first call."""
        if self.first_token_time is not None:
            return False
        self.first_token_time = now
        return True

    def time_to_first_token(self) -> float | None:
        if self.first_token_time is None:
            return None
        return self.first_token_time - self.start_time


@dataclass(frozen=True)
class RequestOutcome:
    """Terminal result of one relayed request."""

    status: RequestStatus
    error_class: ErrorClass | None = None
    tokens_in: int = 0
    tokens_out: int = 0
    duration: float = 0.0
    time_to_first_token: float | None = None
    error_message: str | None = None

    @property
    def label(self) -> str:
        """Value used for the ``status`` label of the terminal-status counter."""
        return self.error_class.value if self.error_class else self.status.value

    @property
    def http_status(self) -> int | None:
        """HTTP-equivalent status; None when no response can be sent."""
        if self.status is RequestStatus.SUCCESS:
            return 200
        if self.error_class is not None:
            return ERROR_HTTP_STATUS[self.error_class]
        return None

    @property
    def succeeded(self) -> bool:
        return self.status is RequestStatus.SUCCESS

    @classmethod
    def rejected(cls, error_class: ErrorClass, message: str | None = None) -> "RequestOutcome":
        return cls(status=RequestStatus.ERROR, error_class=error_class, error_message=message)


class CancellationSignal:
    """
    Reason a request is being torn down from the outside.

    The coordinator trips the signal before cancelling the relay task; the
    relay reads it while unwinding to pick its terminal status. An untripped
    signal at cancellation time means process shutdown.
    """

    def __init__(self):
        self._reason: ErrorClass | None = None
        self._message: str | None = None
        self._tripped = False

    def trip(self, reason: ErrorClass | None = None, message: str | None = None) -> None:
        """Record why the request is stopping. The first reason wins."""
        if not self._tripped:
            self._tripped = True
            self._reason = reason
            self._message = message

    @property
    def tripped(self) -> bool:
        return self._tripped

    @property
    def reason(self) -> ErrorClass | None:
        return self._reason

    @property
    def message(self) -> str | None:
        return self._message
