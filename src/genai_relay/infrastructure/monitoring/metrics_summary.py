"""
Metrics Summary Store

Locally buffered, dashboard-oriented view of recent relay activity. This is
separate from the Prometheus counters: it keeps individual entries so the
summary endpoint can compute averages and an error rate over the retention
horizon.

Retention:
- Entries older than the horizon (24h by default) are dropped
- Pruning runs at most once per cleanup interval (1h by default)
- Client sessions idle longer than the session timeout stop counting as
  active users and are pruned with the rest
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from genai_relay.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MessageMetrics:
    """Measurements of one completed chat exchange."""

    message_id: str
    tokens_in: int
    tokens_out: int
    response_time_ms: float
    time_to_first_token_ms: float | None = None
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ErrorLogEntry:
    """One failed chat exchange."""

    error_type: str
    status_code: int | None = None
    input_length: int = 0
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class MetricsSummary:
    total_requests: int
    average_response_time: float  # seconds
    tokens_generated: int
    active_users: int
    error_rate: float

    def to_dict(self) -> dict:
        return {
            "totalRequests": self.total_requests,
            "averageResponseTime": self.average_response_time,
            "tokensGenerated": self.tokens_generated,
            "activeUsers": self.active_users,
            "errorRate": self.error_rate,
        }


class MetricsSummaryStore:
    """
    Thread-safe buffer of recent message metrics, errors and client sessions.

    Every append and the prune pass share one lock. A prune is a single
    linear filter of each buffer, so an append waits at most for one pass.
    """

    def __init__(
        self,
        retention_seconds: float = 24 * 3600,
        cleanup_interval_seconds: float = 3600,
        session_timeout_seconds: float = 30 * 60,
        clock: Callable[[], float] = time.time,
    ):
        self.retention_seconds = retention_seconds
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self.session_timeout_seconds = session_timeout_seconds
        self._clock = clock

        self._lock = threading.Lock()
        self._messages: list[MessageMetrics] = []
        self._errors: list[ErrorLogEntry] = []
        self._sessions: dict[str, float] = {}
        self._last_cleanup = clock()

    def now(self) -> float:
        """Current reading of the store's wall clock, for entry timestamps."""
        return self._clock()

    def record_message(self, metrics: MessageMetrics) -> None:
        with self._lock:
            self._messages.append(metrics)
            self._maybe_cleanup_locked()

    def record_error(self, entry: ErrorLogEntry) -> None:
        with self._lock:
            self._errors.append(entry)
            self._maybe_cleanup_locked()

    def touch_session(self, client_key: str) -> None:
        """Mark ``client_key`` as active now."""
        with self._lock:
            self._sessions[client_key] = self._clock()
            self._maybe_cleanup_locked()

    def summary(self) -> MetricsSummary:
        """Aggregate everything currently retained."""
        with self._lock:
            self._maybe_cleanup_locked()
            now = self._clock()
            messages = list(self._messages)
            error_count = len(self._errors)
            active_users = sum(
                1 for last_seen in self._sessions.values()
                if now - last_seen <= self.session_timeout_seconds
            )

        total_requests = len(messages)
        average_response_time = 0.0
        if total_requests:
            average_response_time = sum(m.response_time_ms for m in messages) / total_requests / 1000.0

        attempts = total_requests + error_count
        error_rate = error_count / attempts if attempts else 0.0

        return MetricsSummary(
            total_requests=total_requests,
            average_response_time=average_response_time,
            tokens_generated=sum(m.tokens_out for m in messages),
            active_users=active_users,
            error_rate=error_rate,
        )

    def cleanup(self, force: bool = False) -> bool:
        """
        Prune expired entries.

        Returns:
            True if a prune pass ran
        """
        with self._lock:
            if force:
                self._prune_locked(self._clock())
                return True
            return self._maybe_cleanup_locked()

    def _maybe_cleanup_locked(self) -> bool:
        now = self._clock()
        if now - self._last_cleanup < self.cleanup_interval_seconds:
            return False
        self._prune_locked(now)
        return True

    def _prune_locked(self, now: float) -> None:
        horizon = now - self.retention_seconds
        before = len(self._messages) + len(self._errors) + len(self._sessions)

        self._messages = [m for m in self._messages if m.timestamp >= horizon]
        self._errors = [e for e in self._errors if e.timestamp >= horizon]
        self._sessions = {
            key: last_seen for key, last_seen in self._sessions.items()
            if now - last_seen <= self.session_timeout_seconds
        }
        self._last_cleanup = now

        after = len(self._messages) + len(self._errors) + len(self._sessions)
        logger.debug("Pruned metrics summary", stage="M.2", removed=before - after, retained=after)
