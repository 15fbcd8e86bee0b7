"""
Rate Limiter

Per-client sliding-window admission control for the relay endpoint.

Features:
- Sliding window: admissions are counted over the trailing window ending
  "now", so the quota is smooth rather than bursty at minute boundaries
- Per-user, per-token and per-IP client keys
- Idle client keys are evicted once all their timestamps have aged out
- Injectable clock for deterministic tests
"""

import hashlib
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Request
from slowapi.util import get_remote_address

from genai_relay.core.config.constants import HEADER_USER_ID
from genai_relay.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitStats:
    """Point-in-time view of the limiter, used by readiness checks and tests."""

    limit: int
    window_seconds: float
    tracked_keys: int


class SlidingWindowRateLimiter:
    """
    Sliding-window rate limiter keyed by client.

    Algorithm:
    1. Drop timestamps for the key that are at least one window old
    2. Reject if the remaining count already reached the limit
    3. Otherwise record "now" and admit

    A rejection records nothing, so a client hammering the endpoint does not
    extend its own lockout.

    Concurrency:
    All reads and writes of the per-key timestamp deques happen under one
    ``threading.Lock``. The critical section is a handful of deque operations
    and never spans an await, so it is safe to call from the event loop and
    from worker threads alike.

    Key eviction:
    A key whose deque is empty after pruning can be removed without changing
    any future decision, because an absent key and an empty window both mean
    "zero admissions in the trailing window". Keys are swept at most once per
    window length.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def admit(self, client_key: str) -> bool:
        """
        Try to admit one request for ``client_key``.

        Returns:
            True if admitted (and the admission was recorded), False otherwise
        """
        now = self._clock()
        cutoff = now - self.window_seconds

        with self._lock:
            window = self._windows.get(client_key)
            if window is None:
                window = deque()
                self._windows[client_key] = window

            self._prune(window, cutoff)

            if len(window) >= self.limit:
                allowed = False
            else:
                window.append(now)
                allowed = True

            if now - self._last_sweep >= self.window_seconds:
                self._sweep(cutoff)
                self._last_sweep = now

        if not allowed:
            logger.debug("Rate limit exceeded", client_key=client_key, limit=self.limit)
        return allowed

    def retry_after(self, client_key: str) -> float:
        """Seconds until the oldest admission of ``client_key`` leaves the window."""
        now = self._clock()
        with self._lock:
            window = self._windows.get(client_key)
            if not window or len(window) < self.limit:
                return 0.0
            return max(0.0, window[0] + self.window_seconds - now)

    def stats(self) -> RateLimitStats:
        with self._lock:
            tracked = len(self._windows)
        return RateLimitStats(limit=self.limit, window_seconds=self.window_seconds, tracked_keys=tracked)

    @staticmethod
    def _prune(window: deque[float], cutoff: float) -> None:
        while window and window[0] <= cutoff:
            window.popleft()

    def _sweep(self, cutoff: float) -> None:
        # Caller holds the lock
        stale = [key for key, window in self._windows.items() if not window or window[-1] <= cutoff]
        for key in stale:
            del self._windows[key]
        if stale:
            logger.debug("Evicted idle rate limit keys", evicted=len(stale), remaining=len(self._windows))


def get_client_key(request: Request) -> str:
    """
    Extract the rate-limit key from a request.

    Priority: X-User-ID header > Authorization token hash > Remote IP
    """
    user_id = request.headers.get(HEADER_USER_ID)
    if user_id:
        return f"user:{user_id}"

    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        # Hash the token so it never lands in logs or metrics
        token_hash = hashlib.sha256(auth_header.encode()).hexdigest()[:16]
        return f"token:{token_hash}"

    return f"ip:{get_remote_address(request)}"
