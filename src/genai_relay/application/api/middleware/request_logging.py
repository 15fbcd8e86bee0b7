"""
Request Logging Middleware - Educational Documentation
=======================================================

WHAT DOES THIS MIDDLEWARE DO?
-----------------------------
For every HTTP request it:

1. Assigns a correlation ID (reusing an inbound ``X-Request-ID``) and
   echoes it on the response
2. Tracks the number of in-flight requests in the ``active_requests`` gauge
3. Counts the request by method, route and status, and records its duration
4. Logs start and completion with the correlation ID bound

WHY A PURE ASGI MIDDLEWARE?
---------------------------
Starlette's ``BaseHTTPMiddleware`` runs the endpoint behind an internal
memory stream and replaces ``receive``. The chat endpoint streams tokens as
they arrive and listens on ``receive`` for client disconnects, so this
middleware wraps ``send`` only and lets every message through unchanged.

Request Flow:
    Client → RequestLoggingMiddleware → CORSMiddleware → Route Handler

The status code is taken from the ``http.response.start`` message. A
request that ends without one (client went away before the first byte) is
recorded with status 499.
"""

import time
import uuid

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from genai_relay.core.config.constants import (
    HEADER_REQUEST_ID,
    METRIC_ACTIVE_REQUESTS,
    METRIC_HTTP_DURATION,
    METRIC_HTTP_REQUESTS,
    Stage,
)
from genai_relay.core.logging import clear_request_id, get_logger, log_stage, set_request_id

logger = get_logger(__name__)

# Status recorded when no response was started
CLIENT_CLOSED_REQUEST = 499

UNMATCHED_ROUTE = "unmatched"


class RequestLoggingMiddleware:
    """
    Correlation ID, HTTP metrics and request logs for every request.

    The metrics sink is looked up on ``app.state`` per request so the
    middleware can be installed before the lifespan has built it.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = Headers(scope=scope).get(HEADER_REQUEST_ID) or str(uuid.uuid4())
        scope.setdefault("state", {})["request_id"] = request_id

        method = scope["method"]
        path = scope["path"]
        app = scope.get("app")
        metrics = getattr(getattr(app, "state", None), "metrics", None)

        status_code = CLIENT_CLOSED_REQUEST

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                headers = MutableHeaders(scope=message)
                headers[HEADER_REQUEST_ID] = request_id
            await send(message)

        set_request_id(request_id)
        log_stage(logger, Stage.HTTP, f"Incoming request: {method} {path}", level="debug", method=method, path=path)

        if metrics is not None:
            metrics.increment_gauge(METRIC_ACTIVE_REQUESTS)
        start_time = time.perf_counter()

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as e:
            status_code = 500
            logger.error(
                f"Request failed: {method} {path}",
                stage=Stage.HTTP.value,
                method=method,
                path=path,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            raise
        finally:
            duration = time.perf_counter() - start_time
            endpoint = self._route_template(scope)

            if metrics is not None:
                metrics.decrement_gauge(METRIC_ACTIVE_REQUESTS)
                metrics.increment_counter(
                    METRIC_HTTP_REQUESTS, {"method": method, "endpoint": endpoint, "status": str(status_code)}
                )
                metrics.observe_histogram(METRIC_HTTP_DURATION, {"method": method, "endpoint": endpoint}, duration)

            log_stage(
                logger,
                Stage.HTTP,
                f"Request completed: {method} {path}",
                method=method,
                path=path,
                status_code=status_code,
                duration_seconds=round(duration, 4),
                request_id=request_id,
            )
            clear_request_id()

    @staticmethod
    def _route_template(scope: Scope) -> str:
        """Path template of the matched route, so path parameters don't explode label cardinality."""
        route = scope.get("route")
        return getattr(route, "path", None) or UNMATCHED_ROUTE
