"""
Relay Response

A Starlette ``Response`` whose body is produced by the request coordinator
while it runs. Starlette's ``StreamingResponse`` sends its status line
before the first chunk is known; the relay needs the opposite: the status
is only committed by the first token, so a request that fails before any
output can still be answered with a plain 400/429/502.
"""

import math

from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from genai_relay.core.config.constants import RATE_LIMIT_RETRY_AFTER_SECONDS, ErrorClass, RequestStatus
from genai_relay.core.logging import get_logger
from genai_relay.llm_stream.models import RequestOutcome
from genai_relay.streaming.downstream import AsgiDownstreamSink
from genai_relay.streaming.request_lifecycle import InboundRequest, RequestLifecycleCoordinator

logger = get_logger(__name__)

# Bodiless statuses for outcomes without an HTTP mapping
DEADLINE_STATUS = 504
SHUTDOWN_STATUS = 503


class RelayResponse(Response):
    """
    Runs one chat request through the coordinator and finishes the exchange.

    After ``__call__`` returns, ``outcome`` holds the request's terminal
    outcome.
    """

    def __init__(self, coordinator: RequestLifecycleCoordinator, inbound: InboundRequest):
        self.coordinator = coordinator
        self.inbound = inbound
        self.outcome: RequestOutcome | None = None
        self.status_code = 200
        self.background = None
        self.init_headers()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        sink = AsgiDownstreamSink(send)

        async def wait_for_disconnect() -> None:
            while True:
                message = await receive()
                if message["type"] == "http.disconnect":
                    return

        self.outcome = await self.coordinator.handle(self.inbound, sink, wait_for_disconnect)
        status, extra_headers = self.completion_for(self.outcome, sink.started)
        if status is not None:
            self.status_code = status
        await sink.complete(status, extra_headers)

    def completion_for(self, outcome: RequestOutcome, started: bool) -> tuple[int | None, dict[str, str]]:
        """
        Status and headers used to end the response.

        A started stream only needs its body closed. Before any output,
        errors map to their HTTP status; a missed deadline answers 504 and a
        shutdown answers 503, unless the client is already gone.
        """
        extra_headers: dict[str, str] = {}
        status = outcome.http_status

        if outcome.error_class is ErrorClass.RATE_LIMITED:
            retry_after = self.coordinator.limiter.retry_after(self.inbound.client_key)
            seconds = math.ceil(retry_after) if retry_after > 0 else RATE_LIMIT_RETRY_AFTER_SECONDS
            extra_headers["Retry-After"] = str(seconds)

        if status is None and not started:
            if outcome.status is RequestStatus.CANCELLED:
                status = SHUTDOWN_STATUS
            elif outcome.error_class is ErrorClass.DOWNSTREAM_WRITE_FAILED:
                status = DEADLINE_STATUS

        return status, extra_headers
