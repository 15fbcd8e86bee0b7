"""
Chat Route - Educational Documentation
======================================

``POST /chat`` relays one conversation to the upstream model and streams
the generated text back as it arrives.

REQUEST BODY:
-------------
    {"messages": [{"role": "user", "content": "Hi"}], "message": "And?"}

``messages`` is the prior conversation, ``message`` the new user turn;
either may be omitted but not both. An optional ``"format": "markdown"``
asks for markdown output.

RESPONSE:
---------
``200 text/plain; charset=utf-8``, sent chunk by chunk, one chunk per
upstream token. There is no framing: the concatenated body is the answer.

If the request fails before the first token, the response is bodiless:

    400 malformed body or empty conversation
    429 rate limit exceeded (with Retry-After)
    502 upstream unavailable or failed before any output
    504 no output within the begin deadline

Once tokens have been sent the status is already 200; a later failure ends
the body early.

WHY NOT A PYDANTIC BODY PARAMETER?
----------------------------------
A malformed body must count as a finalized request (terminal counter,
trace span, error log) like any other failure, so the raw bytes are handed
to the coordinator and parsed there instead of being rejected with a 422
before the relay ever sees them.
"""

from fastapi import APIRouter, Request, status
from starlette.requests import ClientDisconnect

from genai_relay.application.api.dependencies import ClientIdDep, CoordinatorDep, RequestIdDep
from genai_relay.application.api.relay_response import RelayResponse
from genai_relay.core.config.constants import STREAM_MEDIA_TYPE
from genai_relay.core.exceptions import DownstreamWriteError
from genai_relay.streaming.request_lifecycle import InboundRequest

router = APIRouter(tags=["Chat"])


@router.post(
    "/chat",
    status_code=status.HTTP_200_OK,
    responses={
        200: {"description": "Generated text, streamed", "content": {STREAM_MEDIA_TYPE: {}}},
        400: {"description": "Malformed body or empty conversation"},
        429: {"description": "Rate limit exceeded"},
        502: {"description": "Upstream unavailable"},
        504: {"description": "Upstream produced no output in time"},
    },
)
async def chat(request: Request, coordinator: CoordinatorDep, request_id: RequestIdDep, client_id: ClientIdDep):
    """
    Stream a chat completion.

    The coordinator owns the response: admission, reading and parsing the
    body, relaying and finishing the exchange. A rate-limited request is
    answered without its body ever being read.
    """

    async def read_body() -> bytes:
        try:
            return await request.body()
        except ClientDisconnect as exc:
            raise DownstreamWriteError.from_exception(exc, message="Client disconnected") from exc

    inbound = InboundRequest(client_key=client_id, request_id=request_id, read_body=read_body)
    return RelayResponse(coordinator, inbound)
