#!/usr/bin/env python3
"""
OpenAI-compatible HTTP Completion Source

Streams chat completions from any endpoint that speaks the OpenAI
``/chat/completions`` streaming protocol (Docker Model Runner, llama.cpp
server, vLLM, hosted APIs) using a shared httpx AsyncClient.

Wire format handled:
- Server-sent event lines: ``data: {...}`` terminated by ``data: [DONE]``
- Bare newline-delimited JSON objects
- ``choices[0].delta.content`` with ``choices[0].text`` as fallback

Author: Senior Solution Architect
Date: 2025-12-05
"""

from collections.abc import AsyncIterator
from typing import Any

import httpx
import orjson

from genai_relay.core.exceptions import UpstreamStreamError, UpstreamUnavailableError
from genai_relay.core.logging import get_logger
from genai_relay.llm_stream.models import Conversation, ModelConfig, TokenEvent
from genai_relay.llm_stream.providers.base_provider import CompletionSource, TokenStream

logger = get_logger(__name__)

DONE_MARKER = "[DONE]"
_ERROR_BODY_PREVIEW = 200


class _Done:
    """Sentinel for the end-of-stream marker."""


DONE = _Done()


def parse_stream_line(line: str) -> TokenEvent | _Done | None:
    """
    Decode one line of the upstream stream.

    Returns:
        TokenEvent for a chunk carrying a choice, DONE for the end marker,
        None for lines that carry nothing (blank, comments, usage-only chunks)

    Raises:
        UpstreamStreamError: undecodable JSON or an in-band error object
    """
    line = line.strip()
    if not line or line.startswith(":") or line.startswith("event:"):
        return None
    if line.startswith("data:"):
        line = line[len("data:"):].strip()
    if line == DONE_MARKER:
        return DONE

    try:
        payload = orjson.loads(line)
    except orjson.JSONDecodeError as exc:
        raise UpstreamStreamError(
            "Undecodable upstream chunk", details={"preview": line[:_ERROR_BODY_PREVIEW]}
        ) from exc

    if not isinstance(payload, dict):
        return None
    if payload.get("error"):
        error = payload["error"]
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise UpstreamStreamError(f"Upstream reported an error: {message}")

    choices = payload.get("choices") or []
    if not choices:
        return None

    choice = choices[0]
    delta = choice.get("delta") or {}
    content = delta.get("content")
    if content is None:
        content = choice.get("text")
    return TokenEvent(content=content or "", finish_reason=choice.get("finish_reason"))


class HttpCompletionSource(CompletionSource):
    """
    Completion source backed by a raw httpx streaming POST.

    STAGE-HTTP: upstream HTTP streaming

    The client is created once and reused across requests (connection pooling).
    Pass ``client`` to inject one, e.g. with ``httpx.MockTransport`` in tests;
    an injected client is not closed by ``aclose``.
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        completions_path: str = "/chat/completions",
        api_key: str | None = None,
        connect_timeout: float = 10.0,
        read_timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = f"{base_url.rstrip('/')}/{completions_path.lstrip('/')}"
        self._headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(read_timeout, connect=connect_timeout)
        )

        logger.info("HTTP completion source initialized", stage="HTTP.0", url=self.url)

    @staticmethod
    def build_payload(conversation: Conversation, config: ModelConfig) -> dict[str, Any]:
        return {
            "model": config.model,
            "messages": conversation.to_wire(),
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
            "stream": config.stream,
        }

    async def _open(self, conversation: Conversation, config: ModelConfig) -> TokenStream:
        request = self._client.build_request(
            "POST",
            self.url,
            content=orjson.dumps(self.build_payload(conversation, config)),
            headers=self._headers,
        )

        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            logger.warning("Upstream connection failed", stage="HTTP.ERR", url=self.url, error=str(exc))
            raise UpstreamUnavailableError.from_exception(
                exc, message="Could not connect to upstream", url=self.url
            ) from exc

        if response.status_code >= 400:
            try:
                body = await response.aread()
            finally:
                await response.aclose()
            logger.warning(
                "Upstream rejected request",
                stage="HTTP.ERR",
                url=self.url,
                status_code=response.status_code,
            )
            raise UpstreamUnavailableError(
                f"Upstream returned HTTP {response.status_code}",
                details={
                    "status_code": response.status_code,
                    "body": body[:_ERROR_BODY_PREVIEW].decode("utf-8", errors="replace"),
                },
            )

        return TokenStream(self._iter_events(response), on_close=response.aclose, source=self.name)

    @staticmethod
    async def _iter_events(response: httpx.Response) -> AsyncIterator[TokenEvent]:
        async for line in response.aiter_lines():
            event = parse_stream_line(line)
            if event is DONE:
                return
            if event is not None:
                yield event

    async def health_check(self) -> dict[str, Any]:
        return {"status": "configured", "source": self.name, "url": self.url}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
