#!/usr/bin/env python3
"""
OpenAI SDK Completion Source

This module streams completions through the official AsyncOpenAI client,
pointed at any OpenAI-compatible base URL. It translates SDK exceptions into
the relay's upstream exception hierarchy.

Author: Senior Solution Architect
Date: 2025-12-05
"""

from collections.abc import AsyncIterator
from typing import Any

from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI

from genai_relay.core.exceptions import UpstreamUnavailableError
from genai_relay.core.logging import get_logger
from genai_relay.llm_stream.models import Conversation, ModelConfig, TokenEvent
from genai_relay.llm_stream.providers.base_provider import CompletionSource, TokenStream

logger = get_logger(__name__)


class OpenAICompletionSource(CompletionSource):
    """
    Completion source backed by ``AsyncOpenAI.chat.completions.create``.

    STAGE-OPENAI: OpenAI SDK operations

    SDK retries are disabled; the relay never retries upstream calls.
    """

    name = "openai"

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float = 60.0,
        client: AsyncOpenAI | None = None,
    ):
        self.client = client or AsyncOpenAI(
            # Local model runners ignore the key but the SDK requires one
            api_key=api_key or "not-needed",
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        )
        self._owns_client = client is None

        logger.info("OpenAI completion source initialized", stage="OPENAI.0", base_url=base_url)

    async def _open(self, conversation: Conversation, config: ModelConfig) -> TokenStream:
        try:
            stream = await self.client.chat.completions.create(
                model=config.model,
                messages=conversation.to_wire(),
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                stream=True,
            )
        except (APIConnectionError, APITimeoutError) as conn_error:
            logger.error("OpenAI connection failed", stage="OPENAI.ERR", error=str(conn_error))
            raise UpstreamUnavailableError.from_exception(
                conn_error, message="Could not connect to upstream", source=self.name
            ) from conn_error
        except APIStatusError as status_error:
            logger.error(
                "OpenAI API error",
                stage="OPENAI.ERR",
                status_code=status_error.status_code,
                error=str(status_error),
            )
            raise UpstreamUnavailableError(
                f"Upstream returned HTTP {status_error.status_code}",
                details={"status_code": status_error.status_code, "source": self.name},
            ) from status_error

        return TokenStream(self._iter_chunks(stream), on_close=stream.close, source=self.name)

    @staticmethod
    async def _iter_chunks(stream) -> AsyncIterator[TokenEvent]:
        async for chunk in stream:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            content = choice.delta.content if choice.delta is not None else None
            yield TokenEvent(content=content or "", finish_reason=choice.finish_reason)

    async def health_check(self) -> dict[str, Any]:
        return {"status": "configured", "source": self.name, "base_url": str(self.client.base_url)}

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.close()
