#!/usr/bin/env python3
"""
Completion Source Abstract Class

This module defines the contract between the stream relay and an upstream
chat-completion endpoint. Concrete implementations (raw httpx, OpenAI SDK,
in-process fake) inherit from ``CompletionSource``.

Architectural Decision: Uniform error mapping in the base class
- Anything that goes wrong while opening a stream surfaces as
  UpstreamUnavailableError
- Anything that goes wrong while iterating an open stream surfaces as
  UpstreamStreamError
- Cancellation is never wrapped; it propagates untouched

Author: Senior Solution Architect
Date: 2025-12-05
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from genai_relay.core.exceptions import UpstreamError, UpstreamStreamError, UpstreamUnavailableError
from genai_relay.core.logging.logger import get_logger
from genai_relay.llm_stream.models import Conversation, ModelConfig, TokenEvent

logger = get_logger(__name__)


class TokenStream:
    """
    Lazy, finite, non-restartable sequence of token events.

    Events are pulled one at a time by a single consumer; nothing is read
    from the upstream ahead of the consumer's request. ``aclose`` releases
    the underlying connection and is safe to call more than once, including
    on a stream that was never iterated.
    """

    def __init__(
        self,
        events: AsyncIterator[TokenEvent],
        on_close: Callable[[], Awaitable[Any]] | None = None,
        source: str = "unknown",
    ):
        self._events = events
        self._on_close = on_close
        self._source = source
        self._closed = False
        self._exhausted = False

    def __aiter__(self) -> "TokenStream":
        return self

    async def __anext__(self) -> TokenEvent:
        if self._closed or self._exhausted:
            raise StopAsyncIteration
        try:
            return await self._events.__anext__()
        except StopAsyncIteration:
            self._exhausted = True
            raise
        except UpstreamError:
            raise
        except Exception as exc:
            raise UpstreamStreamError.from_exception(
                exc, message="Upstream stream failed", source=self._source
            ) from exc

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            aclose = getattr(self._events, "aclose", None)
            if aclose is not None:
                await aclose()
        finally:
            if self._on_close is not None:
                await self._on_close()

    @property
    def closed(self) -> bool:
        return self._closed


class CompletionSource(ABC):
    """
    Abstract base class for upstream completion sources.

    STAGE-4: Upstream source base class

    Subclasses must implement:
    - _open(): issue the request and return a TokenStream once the upstream
      has accepted it

    Usage:
        stream = await source.open_stream(conversation, model_config)
        async with contextlib.aclosing(stream):
            async for event in stream:
                ...
    """

    name: str = "base"

    async def open_stream(self, conversation: Conversation, config: ModelConfig) -> TokenStream:
        """
        Open a token stream for ``conversation``.

        STAGE-4.1: Upstream open

        Raises:
            UpstreamUnavailableError: the stream could not be opened
        """
        try:
            stream = await self._open(conversation, config)
        except UpstreamError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise UpstreamUnavailableError.from_exception(
                exc, message="Could not open upstream stream", source=self.name
            ) from exc

        logger.debug("Upstream stream opened", stage="4.1", source=self.name, model=config.model)
        return stream

    @abstractmethod
    async def _open(self, conversation: Conversation, config: ModelConfig) -> TokenStream:
        ...

    async def health_check(self) -> dict[str, Any]:
        """Static description of the source; never performs network I/O."""
        return {"status": "configured", "source": self.name}

    async def aclose(self) -> None:
        """Release clients owned by the source."""
        return None
