import asyncio
import random
from collections.abc import AsyncIterator, Sequence
from typing import Any

from genai_relay.core.exceptions import UpstreamStreamError, UpstreamUnavailableError
from genai_relay.core.logging import get_logger
from genai_relay.llm_stream.models import Conversation, ModelConfig, TokenEvent
from genai_relay.llm_stream.providers.base_provider import CompletionSource, TokenStream

logger = get_logger(__name__)


class FakeCompletionSource(CompletionSource):
    """
    An in-process completion source for local development and tests.

    With ``tokens`` it replays exactly that script; without it, it simulates
    a model by chunking a canned answer into variable-sized deltas. Every
    opened request is recorded in ``requests`` so callers can inspect what
    would have been sent upstream.
    """

    name = "fake"

    def __init__(
        self,
        tokens: Sequence[str] | None = None,
        *,
        open_delay: float = 0.0,
        token_delay: float = 0.0,
        close_delay: float = 0.0,
        fail_on_open: bool = False,
        fail_after: int | None = None,
    ):
        self.tokens = list(tokens) if tokens is not None else None
        self.open_delay = open_delay
        self.token_delay = token_delay
        self.close_delay = close_delay
        self.fail_on_open = fail_on_open
        self.fail_after = fail_after

        self.requests: list[tuple[Conversation, ModelConfig]] = []
        self.events_pulled = 0
        self.streams_closed = 0

    async def _open(self, conversation: Conversation, config: ModelConfig) -> TokenStream:
        self.requests.append((conversation, config))
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.fail_on_open:
            raise UpstreamUnavailableError("Simulated upstream outage", details={"source": self.name})

        script = self.tokens if self.tokens is not None else self._chunk_text(
            self._generate_response_content(conversation.last_user_text)
        )
        return TokenStream(self._replay(script), on_close=self._on_close, source=self.name)

    async def _replay(self, script: list[str]) -> AsyncIterator[TokenEvent]:
        for index, content in enumerate(script):
            if self.fail_after is not None and index >= self.fail_after:
                raise UpstreamStreamError("Simulated mid-stream failure", details={"after": index})
            if self.token_delay:
                await asyncio.sleep(self.token_delay)
            self.events_pulled += 1
            finish_reason = "stop" if index == len(script) - 1 else None
            yield TokenEvent(content=content, finish_reason=finish_reason)

    async def _on_close(self) -> None:
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        self.streams_closed += 1

    async def health_check(self) -> dict[str, Any]:
        return {"status": "healthy", "source": self.name}

    @staticmethod
    def _generate_response_content(query: str) -> str:
        """Generates a dummy response whose length varies with the query."""
        lorem_ipsum = (
            "Lorem ipsum dolor sit amet, consectetur adipiscing elit. "
            "Sed do eiusmod tempor incididunt ut labore et dolore magna aliqua. "
            "Ut enim ad minim veniam, quis nostrud exercitation ullamco laboris "
            "nisi ut aliquip ex ea commodo consequat. "
        )
        multiplier = (len(query) % 3) + 1
        return lorem_ipsum * multiplier

    @staticmethod
    def _chunk_text(text: str) -> list[str]:
        """Splits text into small chunks to simulate tokens."""
        chunks = []
        i = 0
        while i < len(text):
            chunk_size = random.randint(2, 6)
            chunks.append(text[i : i + chunk_size])
            i += chunk_size
        return chunks
