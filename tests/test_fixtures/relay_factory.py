"""
Relay Test Factory

Controllable collaborators for relay and coordinator tests: a manual clock,
a sink that records what was written, and a builder that wires a relay to
a scripted source.
"""

import asyncio
from collections.abc import Sequence

from genai_relay.core.exceptions import DownstreamWriteError
from genai_relay.core.observability import RequestTracer
from genai_relay.infrastructure.monitoring import MetricsSink, MetricsSummaryStore
from genai_relay.llm_stream.models import ModelConfig
from genai_relay.llm_stream.providers import FakeCompletionSource
from genai_relay.llm_stream.services import StreamRelay
from genai_relay.rate_limiting import SlidingWindowRateLimiter
from genai_relay.streaming.request_lifecycle import RequestLifecycleCoordinator


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSink:
    """
    DownstreamSink that keeps every chunk.

    ``fail_after`` makes the write after that many successful writes raise
    DownstreamWriteError, like a client that hung up mid-stream.
    """

    def __init__(self, fail_after: int | None = None, write_delay: float = 0.0):
        self.chunks: list[str] = []
        self.fail_after = fail_after
        self.write_delay = write_delay
        self.broken = False
        self._started = asyncio.Event()

    @property
    def started(self) -> bool:
        return self._started.is_set()

    @property
    def text(self) -> str:
        return "".join(self.chunks)

    async def wait_started(self) -> None:
        await self._started.wait()

    def mark_broken(self) -> None:
        self.broken = True

    async def write(self, text: str) -> None:
        if self.broken or (self.fail_after is not None and len(self.chunks) >= self.fail_after):
            raise DownstreamWriteError("Client went away")
        if self.write_delay:
            await asyncio.sleep(self.write_delay)
        self.chunks.append(text)
        self._started.set()


class RelayTestFactory:
    """Factory for relays and coordinators over a FakeCompletionSource."""

    @staticmethod
    def relay(
        tokens: Sequence[str] | None = ("Hello", " ", "world"),
        metrics: MetricsSink | None = None,
        tracer: RequestTracer | None = None,
        summary: MetricsSummaryStore | None = None,
        **source_options,
    ) -> tuple[StreamRelay, FakeCompletionSource]:
        source = FakeCompletionSource(tokens, **source_options)
        relay = StreamRelay(source, metrics or MetricsSink(), tracer=tracer, summary=summary)
        return relay, source

    @staticmethod
    def coordinator(
        relay: StreamRelay,
        metrics: MetricsSink,
        model_config: ModelConfig | None = None,
        limit: int = 60,
        limiter_clock=None,
        **options,
    ) -> RequestLifecycleCoordinator:
        limiter_options = {"clock": limiter_clock} if limiter_clock is not None else {}
        limiter = SlidingWindowRateLimiter(limit, window_seconds=60.0, **limiter_options)
        return RequestLifecycleCoordinator(
            relay,
            limiter,
            metrics,
            model_config or ModelConfig(model="test-model"),
            **options,
        )
