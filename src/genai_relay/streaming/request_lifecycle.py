"""
Request Lifecycle Coordinator - Educational Documentation
=========================================================

WHAT IS THE REQUEST LIFECYCLE COORDINATOR?
-------------------------------------------
The coordinator is the entry point for every ``POST /chat`` request. It
does not move tokens itself; the StreamRelay does that. The coordinator
wraps the relay with the cross-cutting concerns that apply to a whole
request and owns the answer to "when does this request stop?".

COMPOSABLE STAGES:
------------------
Each concern is a small wrapper around the next one, composed once in a
fixed order when the coordinator is built:

    admission      → rate limit per client key; rejected requests stop here
      observation  → request-scoped logging and in-flight bookkeeping
        annotation → root trace span, guaranteed closed exactly once
          supervise → body read and parse, relay task, deadlines, disconnects

Every wrapper has the same shape, ``async (RelayCall) -> RequestOutcome``,
so each can be tested on its own and the order is visible in one line.

CANCELLATION AND DEADLINES:
---------------------------
The relay runs in its own task, raced against two watchers:

1. Deadline watcher: the first byte must reach the caller within
   STREAM_BEGIN_TIMEOUT, and the whole exchange must finish within
   STREAM_TOTAL_TIMEOUT.
2. Disconnect watcher: completes when the server reports that the client
   went away.

Whichever finishes first decides. If a watcher wins, the coordinator trips
the request's CancellationSignal with ``downstream_write_failed`` and
cancels the relay task; the relay finalizes with that status and returns.
If the coordinator itself is cancelled (server shutdown), it trips the
signal with no reason, so the relay records ``cancelled``.

No watcher or relay task outlives the request: all of them are cancelled
and awaited before ``handle`` returns.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from genai_relay.core.config.constants import (
    METRIC_ERRORS,
    OPERATION_API,
    RATE_LIMIT_ERROR_TYPE,
    ErrorClass,
    Stage,
)
from genai_relay.core.exceptions import DownstreamWriteError, InvalidRequestError
from genai_relay.core.logging import clear_request_id, get_logger, log_stage, set_request_id
from genai_relay.core.observability import RequestSpan, RequestTracer
from genai_relay.infrastructure.monitoring import MetricsSink, MetricsSummaryStore
from genai_relay.llm_stream.models import CancellationSignal, ChatRequest, ModelConfig, RequestOutcome
from genai_relay.llm_stream.services.stream_relay import StreamRelay
from genai_relay.rate_limiting import SlidingWindowRateLimiter
from genai_relay.streaming.downstream import DownstreamSink

logger = get_logger(__name__)

DisconnectWaiter = Callable[[], Awaitable[Any]]
BodyReader = Callable[[], Awaitable[bytes]]


@dataclass(frozen=True)
class InboundRequest:
    """
    What the HTTP layer knows about a chat request before it is parsed.

    The body is either given as ``body`` or read through ``read_body``, which
    is only awaited once the request has been admitted.
    """

    client_key: str
    request_id: str
    body: bytes = b""
    read_body: BodyReader | None = None

    async def load_body(self) -> bytes:
        if self.read_body is None:
            return self.body
        return await self.read_body()


@dataclass
class RelayCall:
    """State threaded through the coordinator stages for one request."""

    inbound: InboundRequest
    sink: DownstreamSink
    wait_for_disconnect: DisconnectWaiter | None = None
    signal: CancellationSignal = field(default_factory=CancellationSignal)
    trace: RequestSpan | None = None


RelayHandler = Callable[[RelayCall], Awaitable[RequestOutcome]]


class RequestLifecycleCoordinator:
    """
    Runs one chat request end to end: admit, observe, annotate, relay.

    DEPENDENCY INJECTION:
    ---------------------
    All collaborators are passed in; the FastAPI lifespan builds the real
    ones and tests build small ones with a fake clock and a scripted source.
    """

    def __init__(
        self,
        relay: StreamRelay,
        limiter: SlidingWindowRateLimiter,
        metrics: MetricsSink,
        model_config: ModelConfig,
        tracer: RequestTracer | None = None,
        summary: MetricsSummaryStore | None = None,
        begin_timeout: float = 30.0,
        total_timeout: float = 90.0,
    ):
        self._relay = relay
        self._limiter = limiter
        self._metrics = metrics
        self._model_config = model_config
        self._tracer = tracer or RequestTracer()
        self._summary = summary
        self._begin_timeout = begin_timeout
        self._total_timeout = total_timeout

        self._inflight: dict[asyncio.Task, CancellationSignal] = {}
        self._accepting = True

        self._handler: RelayHandler = self._admission(
            self._observation(
                self._annotation(
                    self._supervise
                )
            )
        )

        logger.info(
            "Request lifecycle coordinator initialized",
            stage=Stage.INITIALIZATION.value,
            model=model_config.model,
            rate_limit=limiter.limit,
            begin_timeout=begin_timeout,
            total_timeout=total_timeout,
        )

    @property
    def model_config(self) -> ModelConfig:
        return self._model_config

    @property
    def relay(self) -> StreamRelay:
        return self._relay

    @property
    def limiter(self) -> SlidingWindowRateLimiter:
        return self._limiter

    @property
    def active_requests(self) -> int:
        return len(self._inflight)

    @property
    def accepting(self) -> bool:
        return self._accepting

    async def handle(
        self,
        inbound: InboundRequest,
        sink: DownstreamSink,
        wait_for_disconnect: DisconnectWaiter | None = None,
    ) -> RequestOutcome:
        """
        Handle one chat request and return its outcome.

        The token stream itself goes to ``sink``; the outcome tells the HTTP
        layer how to finish the exchange.
        """
        call = RelayCall(inbound=inbound, sink=sink, wait_for_disconnect=wait_for_disconnect)
        return await self._handler(call)

    # ========================================================================
    # STAGE 3: ADMISSION
    # ========================================================================

    def _admission(self, inner: RelayHandler) -> RelayHandler:
        async def admission(call: RelayCall) -> RequestOutcome:
            client_key = call.inbound.client_key
            if not self._limiter.admit(client_key):
                self._metrics.increment_counter(
                    METRIC_ERRORS, {"type": RATE_LIMIT_ERROR_TYPE, "operation": OPERATION_API}
                )
                log_stage(
                    logger,
                    Stage.RATE_LIMITING,
                    "Rate limit exceeded",
                    level="warning",
                    client_key=client_key,
                    request_id=call.inbound.request_id,
                )
                return RequestOutcome.rejected(
                    ErrorClass.RATE_LIMITED, "Rate limit exceeded. Please try again later."
                )

            if self._summary is not None:
                self._summary.touch_session(client_key)
            return await inner(call)

        return admission

    # ========================================================================
    # OBSERVATION
    # ========================================================================

    def _observation(self, inner: RelayHandler) -> RelayHandler:
        async def observation(call: RelayCall) -> RequestOutcome:
            set_request_id(call.inbound.request_id)
            log_stage(
                logger,
                Stage.REQUEST_PARSING,
                "Chat request admitted",
                level="debug",
                client_key=call.inbound.client_key,
            )
            try:
                return await inner(call)
            finally:
                clear_request_id()

        return observation

    # ========================================================================
    # ANNOTATION
    # ========================================================================

    def _annotation(self, inner: RelayHandler) -> RelayHandler:
        async def annotation(call: RelayCall) -> RequestOutcome:
            call.trace = self._tracer.start_request(
                self._model_config.model, request_id=call.inbound.request_id
            )
            try:
                return await inner(call)
            except BaseException as exc:
                if not call.trace.closed:
                    call.trace.record_error(exc)
                raise
            finally:
                # The relay closes the span on every path it controls
                if not call.trace.closed:
                    call.trace.finish(
                        model=self._model_config.model,
                        status="aborted",
                        tokens_in=0,
                        tokens_out=0,
                        duration=0.0,
                    )

        return annotation

    # ========================================================================
    # SUPERVISION
    # ========================================================================

    async def _supervise(self, call: RelayCall) -> RequestOutcome:
        try:
            body = await call.inbound.load_body()
            log_stage(logger, Stage.REQUEST_PARSING, "Request body read", level="debug", body_bytes=len(body))
            chat_request = ChatRequest.parse_body(body)
        except (InvalidRequestError, DownstreamWriteError) as exc:
            return await self._relay.reject(self._model_config, call.trace, error=exc)

        if not self._accepting:
            call.signal.trip(None, "Server is shutting down")
            return await self._relay.reject(self._model_config, call.trace, signal=call.signal)

        relay_task = asyncio.create_task(
            self._relay.run(
                chat_request,
                self._model_config,
                call.sink,
                trace=call.trace,
                signal=call.signal,
            )
        )
        self._inflight[relay_task] = call.signal

        watchers = [asyncio.create_task(self._watch_deadlines(call.sink))]
        if call.wait_for_disconnect is not None:
            watchers.append(asyncio.create_task(self._watch_disconnect(call)))

        try:
            done, _ = await asyncio.wait({relay_task, *watchers}, return_when=asyncio.FIRST_COMPLETED)
            if relay_task not in done:
                watcher = next(task for task in watchers if task in done)
                message = watcher.result()
                call.signal.trip(ErrorClass.DOWNSTREAM_WRITE_FAILED, message)
                logger.warning("Abandoning relay", stage=Stage.STREAM_RELAY.value, reason=message)
                relay_task.cancel()
            return await self._collect(relay_task, call)
        except asyncio.CancelledError:
            call.signal.trip(None, "Request cancelled")
            relay_task.cancel()
            await asyncio.wait({relay_task})
            if not call.trace.closed:
                await self._relay.reject(self._model_config, call.trace, signal=call.signal)
            raise
        finally:
            self._inflight.pop(relay_task, None)
            for watcher in watchers:
                watcher.cancel()
            await asyncio.gather(*watchers, return_exceptions=True)

    async def _collect(self, relay_task: asyncio.Task, call: RelayCall) -> RequestOutcome:
        try:
            return await relay_task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if call.trace.closed or (current is not None and current.cancelling()):
                raise
            # Cancelled before its first step, so nothing was opened or written
            return await self._relay.reject(self._model_config, call.trace, signal=call.signal)

    async def _watch_deadlines(self, sink: DownstreamSink) -> str:
        loop = asyncio.get_running_loop()
        started_at = loop.time()

        wait_started = getattr(sink, "wait_started", None)
        if wait_started is not None:
            try:
                await asyncio.wait_for(wait_started(), timeout=self._begin_timeout)
            except asyncio.TimeoutError:
                return f"No output within {self._begin_timeout:g}s"

        remaining = self._total_timeout - (loop.time() - started_at)
        await asyncio.sleep(max(0.0, remaining))
        return f"Exchange exceeded {self._total_timeout:g}s"

    @staticmethod
    async def _watch_disconnect(call: RelayCall) -> str:
        await call.wait_for_disconnect()
        mark_broken = getattr(call.sink, "mark_broken", None)
        if mark_broken is not None:
            mark_broken()
        return "Client disconnected"

    # ========================================================================
    # SHUTDOWN
    # ========================================================================

    async def shutdown(self, timeout: float = 5.0) -> None:
        """
        Stop accepting requests and cancel everything in flight.

        Each cancelled relay finalizes as ``cancelled`` before this returns
        (or before ``timeout`` expires).
        """
        self._accepting = False
        tasks = list(self._inflight)
        for task, signal in list(self._inflight.items()):
            signal.trip(None, "Server is shutting down")
            task.cancel()
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)
        logger.info("Request lifecycle coordinator stopped", stage=Stage.FINALIZATION.value, cancelled=len(tasks))

    def get_stats(self) -> dict[str, Any]:
        stats = self._limiter.stats()
        return {
            "active_requests": self.active_requests,
            "accepting": self._accepting,
            "rate_limit": stats.limit,
            "rate_limit_window_seconds": stats.window_seconds,
            "tracked_clients": stats.tracked_keys,
        }
