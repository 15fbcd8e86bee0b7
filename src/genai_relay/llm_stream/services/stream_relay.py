"""
Stream Relay Service - Educational Documentation
=================================================

WHAT IS THE STREAM RELAY?
-------------------------
The StreamRelay owns exactly one chat request from the moment its body has
been parsed until its metrics are folded into the process-wide sink. It
builds the conversation, opens the upstream token stream, copies every
non-empty token to the caller as soon as it arrives, and then reports how
the request ended.

THE RELAY PIPELINE:
-------------------

┌─────────────────────────────────────────────────────────────────┐
│ STAGE 2: MESSAGE CONSTRUCTION          (span: message_construction)
│ - Drop messages with unrecognized roles                         │
│ - Append the final user message                                 │
│ - Prepend the Markdown system prompt when asked for             │
└─────────────────────────────────────────────────────────────────┘
                            ↓
┌─────────────────────────────────────────────────────────────────┐
│ STAGE 4: UPSTREAM OPEN                 (span: model_inference)  │
│ - Blocks until the upstream accepts the request                 │
│ - Failure here is upstream_unavailable                          │
└─────────────────────────────────────────────────────────────────┘
                            ↓
┌─────────────────────────────────────────────────────────────────┐
│ STAGE 5: STREAM RELAY                  (span: stream_relay)     │
│ - First non-empty token: record time-to-first-token once        │
│ - Write each token downstream immediately, in upstream order    │
│ - Count one output token per non-empty delta                    │
└─────────────────────────────────────────────────────────────────┘
                            ↓
┌─────────────────────────────────────────────────────────────────┐
│ STAGE 6: FINALIZATION (exactly once, on every exit path)        │
│ - Fold tokens and latencies into the MetricsSink                │
│ - Annotate and close the root span                              │
│ - Close the upstream stream, even if cancelled meanwhile        │
│ - Return a RequestOutcome                                       │
└─────────────────────────────────────────────────────────────────┘

ERROR CLASSIFICATION:
---------------------
Exceptions are translated into classifications, never passed to the caller:

    InvalidRequestError        → invalid_request          (400)
    UpstreamUnavailableError   → upstream_unavailable     (502)
    UpstreamStreamError        → stream_error             (502)
    DownstreamWriteError       → downstream_write_failed  (no response)
    CancelledError             → cancelled, or the reason the coordinator
                                 tripped on the CancellationSignal

Once a byte has reached the caller the status line is committed, so a later
failure only shows up in metrics and traces; the stream simply stops.

CANCELLATION:
-------------
Every await in the relay (opening upstream, reading the next token, writing
downstream) is a cancellation point. When the coordinator cancels the relay
it first trips the CancellationSignal; the relay then finalizes with that
reason and returns normally. A cancellation nobody announced (process
shutdown) is finalized as ``cancelled`` and re-raised.
"""

import asyncio
import time
import uuid
from collections.abc import Callable
from typing import Any

from genai_relay.core.config.constants import (
    FORMAT_MARKDOWN,
    MARKDOWN_SYSTEM_PROMPT,
    METRIC_ERRORS,
    METRIC_RELAY_REQUESTS,
    METRIC_TOKENS_PER_SECOND,
    OPERATION_CHAT,
    SPAN_MESSAGE_CONSTRUCTION,
    SPAN_MODEL_INFERENCE,
    SPAN_STREAM_RELAY,
    ErrorClass,
    RequestStatus,
    Stage,
)
from genai_relay.core.exceptions import (
    DownstreamWriteError,
    InvalidRequestError,
    RelayError,
    UpstreamStreamError,
    UpstreamUnavailableError,
)
from genai_relay.core.logging import get_logger, get_request_id, log_stage
from genai_relay.core.observability import RequestSpan, RequestTracer
from genai_relay.infrastructure.monitoring import (
    ErrorLogEntry,
    MessageMetrics,
    MetricsSink,
    MetricsSummaryStore,
)
from genai_relay.llm_stream.models import (
    CancellationSignal,
    ChatRequest,
    Conversation,
    ModelConfig,
    RequestMetrics,
    RequestOutcome,
)
from genai_relay.llm_stream.providers import CompletionSource, TokenStream
from genai_relay.streaming.downstream import DownstreamSink

logger = get_logger(__name__)


class StreamRelay:
    """
    Relays one chat completion from a CompletionSource to a DownstreamSink.

    DEPENDENCY INJECTION:
    ---------------------
    The source, metrics sink, tracer and summary store are passed in, so a
    test can run the relay against a scripted source and a private
    Prometheus registry.

    Usage:
        relay = StreamRelay(source, MetricsSink(), RequestTracer())
        outcome = await relay.run(chat_request, ModelConfig(model="llama"), sink)
    """

    def __init__(
        self,
        source: CompletionSource,
        metrics: MetricsSink,
        tracer: RequestTracer | None = None,
        summary: MetricsSummaryStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._source = source
        self._metrics = metrics
        self._tracer = tracer or RequestTracer()
        self._summary = summary
        self._clock = clock
        self._active_relays = 0

        logger.info("StreamRelay initialized", stage=Stage.INITIALIZATION.value, source=source.name)

    @property
    def source(self) -> CompletionSource:
        return self._source

    @property
    def active_relays(self) -> int:
        return self._active_relays

    # ========================================================================
    # STAGE 2: MESSAGE CONSTRUCTION
    # ========================================================================

    @staticmethod
    def wants_markdown(request: ChatRequest, conversation: Conversation) -> bool:
        """
        Whether the caller asked for Markdown output.

        An explicit ``format`` wins; otherwise the last user turn is searched
        for the word "markdown".
        """
        if request.format:
            return request.format.strip().lower() == FORMAT_MARKDOWN
        return FORMAT_MARKDOWN in conversation.last_user_text.lower()

    def build_conversation(self, request: ChatRequest) -> Conversation:
        """
        Normalize an inbound request into the conversation sent upstream.

        Raises:
            InvalidRequestError: nothing usable remains
        """
        conversation = Conversation.from_request(request)
        if not len(conversation):
            raise InvalidRequestError(
                "Request contains no messages",
                details={"received_messages": len(request.messages)},
            ).with_suggestion("Send 'message' or a non-empty 'messages' list")

        if self.wants_markdown(request, conversation):
            conversation = conversation.with_system_prompt(MARKDOWN_SYSTEM_PROMPT)
        return conversation

    # ========================================================================
    # RUN
    # ========================================================================

    async def run(
        self,
        request: ChatRequest,
        model_config: ModelConfig,
        sink: DownstreamSink,
        *,
        trace: RequestSpan | None = None,
        signal: CancellationSignal | None = None,
    ) -> RequestOutcome:
        """
        Relay one request and return how it ended.

        Args:
            request: Parsed inbound body
            model_config: Upstream model and generation parameters
            sink: Where token text is written
            trace: Root span opened by the coordinator (a new one if omitted)
            signal: Cancellation reason shared with the coordinator

        Returns:
            RequestOutcome: terminal status, classification and counts
        """
        metrics = RequestMetrics(model=model_config.model, start_time=self._clock())
        trace = trace or self._tracer.start_request(model_config.model, request_id=get_request_id())
        signal = signal or CancellationSignal()
        stream: TokenStream | None = None
        self._active_relays += 1

        try:
            # STAGE 2: message construction
            with trace.phase(SPAN_MESSAGE_CONSTRUCTION):
                conversation = self.build_conversation(request)
            metrics.tokens_in = conversation.estimate_tokens()
            metrics.input_chars = sum(len(m.content) for m in conversation.messages)

            log_stage(
                logger,
                Stage.MESSAGE_CONSTRUCTION,
                "Conversation built",
                level="debug",
                messages=len(conversation),
                tokens_in=metrics.tokens_in,
            )

            # STAGE 4: open upstream
            metrics.upstream_attempted = True
            with trace.phase(SPAN_MODEL_INFERENCE, **{"model.name": model_config.model}):
                stream = await self._source.open_stream(conversation, model_config)

            # STAGE 5: relay tokens
            with trace.phase(SPAN_STREAM_RELAY):
                async for event in stream:
                    if not event.content:
                        continue
                    now = self._clock()
                    if metrics.mark_first_token(now):
                        trace.record_first_token(now - metrics.start_time)
                    await self._write(sink, event.content)
                    metrics.tokens_out += 1

        except asyncio.CancelledError:
            outcome = await self._finish(metrics, trace, stream, cancelled=True, signal=signal)
            if signal.tripped:
                return outcome
            raise
        except RelayError as exc:
            return await self._finish(metrics, trace, stream, error=exc)
        except Exception as exc:
            logger.exception("Unexpected relay failure", stage=Stage.STREAM_RELAY.value)
            wrapper = UpstreamUnavailableError if stream is None else UpstreamStreamError
            return await self._finish(metrics, trace, stream, error=wrapper.from_exception(exc))
        finally:
            self._active_relays -= 1

        return await self._finish(metrics, trace, stream)

    async def reject(
        self,
        model_config: ModelConfig,
        trace: RequestSpan | None = None,
        *,
        error: RelayError | None = None,
        signal: CancellationSignal | None = None,
    ) -> RequestOutcome:
        """
        Finalize a request that never reached ``run``.

        With ``error`` (e.g. an unparseable body) the request ends with that
        classification; without it, it ends the way ``signal`` says.
        """
        metrics = RequestMetrics(model=model_config.model, start_time=self._clock())
        trace = trace or self._tracer.start_request(model_config.model, request_id=get_request_id())
        return await self._finish(metrics, trace, None, error=error, cancelled=error is None, signal=signal)

    @staticmethod
    async def _write(sink: DownstreamSink, content: str) -> None:
        try:
            await sink.write(content)
        except RelayError:
            raise
        except Exception as exc:
            raise DownstreamWriteError.from_exception(exc, message="Downstream write failed") from exc

    # ========================================================================
    # STAGE 6: FINALIZATION
    # ========================================================================

    async def _finish(
        self,
        metrics: RequestMetrics,
        trace: RequestSpan,
        stream: TokenStream | None,
        *,
        error: RelayError | None = None,
        cancelled: bool = False,
        signal: CancellationSignal | None = None,
    ) -> RequestOutcome:
        outcome = self._finalize(metrics, trace, error=error, cancelled=cancelled, signal=signal)
        if stream is not None:
            await self._close_stream(stream, signal)
        return outcome

    @staticmethod
    async def _close_stream(stream: TokenStream, signal: CancellationSignal | None) -> None:
        """
        Close the upstream stream, letting the close finish even if the relay
        is cancelled meanwhile.

        The outcome is already recorded at this point, so a cancellation the
        coordinator announced on ``signal`` is absorbed; any other
        cancellation propagates once the close is done.
        """
        closing = asyncio.ensure_future(stream.aclose())
        try:
            await asyncio.wait({closing})
        except asyncio.CancelledError:
            await asyncio.wait({closing})
            if signal is None or not signal.tripped:
                raise
        finally:
            if closing.done() and not closing.cancelled() and closing.exception() is not None:
                logger.warning(
                    "Closing upstream stream failed",
                    stage=Stage.FINALIZATION.value,
                    error=str(closing.exception()),
                )

    def _finalize(
        self,
        metrics: RequestMetrics,
        trace: RequestSpan,
        *,
        error: RelayError | None,
        cancelled: bool,
        signal: CancellationSignal | None,
    ) -> RequestOutcome:
        if metrics.outcome is not None:
            return metrics.outcome

        end_time = self._clock()
        duration = max(0.0, end_time - metrics.start_time)
        ttft = metrics.time_to_first_token()
        status, error_class, message = self._classify(error, cancelled, signal)

        outcome = RequestOutcome(
            status=status,
            error_class=error_class,
            tokens_in=metrics.tokens_in,
            tokens_out=metrics.tokens_out,
            duration=duration,
            time_to_first_token=ttft,
            error_message=message,
        )
        metrics.outcome = outcome
        model = metrics.model

        if metrics.upstream_attempted:
            self._metrics.record_inference(
                model,
                metrics.start_time,
                metrics.tokens_in,
                metrics.tokens_out,
                metrics.first_token_time,
                end_time=end_time,
            )
            if duration > 0 and metrics.tokens_out:
                self._metrics.set_gauge(METRIC_TOKENS_PER_SECOND, {"model": model}, metrics.tokens_out / duration)

        self._metrics.increment_counter(METRIC_RELAY_REQUESTS, {"status": outcome.label, "model": model})
        if error_class is not None:
            self._metrics.increment_counter(METRIC_ERRORS, {"type": error_class.value, "operation": OPERATION_CHAT})

        self._record_summary(outcome, metrics)

        if error_class is not None:
            trace.record_error(error if error is not None else (message or error_class.value), error_class.value)
        trace.finish(
            model=model,
            status=outcome.label,
            tokens_in=metrics.tokens_in,
            tokens_out=metrics.tokens_out,
            duration=duration,
            time_to_first_token=ttft,
        )

        log_kwargs: dict[str, Any] = {
            "model": model,
            "status": outcome.label,
            "tokens_in": metrics.tokens_in,
            "tokens_out": metrics.tokens_out,
            "duration_ms": round(duration * 1000, 2),
        }
        if ttft is not None:
            log_kwargs["ttft_ms"] = round(ttft * 1000, 2)
        if error is not None:
            log_kwargs["error"] = error.to_dict()
        level = "info" if error_class is None else "warning"
        log_stage(logger, Stage.FINALIZATION, "Relay finished", level=level, **log_kwargs)

        return outcome

    @staticmethod
    def _classify(
        error: RelayError | None,
        cancelled: bool,
        signal: CancellationSignal | None,
    ) -> tuple[RequestStatus, ErrorClass | None, str | None]:
        if error is not None:
            return RequestStatus.ERROR, error.error_class or ErrorClass.STREAM_ERROR, error.message
        if cancelled:
            reason = signal.reason if signal is not None else None
            message = signal.message if signal is not None else None
            if reason is None:
                return RequestStatus.CANCELLED, None, message
            return RequestStatus.ERROR, reason, message or reason.value
        return RequestStatus.SUCCESS, None, None

    def _record_summary(self, outcome: RequestOutcome, metrics: RequestMetrics) -> None:
        if self._summary is None:
            return
        if outcome.succeeded:
            ttft = outcome.time_to_first_token
            self._summary.record_message(
                MessageMetrics(
                    message_id=get_request_id() or str(uuid.uuid4()),
                    tokens_in=outcome.tokens_in,
                    tokens_out=outcome.tokens_out,
                    response_time_ms=outcome.duration * 1000.0,
                    time_to_first_token_ms=ttft * 1000.0 if ttft is not None else None,
                    timestamp=self._summary.now(),
                )
            )
        elif outcome.error_class is not None:
            self._summary.record_error(
                ErrorLogEntry(
                    error_type=outcome.error_class.value,
                    status_code=outcome.http_status,
                    input_length=metrics.input_chars,
                    timestamp=self._summary.now(),
                )
            )

    def get_stats(self) -> dict[str, Any]:
        return {"active_relays": self._active_relays, "source": self._source.name}
