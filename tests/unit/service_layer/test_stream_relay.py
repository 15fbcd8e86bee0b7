"""
Unit Tests for StreamRelay

Tests the relay pipeline against a scripted FakeCompletionSource:
token forwarding, finalization on every exit path, metrics, spans and the
summary store.
"""

import asyncio

import pytest

from genai_relay.core.config.constants import MARKDOWN_SYSTEM_PROMPT, ErrorClass, RequestStatus
from genai_relay.core.exceptions import InvalidRequestError
from genai_relay.llm_stream.models import CancellationSignal, ChatMessage, ChatRequest, Conversation
from tests.test_fixtures import RecordingSink, RelayTestFactory, RequestFactory, sample

MODEL = {"model": "test-model"}


def relay_count(metrics, status: str) -> float:
    return sample(metrics, "relay_requests_total", {"status": status, **MODEL})


def error_count(metrics, error_type: str) -> float:
    return sample(metrics, "errors_total", {"type": error_type, "operation": "chat"})


@pytest.mark.unit
class TestSuccessfulRelay:
    """Test the happy path."""

    @pytest.mark.asyncio
    async def test_tokens_reach_sink_in_order(self, metrics_sink, model_config, recording_sink):
        relay, source = RelayTestFactory.relay(metrics=metrics_sink)

        outcome = await relay.run(RequestFactory.chat_request(), model_config, recording_sink)

        assert recording_sink.chunks == ["Hello", " ", "world"]
        assert recording_sink.text == "Hello world"
        assert outcome.status is RequestStatus.SUCCESS
        assert outcome.http_status == 200
        assert outcome.tokens_out == 3
        assert source.streams_closed == 1

    @pytest.mark.asyncio
    async def test_empty_deltas_are_skipped(self, metrics_sink, model_config, recording_sink):
        relay, _ = RelayTestFactory.relay(tokens=("", "a", "", "b"), metrics=metrics_sink)

        outcome = await relay.run(RequestFactory.chat_request(), model_config, recording_sink)

        assert recording_sink.chunks == ["a", "b"]
        assert outcome.tokens_out == 2

    @pytest.mark.asyncio
    async def test_inference_metrics_recorded(self, metrics_sink, model_config, recording_sink):
        relay, _ = RelayTestFactory.relay(metrics=metrics_sink)

        outcome = await relay.run(RequestFactory.chat_request(message="12345678"), model_config, recording_sink)

        assert relay_count(metrics_sink, "success") == 1
        assert sample(metrics_sink, "chat_tokens_total", {"direction": "output", **MODEL}) == 3
        assert sample(metrics_sink, "chat_tokens_total", {"direction": "input", **MODEL}) == 2
        assert sample(metrics_sink, "first_token_latency_seconds_count", MODEL) == 1
        assert (
            sample(metrics_sink, "model_latency_seconds_count", {**MODEL, "operation": "inference"}) == 1
        )
        assert outcome.time_to_first_token is not None

    @pytest.mark.asyncio
    async def test_first_token_recorded_once(self, request_tracer, span_exporter, metrics_sink, model_config):
        relay, _ = RelayTestFactory.relay(tokens=("a", "b", "c", "d"), metrics=metrics_sink, tracer=request_tracer)

        await relay.run(RequestFactory.chat_request(), model_config, RecordingSink())

        root = next(s for s in span_exporter.get_finished_spans() if s.name == "chat_request")
        assert [event.name for event in root.events] == ["first_token"]
        assert sample(metrics_sink, "first_token_latency_seconds_count", MODEL) == 1

    @pytest.mark.asyncio
    async def test_spans_cover_every_phase(self, request_tracer, span_exporter, metrics_sink, model_config):
        relay, _ = RelayTestFactory.relay(metrics=metrics_sink, tracer=request_tracer)

        await relay.run(RequestFactory.chat_request(), model_config, RecordingSink())

        spans = {span.name: span for span in span_exporter.get_finished_spans()}
        assert set(spans) == {"chat_request", "message_construction", "model_inference", "stream_relay"}
        root = spans["chat_request"]
        for name in ("message_construction", "model_inference", "stream_relay"):
            assert spans[name].parent.span_id == root.context.span_id
        assert root.attributes["relay.status"] == "success"
        assert root.attributes["tokens.output"] == 3

    @pytest.mark.asyncio
    async def test_summary_store_fed(self, summary_store, metrics_sink, model_config):
        relay, _ = RelayTestFactory.relay(metrics=metrics_sink, summary=summary_store)

        await relay.run(RequestFactory.chat_request(), model_config, RecordingSink())

        summary = summary_store.summary()
        assert summary.total_requests == 1
        assert summary.tokens_generated == 3
        assert summary.error_rate == 0.0

    @pytest.mark.asyncio
    async def test_concurrent_relays_are_all_counted(self, summary_store, metrics_sink, model_config):
        relay, source = RelayTestFactory.relay(
            metrics=metrics_sink, summary=summary_store, token_delay=0.001
        )
        sinks = [RecordingSink() for _ in range(20)]

        outcomes = await asyncio.gather(
            *(relay.run(RequestFactory.chat_request(message="12345678"), model_config, sink) for sink in sinks)
        )

        assert all(outcome.succeeded for outcome in outcomes)
        assert all(sink.text == "Hello world" for sink in sinks)
        assert relay_count(metrics_sink, "success") == 20
        assert sample(metrics_sink, "chat_tokens_total", {"direction": "output", **MODEL}) == 60
        assert sample(metrics_sink, "chat_tokens_total", {"direction": "input", **MODEL}) == 40
        assert source.streams_closed == 20
        assert summary_store.summary().total_requests == 20
        assert summary_store.summary().tokens_generated == 60
        assert relay.active_relays == 0


@pytest.mark.unit
class TestMessageConstruction:
    """Test conversation building and the Markdown system prompt."""

    @pytest.mark.asyncio
    async def test_explicit_markdown_format(self, metrics_sink, model_config):
        relay, source = RelayTestFactory.relay(metrics=metrics_sink)

        await relay.run(RequestFactory.chat_request(message="Hi", format="markdown"), model_config, RecordingSink())

        conversation, _ = source.requests[0]
        assert conversation.messages[0].role == "system"
        assert conversation.messages[0].content == MARKDOWN_SYSTEM_PROMPT
        assert conversation.messages[-1].content == "Hi"

    @pytest.mark.asyncio
    async def test_markdown_mentioned_in_last_user_turn(self, metrics_sink, model_config):
        relay, source = RelayTestFactory.relay(metrics=metrics_sink)

        await relay.run(
            RequestFactory.chat_request(message="Answer in Markdown please"), model_config, RecordingSink()
        )

        conversation, _ = source.requests[0]
        assert conversation.messages[0].role == "system"

    @pytest.mark.asyncio
    async def test_explicit_format_overrides_mention(self, metrics_sink, model_config):
        relay, source = RelayTestFactory.relay(metrics=metrics_sink)

        await relay.run(
            RequestFactory.chat_request(message="What is markdown?", format="text"), model_config, RecordingSink()
        )

        conversation, _ = source.requests[0]
        assert [m.role for m in conversation.messages] == ["user"]

    def test_wants_markdown(self):
        request = RequestFactory.chat_request(message="plain")

        assert not RelayTestFactory.relay()[0].wants_markdown(request, Conversation.from_request(request))

    def test_build_conversation_rejects_empty(self):
        relay, _ = RelayTestFactory.relay()
        request = ChatRequest(messages=[ChatMessage(role="narrator", content="Once")])

        with pytest.raises(InvalidRequestError):
            relay.build_conversation(request)


@pytest.mark.unit
class TestFailedRelay:
    """Test each failure path ends with the right classification."""

    @pytest.mark.asyncio
    async def test_empty_conversation_is_invalid(self, metrics_sink, model_config, recording_sink):
        relay, source = RelayTestFactory.relay(metrics=metrics_sink)

        outcome = await relay.run(RequestFactory.chat_request(message=None), model_config, recording_sink)

        assert outcome.error_class is ErrorClass.INVALID_REQUEST
        assert outcome.http_status == 400
        assert source.requests == []
        assert relay_count(metrics_sink, "invalid_request") == 1
        assert error_count(metrics_sink, "invalid_request") == 1
        # Upstream never contacted, so no inference is recorded
        assert sample(metrics_sink, "model_latency_seconds_count", {**MODEL, "operation": "inference"}) == 0

    @pytest.mark.asyncio
    async def test_upstream_unavailable(self, metrics_sink, model_config, recording_sink):
        relay, _ = RelayTestFactory.relay(metrics=metrics_sink, fail_on_open=True)

        outcome = await relay.run(RequestFactory.chat_request(), model_config, recording_sink)

        assert outcome.error_class is ErrorClass.UPSTREAM_UNAVAILABLE
        assert outcome.http_status == 502
        assert recording_sink.chunks == []
        assert relay_count(metrics_sink, "upstream_unavailable") == 1
        assert sample(metrics_sink, "model_latency_seconds_count", {**MODEL, "operation": "inference"}) == 1
        assert sample(metrics_sink, "first_token_latency_seconds_count", MODEL) == 0

    @pytest.mark.asyncio
    async def test_mid_stream_failure(self, metrics_sink, model_config, recording_sink):
        relay, source = RelayTestFactory.relay(metrics=metrics_sink, fail_after=2)

        outcome = await relay.run(RequestFactory.chat_request(), model_config, recording_sink)

        assert outcome.error_class is ErrorClass.STREAM_ERROR
        assert recording_sink.chunks == ["Hello", " "]
        assert outcome.tokens_out == 2
        assert source.streams_closed == 1
        assert error_count(metrics_sink, "stream_error") == 1

    @pytest.mark.asyncio
    async def test_downstream_failure_stops_upstream(self, request_tracer, span_exporter, metrics_sink, model_config):
        relay, source = RelayTestFactory.relay(
            tokens=[f"t{i}" for i in range(10)], metrics=metrics_sink, tracer=request_tracer
        )
        sink = RecordingSink(fail_after=3)

        outcome = await relay.run(RequestFactory.chat_request(), model_config, sink)

        assert outcome.error_class is ErrorClass.DOWNSTREAM_WRITE_FAILED
        assert outcome.http_status is None
        assert sink.chunks == ["t0", "t1", "t2"]
        assert outcome.tokens_out == 3
        assert source.events_pulled == 4
        assert source.streams_closed == 1
        assert relay_count(metrics_sink, "downstream_write_failed") == 1
        assert error_count(metrics_sink, "downstream_write_failed") == 1
        root = next(s for s in span_exporter.get_finished_spans() if s.name == "chat_request")
        assert root.attributes["error"] is True
        assert root.attributes["error.class"] == "downstream_write_failed"
        assert root.attributes["relay.status"] == "downstream_write_failed"

    @pytest.mark.asyncio
    async def test_failure_feeds_summary_error_rate(self, summary_store, metrics_sink, model_config):
        relay, _ = RelayTestFactory.relay(metrics=metrics_sink, summary=summary_store, fail_on_open=True)

        await relay.run(RequestFactory.chat_request(), model_config, RecordingSink())

        summary = summary_store.summary()
        assert summary.total_requests == 0
        assert summary.error_rate == 1.0

    @pytest.mark.asyncio
    async def test_failed_root_span_carries_error(self, request_tracer, span_exporter, metrics_sink, model_config):
        relay, _ = RelayTestFactory.relay(metrics=metrics_sink, tracer=request_tracer, fail_after=1)

        await relay.run(RequestFactory.chat_request(), model_config, RecordingSink())

        root = next(s for s in span_exporter.get_finished_spans() if s.name == "chat_request")
        assert root.attributes["error"] is True
        assert root.attributes["error.class"] == "stream_error"
        assert root.attributes["relay.status"] == "stream_error"

    @pytest.mark.asyncio
    async def test_reject_with_error(self, metrics_sink, model_config):
        relay, _ = RelayTestFactory.relay(metrics=metrics_sink)

        outcome = await relay.reject(model_config, error=InvalidRequestError("Invalid request body"))

        assert outcome.error_class is ErrorClass.INVALID_REQUEST
        assert relay_count(metrics_sink, "invalid_request") == 1


@pytest.mark.unit
class TestRelayCancellation:
    """Test cancellation with and without an announced reason."""

    @pytest.mark.asyncio
    async def test_announced_cancellation_returns_outcome(self, metrics_sink, model_config, recording_sink):
        relay, source = RelayTestFactory.relay(tokens=["a"] * 50, metrics=metrics_sink, token_delay=0.01)
        signal = CancellationSignal()

        task = asyncio.create_task(
            relay.run(RequestFactory.chat_request(), model_config, recording_sink, signal=signal)
        )
        await recording_sink.wait_started()
        signal.trip(ErrorClass.DOWNSTREAM_WRITE_FAILED, "Client disconnected")
        task.cancel()
        outcome = await task

        assert outcome.error_class is ErrorClass.DOWNSTREAM_WRITE_FAILED
        assert outcome.error_message == "Client disconnected"
        assert source.streams_closed == 1
        assert relay.active_relays == 0

    @pytest.mark.asyncio
    async def test_unannounced_cancellation_is_cancelled(self, metrics_sink, model_config, recording_sink):
        relay, _ = RelayTestFactory.relay(tokens=["a"] * 50, metrics=metrics_sink, token_delay=0.01)

        task = asyncio.create_task(relay.run(RequestFactory.chat_request(), model_config, recording_sink))
        await recording_sink.wait_started()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert relay_count(metrics_sink, "cancelled") == 1
        assert sample(metrics_sink, "errors_total", {"type": "cancelled", "operation": "chat"}) == 0

    @pytest.mark.asyncio
    async def test_cancellation_during_close_keeps_outcome(self, metrics_sink, model_config, recording_sink):
        relay, source = RelayTestFactory.relay(tokens=["a", "b", "c"], metrics=metrics_sink, close_delay=0.3)
        signal = CancellationSignal()

        task = asyncio.create_task(
            relay.run(RequestFactory.chat_request(), model_config, recording_sink, signal=signal)
        )
        while relay_count(metrics_sink, "success") == 0:
            await asyncio.sleep(0.01)
        signal.trip(ErrorClass.DOWNSTREAM_WRITE_FAILED, "Exchange exceeded 0.1s")
        task.cancel()
        outcome = await task

        assert outcome.status is RequestStatus.SUCCESS
        assert outcome.tokens_out == 3
        assert source.streams_closed == 1
        assert relay_count(metrics_sink, "downstream_write_failed") == 0
        assert sample(metrics_sink, "chat_tokens_total", {"direction": "output", **MODEL}) == 3

    @pytest.mark.asyncio
    async def test_unannounced_cancellation_during_close_waits_for_close(
        self, metrics_sink, model_config, recording_sink
    ):
        relay, source = RelayTestFactory.relay(tokens=["a", "b", "c"], metrics=metrics_sink, close_delay=0.1)

        task = asyncio.create_task(relay.run(RequestFactory.chat_request(), model_config, recording_sink))
        while relay_count(metrics_sink, "success") == 0:
            await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert source.streams_closed == 1
        assert relay_count(metrics_sink, "success") == 1
        assert relay_count(metrics_sink, "cancelled") == 0
