"""
Unit Tests for RequestLifecycleCoordinator

Tests admission, deadlines, disconnects and shutdown around a relay that
replays a scripted FakeCompletionSource.
"""

import asyncio

import pytest

from genai_relay.core.config.constants import ErrorClass, RequestStatus
from genai_relay.core.exceptions import DownstreamWriteError
from genai_relay.llm_stream.models import ModelConfig
from genai_relay.streaming.request_lifecycle import InboundRequest
from tests.test_fixtures import RecordingSink, RelayTestFactory, RequestFactory, sample


def relay_count(metrics, status: str) -> float:
    return sample(metrics, "relay_requests_total", {"status": status, "model": "test-model"})


@pytest.mark.unit
class TestAdmission:
    """Test rate limiting in front of the relay."""

    @pytest.mark.asyncio
    async def test_admitted_request_streams(self, metrics_sink, summary_store, recording_sink):
        relay, _ = RelayTestFactory.relay(metrics=metrics_sink)
        coordinator = RelayTestFactory.coordinator(relay, metrics_sink, summary=summary_store)

        outcome = await coordinator.handle(RequestFactory.inbound(), recording_sink)

        assert outcome.status is RequestStatus.SUCCESS
        assert recording_sink.text == "Hello world"
        assert coordinator.active_requests == 0
        assert summary_store.summary().active_users == 1

    @pytest.mark.asyncio
    async def test_sixty_first_request_in_window_is_rejected(self, metrics_sink, fake_clock):
        relay, source = RelayTestFactory.relay(tokens=("ok",), metrics=metrics_sink)
        coordinator = RelayTestFactory.coordinator(relay, metrics_sink, limit=60, limiter_clock=fake_clock)

        for _ in range(60):
            outcome = await coordinator.handle(RequestFactory.inbound(), RecordingSink())
            assert outcome.succeeded

        sink = RecordingSink()
        outcome = await coordinator.handle(RequestFactory.inbound(), sink)

        assert outcome.error_class is ErrorClass.RATE_LIMITED
        assert outcome.http_status == 429
        assert sink.chunks == []
        assert len(source.requests) == 60
        assert sample(metrics_sink, "errors_total", {"type": "rate_limit", "operation": "api"}) == 1

    @pytest.mark.asyncio
    async def test_window_slides(self, metrics_sink, fake_clock):
        relay, _ = RelayTestFactory.relay(tokens=("ok",), metrics=metrics_sink)
        coordinator = RelayTestFactory.coordinator(relay, metrics_sink, limit=2, limiter_clock=fake_clock)

        await coordinator.handle(RequestFactory.inbound(), RecordingSink())
        await coordinator.handle(RequestFactory.inbound(), RecordingSink())
        rejected = await coordinator.handle(RequestFactory.inbound(), RecordingSink())
        fake_clock.advance(60.0)
        admitted = await coordinator.handle(RequestFactory.inbound(), RecordingSink())

        assert rejected.error_class is ErrorClass.RATE_LIMITED
        assert admitted.succeeded

    @pytest.mark.asyncio
    async def test_clients_are_limited_independently(self, metrics_sink, fake_clock):
        relay, _ = RelayTestFactory.relay(tokens=("ok",), metrics=metrics_sink)
        coordinator = RelayTestFactory.coordinator(relay, metrics_sink, limit=1, limiter_clock=fake_clock)

        first = await coordinator.handle(RequestFactory.inbound(client_key="user:a"), RecordingSink())
        second = await coordinator.handle(RequestFactory.inbound(client_key="user:b"), RecordingSink())

        assert first.succeeded and second.succeeded

    @pytest.mark.asyncio
    async def test_rejected_request_body_is_never_read(self, metrics_sink, fake_clock):
        relay, source = RelayTestFactory.relay(tokens=("ok",), metrics=metrics_sink)
        coordinator = RelayTestFactory.coordinator(relay, metrics_sink, limit=1, limiter_clock=fake_clock)
        reads = []

        async def read_body() -> bytes:
            reads.append(1)
            return RequestFactory.body()

        admitted = await coordinator.handle(
            InboundRequest(client_key="user:test", request_id="req-1", read_body=read_body), RecordingSink()
        )
        rejected = await coordinator.handle(
            InboundRequest(client_key="user:test", request_id="req-2", read_body=read_body), RecordingSink()
        )

        assert admitted.succeeded
        assert rejected.error_class is ErrorClass.RATE_LIMITED
        assert len(reads) == 1
        assert len(source.requests) == 1

    @pytest.mark.asyncio
    async def test_body_read_failure_is_downstream_failure(self, metrics_sink):
        relay, source = RelayTestFactory.relay(metrics=metrics_sink)
        coordinator = RelayTestFactory.coordinator(relay, metrics_sink)

        async def read_body() -> bytes:
            raise DownstreamWriteError("Client disconnected")

        outcome = await coordinator.handle(
            InboundRequest(client_key="user:test", request_id="req-1", read_body=read_body), RecordingSink()
        )

        assert outcome.error_class is ErrorClass.DOWNSTREAM_WRITE_FAILED
        assert outcome.error_message == "Client disconnected"
        assert source.requests == []
        assert relay_count(metrics_sink, "downstream_write_failed") == 1
        assert coordinator.active_requests == 0


@pytest.mark.unit
class TestRequestParsing:
    """Test malformed bodies are finalized like any other request."""

    @pytest.mark.asyncio
    async def test_invalid_json_is_invalid_request(self, metrics_sink, request_tracer, span_exporter):
        relay, source = RelayTestFactory.relay(metrics=metrics_sink, tracer=request_tracer)
        coordinator = RelayTestFactory.coordinator(relay, metrics_sink, tracer=request_tracer)

        outcome = await coordinator.handle(RequestFactory.inbound(body=b"{not json"), RecordingSink())

        assert outcome.error_class is ErrorClass.INVALID_REQUEST
        assert outcome.http_status == 400
        assert source.requests == []
        assert relay_count(metrics_sink, "invalid_request") == 1
        roots = [s for s in span_exporter.get_finished_spans() if s.name == "chat_request"]
        assert len(roots) == 1
        assert roots[0].attributes["request.id"] == "req-1"

    @pytest.mark.asyncio
    async def test_wrong_shape_is_invalid_request(self, metrics_sink):
        relay, _ = RelayTestFactory.relay(metrics=metrics_sink)
        coordinator = RelayTestFactory.coordinator(relay, metrics_sink)

        outcome = await coordinator.handle(RequestFactory.inbound(body=b'{"messages": "hi"}'), RecordingSink())

        assert outcome.error_class is ErrorClass.INVALID_REQUEST


@pytest.mark.unit
class TestDeadlines:
    """Test the begin and total deadlines."""

    @pytest.mark.asyncio
    async def test_no_first_byte_before_begin_deadline(self, metrics_sink):
        relay, source = RelayTestFactory.relay(metrics=metrics_sink, open_delay=5.0)
        coordinator = RelayTestFactory.coordinator(relay, metrics_sink, begin_timeout=0.05, total_timeout=10.0)
        sink = RecordingSink()

        outcome = await coordinator.handle(RequestFactory.inbound(), sink)

        assert outcome.error_class is ErrorClass.DOWNSTREAM_WRITE_FAILED
        assert outcome.error_message.startswith("No output")
        assert sink.chunks == []
        assert relay_count(metrics_sink, "downstream_write_failed") == 1
        assert coordinator.active_requests == 0

    @pytest.mark.asyncio
    async def test_total_deadline_stops_long_stream(self, metrics_sink):
        relay, source = RelayTestFactory.relay(tokens=["a"] * 200, metrics=metrics_sink, token_delay=0.01)
        coordinator = RelayTestFactory.coordinator(relay, metrics_sink, begin_timeout=1.0, total_timeout=0.1)
        sink = RecordingSink()

        outcome = await coordinator.handle(RequestFactory.inbound(), sink)

        assert outcome.error_class is ErrorClass.DOWNSTREAM_WRITE_FAILED
        assert outcome.error_message.startswith("Exchange exceeded")
        assert 0 < len(sink.chunks) < 200
        assert source.streams_closed == 1

    @pytest.mark.asyncio
    async def test_deadline_during_slow_close_keeps_accounting(self, metrics_sink, request_tracer, span_exporter):
        relay, source = RelayTestFactory.relay(
            tokens=["a", "b", "c"], metrics=metrics_sink, tracer=request_tracer, close_delay=0.3
        )
        coordinator = RelayTestFactory.coordinator(
            relay, metrics_sink, tracer=request_tracer, begin_timeout=1.0, total_timeout=0.1
        )
        sink = RecordingSink()

        outcome = await coordinator.handle(RequestFactory.inbound(), sink)

        assert outcome.status is RequestStatus.SUCCESS
        assert outcome.tokens_out == 3
        assert sink.text == "abc"
        assert source.streams_closed == 1
        assert relay_count(metrics_sink, "success") == 1
        assert relay_count(metrics_sink, "downstream_write_failed") == 0
        assert sample(metrics_sink, "chat_tokens_total", {"direction": "output", "model": "test-model"}) == 3
        roots = [s for s in span_exporter.get_finished_spans() if s.name == "chat_request"]
        assert len(roots) == 1
        assert roots[0].attributes["relay.status"] == "success"


@pytest.mark.unit
class TestDisconnect:
    """Test a client disconnect abandons the relay."""

    @pytest.mark.asyncio
    async def test_disconnect_cancels_relay(self, metrics_sink):
        relay, source = RelayTestFactory.relay(tokens=["a"] * 200, metrics=metrics_sink, token_delay=0.01)
        coordinator = RelayTestFactory.coordinator(relay, metrics_sink)
        sink = RecordingSink()
        disconnected = asyncio.Event()

        task = asyncio.create_task(coordinator.handle(RequestFactory.inbound(), sink, disconnected.wait))
        await sink.wait_started()
        disconnected.set()
        outcome = await task

        assert outcome.error_class is ErrorClass.DOWNSTREAM_WRITE_FAILED
        assert outcome.error_message == "Client disconnected"
        assert sink.broken
        assert source.streams_closed == 1
        assert source.events_pulled < 200


@pytest.mark.unit
class TestShutdown:
    """Test in-flight requests end as cancelled."""

    @pytest.mark.asyncio
    async def test_shutdown_cancels_inflight(self, metrics_sink):
        relay, source = RelayTestFactory.relay(tokens=["a"] * 200, metrics=metrics_sink, token_delay=0.01)
        coordinator = RelayTestFactory.coordinator(relay, metrics_sink)
        sink = RecordingSink()

        task = asyncio.create_task(coordinator.handle(RequestFactory.inbound(), sink))
        await sink.wait_started()
        await coordinator.shutdown()
        outcome = await task

        assert outcome.status is RequestStatus.CANCELLED
        assert outcome.http_status is None
        assert relay_count(metrics_sink, "cancelled") == 1
        assert source.streams_closed == 1
        assert not coordinator.accepting

    @pytest.mark.asyncio
    async def test_requests_after_shutdown_are_cancelled(self, metrics_sink):
        relay, source = RelayTestFactory.relay(metrics=metrics_sink)
        coordinator = RelayTestFactory.coordinator(relay, metrics_sink)
        await coordinator.shutdown()

        outcome = await coordinator.handle(RequestFactory.inbound(), RecordingSink())

        assert outcome.status is RequestStatus.CANCELLED
        assert source.requests == []

    @pytest.mark.asyncio
    async def test_cancelled_handler_finalizes_once(self, metrics_sink, request_tracer, span_exporter):
        relay, _ = RelayTestFactory.relay(
            tokens=["a"] * 200, metrics=metrics_sink, tracer=request_tracer, token_delay=0.01
        )
        coordinator = RelayTestFactory.coordinator(relay, metrics_sink, tracer=request_tracer)
        sink = RecordingSink()

        task = asyncio.create_task(coordinator.handle(RequestFactory.inbound(), sink))
        await sink.wait_started()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert relay_count(metrics_sink, "cancelled") == 1
        roots = [s for s in span_exporter.get_finished_spans() if s.name == "chat_request"]
        assert len(roots) == 1
        assert roots[0].attributes["relay.status"] == "cancelled"
        assert coordinator.active_requests == 0

    def test_stats(self, metrics_sink):
        relay, _ = RelayTestFactory.relay(metrics=metrics_sink)
        coordinator = RelayTestFactory.coordinator(relay, metrics_sink, model_config=ModelConfig(model="m"), limit=5)

        stats = coordinator.get_stats()

        assert stats["accepting"] is True
        assert stats["rate_limit"] == 5
        assert stats["active_requests"] == 0
        assert coordinator.relay is relay
        assert relay.get_stats() == {"active_relays": 0, "source": "fake"}
