"""Tests for BatchSender."""

import asyncio
import json
from unittest.mock import AsyncMock, call

import httpx
import pytest

from telemetry_sdk.models import MetricEvent
from telemetry_sdk.transport import BatchSender, DeliveryResult

BATCH_URL = "https://collector.test/events/batch"
SUCCESS_URL = "https://collector.test/events/success"


async def _eventually(predicate, timeout: float = 1.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


def _ids(events: list[dict]) -> list[str]:
    return [e["event_id"] for e in events]


class TestSendChunkRetry:
    """Tests for per-chunk delivery and retry."""

    @pytest.mark.asyncio
    async def test_retries_until_success(self, sender, make_event, fake_sleep, respx_mock):
        """Test 500, 500, 200 gives exactly 3 POSTs and a delivered chunk."""
        route = respx_mock.post(BATCH_URL).mock(
            side_effect=[httpx.Response(500), httpx.Response(500), httpx.Response(200)]
        )

        result = await sender.send_chunk([make_event(1)])

        assert result is DeliveryResult.DELIVERED
        assert route.call_count == 3
        assert sender.stats.events_sent == 1
        assert fake_sleep.await_args_list == [call(0.01), call(0.02)]

    @pytest.mark.asyncio
    async def test_permanent_5xx_dropped(self, sender, make_event, respx_mock):
        """Test 503 on every attempt gives exactly 3 POSTs and no exception."""
        route = respx_mock.post(BATCH_URL).mock(return_value=httpx.Response(503))

        result = await sender.send_chunk([make_event(1)])

        assert result is DeliveryResult.FAILED
        assert route.call_count == 3
        assert sender.stats.events_failed == 1

    @pytest.mark.asyncio
    async def test_4xx_not_retried(self, sender, make_event, fake_sleep, respx_mock):
        """Test a 400 gives exactly 1 POST."""
        route = respx_mock.post(BATCH_URL).mock(
            return_value=httpx.Response(400, text="bad payload")
        )

        result = await sender.send_chunk([make_event(1)])

        assert result is DeliveryResult.REJECTED
        assert route.call_count == 1
        assert sender.stats.events_rejected == 1
        fake_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_network_error_retried(self, sender, make_event, respx_mock):
        """Test that transport errors count as retryable."""
        route = respx_mock.post(BATCH_URL).mock(
            side_effect=[httpx.ConnectError("down"), httpx.Response(202)]
        )

        assert await sender.send_chunk([make_event(1)]) is DeliveryResult.DELIVERED
        assert route.call_count == 2

    @pytest.mark.asyncio
    async def test_request_shape(self, sender, make_event, respx_mock):
        """Test URL, API key header and flat events body."""
        route = respx_mock.post(BATCH_URL).mock(return_value=httpx.Response(200))

        await sender.send_chunk([make_event(1), make_event(2)])

        request = route.calls.last.request
        assert request.headers["X-API-Key"] == "test-key"
        assert request.headers["Content-Type"] == "application/json"
        body = json.loads(request.content)
        assert _ids(body["events"]) == ["evt-1", "evt-2"]
        assert body["events"][0]["type"] == "message"

    @pytest.mark.asyncio
    async def test_flush_never_raises(self, sender, make_event, respx_mock):
        """Test that a failing collector is invisible to the caller of flush()."""
        respx_mock.post(BATCH_URL).mock(side_effect=httpx.ConnectError("down"))
        sender.add_event(make_event(1))

        await sender.flush()

        assert len(sender) == 0
        assert sender.stats.events_failed == 1

    @pytest.mark.asyncio
    async def test_closed_client(self, config, fake_sleep, make_event):
        """Test a closed HTTP client drops the chunk without retrying or raising."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        bs = BatchSender(config, client=client, sleep=fake_sleep)
        await bs.start()
        await client.aclose()

        result = await bs.send_chunk([make_event(1)])

        assert result is DeliveryResult.FAILED
        assert bs.stats.events_failed == 1
        fake_sleep.assert_not_awaited()
        await bs.shutdown()

    def test_not_started(self, config, make_event):
        """Test that sending without a client drops the chunk."""
        bs = BatchSender(config)
        assert asyncio.run(bs.send_chunk([make_event(1)])) is DeliveryResult.FAILED


class TestBackoff:
    """Tests for backoff_delay()."""

    def test_exponential_and_capped(self, config):
        """Test base * 2**attempt capped at retry_max_delay."""
        bs = BatchSender(config.with_overrides(retry_delay=1.0, retry_max_delay=30.0))
        assert [bs.backoff_delay(n) for n in range(7)] == [1, 2, 4, 8, 16, 30, 30]


class TestFlush:
    """Tests for flush() and buffering."""

    @pytest.mark.asyncio
    async def test_empty_flush_is_noop(self, sender, respx_mock):
        """Test that flushing nothing makes no request."""
        await sender.flush()
        assert respx_mock.calls.call_count == 0
        assert sender.stats.flushes == 0

    @pytest.mark.asyncio
    async def test_chunks_in_insertion_order(
        self, config, http_client, fake_sleep, make_event, respx_mock, posted_events
    ):
        """Test batch_size=2 with 5 events gives POSTs of 2, 2 and 1 in order."""
        route = respx_mock.post(BATCH_URL).mock(return_value=httpx.Response(200))
        bs = BatchSender(config.with_overrides(batch_size=2), client=http_client, sleep=fake_sleep)
        await bs.start()
        for n in range(5):
            bs.add_event(make_event(n))

        await bs.flush()
        await bs.shutdown()

        bodies = posted_events(route)
        assert [len(b) for b in bodies] == [2, 2, 1]
        assert [_ids(b) for b in bodies] == [
            ["evt-0", "evt-1"],
            ["evt-2", "evt-3"],
            ["evt-4"],
        ]

    @pytest.mark.asyncio
    async def test_capacity_triggers_flush(
        self, config, http_client, fake_sleep, make_event, respx_mock, posted_events
    ):
        """Test reaching max_buffer_size flushes without the timer."""
        route = respx_mock.post(BATCH_URL).mock(return_value=httpx.Response(200))
        bs = BatchSender(
            config.with_overrides(max_buffer_size=3), client=http_client, sleep=fake_sleep
        )
        await bs.start()

        bs.add_event(make_event(0))
        bs.add_event(make_event(1))
        await asyncio.sleep(0.01)
        assert route.call_count == 0

        bs.add_event(make_event(2))
        await _eventually(lambda: route.call_count == 1)
        await bs.shutdown()

        assert _ids(posted_events(route)[0]) == ["evt-0", "evt-1", "evt-2"]

    @pytest.mark.asyncio
    async def test_single_flight(self, config, fake_sleep, make_event):
        """Test a second flush during an in-flight one is a no-op."""
        requests: list[httpx.Request] = []
        entered = asyncio.Event()
        release = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            entered.set()
            await release.wait()
            return httpx.Response(200)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        bs = BatchSender(config, client=client, sleep=fake_sleep)
        await bs.start()
        bs.add_event(make_event(1))
        bs.add_event(make_event(2))

        first = asyncio.create_task(bs.flush())
        await asyncio.wait_for(entered.wait(), 1)
        assert bs.is_flushing

        await bs.flush()
        assert len(requests) == 1

        # Events added mid-flight go to the next cycle
        bs.add_event(make_event(3))
        assert len(bs) == 1

        release.set()
        await first
        assert len(requests) == 1
        assert _ids(json.loads(requests[0].content)["events"]) == ["evt-1", "evt-2"]

        await bs.flush()
        assert len(requests) == 2
        assert _ids(json.loads(requests[1].content)["events"]) == ["evt-3"]

        await bs.shutdown()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_metrics_appended(
        self, config, http_client, fake_sleep, make_event, respx_mock, posted_events
    ):
        """Test that the metrics snapshot rides along with buffered events."""
        route = respx_mock.post(BATCH_URL).mock(return_value=httpx.Response(200))
        metric = MetricEvent(
            event_id="m-1",
            timestamp="2024-01-01T00:00:00+00:00",
            environment="test",
            project_id="proj-1",
            name="http_requests_total",
            metric_name="http_requests",
            value=1.0,
        )
        source = AsyncMock(return_value=[metric])
        bs = BatchSender(config, client=http_client, metrics_source=source, sleep=fake_sleep)
        await bs.start()
        bs.add_event(make_event(1))

        await bs.flush()
        await bs.shutdown()

        assert _ids(posted_events(route)[0]) == ["evt-1", "m-1"]

    @pytest.mark.asyncio
    async def test_metrics_failure_does_not_block_events(
        self, config, http_client, fake_sleep, make_event, respx_mock, posted_events
    ):
        """Test a raising metrics source is logged and skipped."""
        route = respx_mock.post(BATCH_URL).mock(return_value=httpx.Response(200))
        source = AsyncMock(side_effect=RuntimeError("registry broken"))
        bs = BatchSender(config, client=http_client, metrics_source=source, sleep=fake_sleep)
        await bs.start()
        bs.add_event(make_event(1))

        await bs.flush()
        await bs.shutdown()

        assert _ids(posted_events(route)[0]) == ["evt-1"]

    @pytest.mark.asyncio
    async def test_timer_ships_metrics_when_idle(
        self, config, http_client, fake_sleep, respx_mock, posted_events
    ):
        """Test the periodic tick sends a metrics-only batch when nothing is buffered."""
        route = respx_mock.post(BATCH_URL).mock(return_value=httpx.Response(200))
        metric = MetricEvent(
            event_id="m-1",
            timestamp="2024-01-01T00:00:00+00:00",
            environment="test",
            project_id="proj-1",
            name="g",
            metric_name="g",
            value=2.0,
        )
        bs = BatchSender(
            config.with_overrides(flush_interval=0.01),
            client=http_client,
            metrics_source=AsyncMock(return_value=[metric]),
            sleep=fake_sleep,
        )
        await bs.start()
        await _eventually(lambda: route.call_count >= 1)
        await bs.shutdown()

        assert _ids(posted_events(route)[0]) == ["m-1"]

    @pytest.mark.asyncio
    async def test_threadsafe_add(self, sender, make_event, respx_mock):
        """Test events handed over from a worker thread reach the buffer."""
        route = respx_mock.post(BATCH_URL).mock(return_value=httpx.Response(200))

        await asyncio.to_thread(sender.add_event_threadsafe, make_event(1))
        await _eventually(lambda: len(sender) == 1)

        await sender.flush()
        assert route.call_count == 1


class TestHardLimit:
    """Tests for the buffer hard limit."""

    def test_oldest_evicted(self, config, make_event):
        """Test that the buffer never exceeds buffer_hard_limit."""
        bs = BatchSender(config.with_overrides(max_buffer_size=5, buffer_hard_limit=5))
        for n in range(8):
            bs.add_event(make_event(n))

        assert len(bs) == 5
        assert bs.stats.events_evicted == 3
        assert [e.event_id for e in bs._buffer] == [f"evt-{n}" for n in range(3, 8)]


class TestShutdown:
    """Tests for shutdown()."""

    @pytest.mark.asyncio
    async def test_drains_buffer(
        self, config, http_client, fake_sleep, make_event, respx_mock, posted_events
    ):
        """Test all buffered events are sent exactly once before shutdown returns."""
        route = respx_mock.post(BATCH_URL).mock(return_value=httpx.Response(200))
        bs = BatchSender(config.with_overrides(batch_size=3), client=http_client, sleep=fake_sleep)
        await bs.start()
        for n in range(7):
            bs.add_event(make_event(n))

        await bs.shutdown()

        sent = [event_id for body in posted_events(route) for event_id in _ids(body)]
        assert sent == [f"evt-{n}" for n in range(7)]
        assert len(bs) == 0
        assert not bs.is_running

    @pytest.mark.asyncio
    async def test_owned_client_closed(self, config):
        """Test that a sender-created client is closed on shutdown."""
        bs = BatchSender(config)
        await bs.start()
        client = bs._client

        await bs.shutdown()

        assert client.is_closed

    @pytest.mark.asyncio
    async def test_waits_for_timer_flush(self, config, fake_sleep, make_event):
        """Test shutdown during a timer-driven flush still delivers every chunk of it."""
        requests: list[httpx.Request] = []
        entered = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            entered.set()
            await asyncio.sleep(0.05)
            return httpx.Response(200)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        bs = BatchSender(
            config.with_overrides(flush_interval=0.01, batch_size=2),
            client=client,
            sleep=fake_sleep,
        )
        await bs.start()
        for n in range(5):
            bs.add_event(make_event(n))

        await asyncio.wait_for(entered.wait(), 1)
        await bs.shutdown()

        assert bs.stats.events_sent == 5
        assert bs.stats.events_failed == 0
        sent = [
            event_id
            for request in requests
            for event_id in _ids(json.loads(request.content)["events"])
        ]
        assert sent == [f"evt-{n}" for n in range(5)]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_waits_for_threadsafe_signal(self, config, fake_sleep):
        """Test a success signal scheduled from a worker thread completes before shutdown returns."""
        completed: list[str] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.05)
            completed.append(json.loads(request.content)["fingerprint"])
            return httpx.Response(200)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        bs = BatchSender(config, client=client, sleep=fake_sleep)
        await bs.start()

        await asyncio.to_thread(bs.schedule_success_signal, "fp", {})
        await bs.shutdown()

        assert completed == ["fp"]
        await client.aclose()


class TestSuccessSignal:
    """Tests for send_success_signal()."""

    @pytest.mark.asyncio
    async def test_posts_resolution_hint(self, sender, respx_mock):
        """Test body and endpoint of a success signal."""
        route = respx_mock.post(SUCCESS_URL).mock(return_value=httpx.Response(200))

        assert await sender.send_success_signal("http:GET:/items", {"operation_type": "http"})

        body = json.loads(route.calls.last.request.content)
        assert body == {
            "fingerprint": "http:GET:/items",
            "context": {"operation_type": "http"},
            "project_id": "proj-1",
            "environment": "test",
        }

    @pytest.mark.asyncio
    async def test_failure_not_retried(self, sender, respx_mock):
        """Test a single attempt with no exception on failure."""
        route = respx_mock.post(SUCCESS_URL).mock(return_value=httpx.Response(500))

        assert await sender.send_success_signal("fp", {}) is False
        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_network_error(self, sender, respx_mock):
        """Test transport errors are swallowed."""
        respx_mock.post(SUCCESS_URL).mock(side_effect=httpx.ConnectError("down"))
        assert await sender.send_success_signal("fp", {}) is False

    @pytest.mark.asyncio
    async def test_closed_client(self, config, fake_sleep):
        """Test a closed HTTP client yields False instead of raising."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        bs = BatchSender(config, client=client, sleep=fake_sleep)
        await bs.start()
        await client.aclose()

        assert await bs.send_success_signal("fp", {}) is False
        await bs.shutdown()

    @pytest.mark.asyncio
    async def test_scheduled(self, sender, respx_mock):
        """Test the fire-and-forget variant eventually posts."""
        route = respx_mock.post(SUCCESS_URL).mock(return_value=httpx.Response(200))

        sender.schedule_success_signal("fp", {})

        await _eventually(lambda: route.call_count == 1)
