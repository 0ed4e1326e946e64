"""BatchSender implementation: in-memory event buffer with chunked, retried delivery.

Lifecycle of the buffer:

- Idle / Accumulating: ``add_event()`` appends; the periodic timer flushes.
- At capacity (``max_buffer_size``): ``add_event()`` also schedules a flush
  task right away, without waiting on it.
- Flushing: the buffer is swapped for an empty one before the first await,
  so events added while chunks are in flight land in the next cycle.

Delivery is best effort. Once an event is handed to a flush it leaves the
buffer for good; a chunk that is rejected (4xx) or still failing after
``retry_attempts`` is dropped and logged. Nothing here raises into the host.
"""

import asyncio
import concurrent.futures
import json
from collections import deque
from collections.abc import Awaitable, Callable, Coroutine, Iterator, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import httpx

from ..config import TelemetryConfig
from ..logging_config import get_logger
from ..models import Event

logger = get_logger(__name__)

MetricsHook = Callable[[], Awaitable[Sequence[Event]]]


class DeliveryResult(str, Enum):
    """Outcome of sending one chunk."""

    DELIVERED = "delivered"
    REJECTED = "rejected"  # 4xx, never retried
    FAILED = "failed"  # retries exhausted


@dataclass
class SenderStats:
    """Delivery counters, for health checks and tests."""

    events_sent: int = 0
    events_rejected: int = 0
    events_failed: int = 0
    events_evicted: int = 0
    chunks_sent: int = 0
    flushes: int = 0


class IBatchSender(Protocol):
    """Buffering and delivery of events to the collector."""

    def add_event(self, event: Event) -> None:
        """Append an event; never blocks on I/O."""
        ...

    async def flush(self) -> None:
        """Send everything buffered so far (single-flight)."""
        ...

    async def send_success_signal(self, fingerprint: str, context: dict[str, Any]) -> bool:
        """Best-effort resolution hint for a fingerprint."""
        ...

    async def shutdown(self) -> None:
        """Stop the timer and drain the buffer."""
        ...


def _chunks(items: list[Event], size: int) -> Iterator[list[Event]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class BatchSender:
    """Buffers events and ships them to ``POST {api_url}/events/batch``."""

    _LOG_INTERVAL = 100  # log evictions every N drops

    def __init__(
        self,
        config: TelemetryConfig,
        client: httpx.AsyncClient | None = None,
        metrics_source: MetricsHook | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._config = config
        self._client = client
        self._owns_client = client is None
        self._metrics_source = metrics_source
        self._sleep = sleep

        self._buffer: deque[Event] = deque()
        self._flushing = False
        self._flush_scheduled = False
        self._running = False

        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._futures: set[concurrent.futures.Future] = set()

        self._stats = SenderStats()
        self._last_logged_evictions = 0

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-API-Key": self._config.api_key,
        }

    # Lifecycle

    async def start(self) -> None:
        """Bind to the running loop, open the HTTP client and arm the flush timer."""
        if self._running:
            return

        self._loop = asyncio.get_running_loop()
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.timeout)
            self._owns_client = True

        self._running = True
        self._timer_task = asyncio.create_task(self._flush_timer())
        logger.debug("BatchSender started (flush every %.1fs)", self._config.flush_interval)

    async def _flush_timer(self) -> None:
        """Background timer for periodic flushes."""
        while self._running:
            try:
                await asyncio.sleep(self._config.flush_interval)
                if self._buffer:
                    cycle = self.flush()
                elif not self._flushing:
                    # Nothing buffered: still ship the periodic metrics snapshot
                    cycle = self._flush_cycle(take_buffer=False)
                else:
                    continue
                # Cancelling the timer stops the wait, never a cycle in flight;
                # shutdown() awaits the tracked task
                await asyncio.shield(self._track(cycle))
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Flush timer error: %s", e, exc_info=True)

    async def shutdown(self) -> None:
        """Stop the timer, wait for in-flight sends, then drain what is left."""
        self._running = False

        if self._timer_task:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None

        await self._wait_pending()

        # A flush may have been running with events arriving behind it
        while self._buffer and not self._flushing:
            await self.flush()

        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        logger.debug("BatchSender stopped")

    async def _wait_pending(self) -> None:
        """Await background cycles and cross-thread submissions until none are left."""
        while True:
            pending: list[Awaitable[Any]] = [task for task in self._tasks if not task.done()]
            pending.extend(
                asyncio.wrap_future(future) for future in self._futures.copy() if not future.done()
            )
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # Buffering

    def add_event(self, event: Event) -> None:
        """Append *event*; schedule a flush when the buffer reaches capacity."""
        if len(self._buffer) >= self._config.buffer_hard_limit:
            self._buffer.popleft()
            self._stats.events_evicted += 1
            self._log_evictions_if_needed()

        self._buffer.append(event)

        if len(self._buffer) >= self._config.max_buffer_size:
            self._request_flush()

    def add_event_threadsafe(self, event: Event) -> None:
        """add_event() callable from any thread; hops onto the bound loop if needed."""
        loop = self._loop
        if loop is None or loop.is_closed() or self._on_loop(loop):
            self.add_event(event)
            return
        try:
            loop.call_soon_threadsafe(self.add_event, event)
        except RuntimeError:
            # Loop closed between the check and the call
            self.add_event(event)

    def _request_flush(self) -> None:
        if self._flushing or self._flush_scheduled:
            return
        if self._submit(self.flush()):
            self._flush_scheduled = True

    def _log_evictions_if_needed(self) -> None:
        if self._stats.events_evicted - self._last_logged_evictions >= self._LOG_INTERVAL:
            logger.warning(
                "Telemetry buffer overflow - %d events dropped (%d total, limit %d)",
                self._stats.events_evicted - self._last_logged_evictions,
                self._stats.events_evicted,
                self._config.buffer_hard_limit,
            )
            self._last_logged_evictions = self._stats.events_evicted

    # Task plumbing

    @staticmethod
    def _on_loop(loop: asyncio.AbstractEventLoop) -> bool:
        try:
            return asyncio.get_running_loop() is loop
        except RuntimeError:
            return False

    def _track(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _submit(self, coro: Coroutine[Any, Any, Any]) -> bool:
        """Run *coro* in the background on the bound (or current) loop.

        Returns False, discarding the coroutine, when no loop can take it.
        """
        loop = self._loop
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None and (loop is None or running is loop):
            self._track(coro)
            return True

        if loop is not None and loop.is_running():
            future = asyncio.run_coroutine_threadsafe(coro, loop)
            self._futures.add(future)
            future.add_done_callback(self._futures.discard)
            return True

        coro.close()
        return False

    # Flushing

    async def flush(self) -> None:
        """Send the buffered events in ``batch_size`` chunks, in insertion order.

        No-op when a flush is already in progress or the buffer is empty.
        """
        self._flush_scheduled = False
        if self._flushing or not self._buffer:
            return

        await self._flush_cycle(take_buffer=True)

    async def _flush_cycle(self, take_buffer: bool) -> None:
        self._flushing = True
        try:
            batch: list[Event] = []
            if take_buffer:
                batch = list(self._buffer)
                self._buffer = deque()

            batch.extend(await self._collect_metrics())
            if not batch:
                return
            self._stats.flushes += 1

            for chunk in _chunks(batch, self._config.batch_size):
                await self.send_chunk(chunk)
        except Exception as e:
            logger.error("Error in flush: %s", e, exc_info=True)
        finally:
            self._flushing = False

    async def _collect_metrics(self) -> Sequence[Event]:
        if not self._config.enable_metrics or self._metrics_source is None:
            return []
        try:
            return await self._metrics_source()
        except Exception as e:
            logger.warning("Metrics snapshot failed: %s", e)
            return []

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number *attempt* (zero-based)."""
        return min(self._config.retry_delay * (2**attempt), self._config.retry_max_delay)

    async def send_chunk(self, chunk: list[Event]) -> DeliveryResult:
        """POST one chunk with retry. Logs and returns the outcome, never raises."""
        count = len(chunk)
        try:
            body = json.dumps({"events": [event.to_dict() for event in chunk]}, default=str)
        except (TypeError, ValueError) as e:
            logger.error("Dropping batch of %d events: not serializable (%s)", count, e)
            self._stats.events_failed += count
            return DeliveryResult.FAILED

        if self._client is None:
            logger.error("Dropping batch of %d events: sender not started", count)
            self._stats.events_failed += count
            return DeliveryResult.FAILED

        attempts = self._config.retry_attempts
        last_error = ""
        for attempt in range(attempts):
            try:
                response = await self._client.post(
                    self._config.batch_url,
                    content=body,
                    headers=self._headers,
                    timeout=self._config.timeout,
                )
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"
            except RuntimeError as e:
                # Client already closed; retrying cannot help
                logger.error("Dropping batch of %d events: %s", count, e)
                self._stats.events_failed += count
                return DeliveryResult.FAILED
            else:
                status = response.status_code
                if 200 <= status < 300:
                    self._stats.events_sent += count
                    self._stats.chunks_sent += 1
                    return DeliveryResult.DELIVERED
                if 400 <= status < 500:
                    logger.error(
                        "Collector rejected batch of %d events: HTTP %d %s",
                        count,
                        status,
                        response.text[:200],
                    )
                    self._stats.events_rejected += count
                    return DeliveryResult.REJECTED
                last_error = f"HTTP {status}"

            if attempt < attempts - 1:
                delay = self.backoff_delay(attempt)
                logger.debug(
                    "Batch send attempt %d/%d failed (%s), retrying in %.2fs",
                    attempt + 1,
                    attempts,
                    last_error,
                    delay,
                )
                await self._sleep(delay)

        logger.error(
            "Failed to send batch of %d events after %d attempts: %s",
            count,
            attempts,
            last_error,
        )
        self._stats.events_failed += count
        return DeliveryResult.FAILED

    # Success signals

    async def send_success_signal(self, fingerprint: str, context: dict[str, Any]) -> bool:
        """POST a resolution hint. Single attempt; failures are logged at DEBUG."""
        if self._client is None:
            logger.debug("Success signal for %s skipped: sender not started", fingerprint)
            return False

        body = {
            "fingerprint": fingerprint,
            "context": context,
            "project_id": self._config.project_id,
            "environment": self._config.environment,
        }
        try:
            response = await self._client.post(
                self._config.success_url,
                content=json.dumps(body, default=str),
                headers=self._headers,
                timeout=self._config.timeout,
            )
        except (httpx.HTTPError, RuntimeError, TypeError, ValueError) as e:
            logger.debug("Error sending success signal for %s: %s", fingerprint, e)
            return False

        if not response.is_success:
            logger.debug(
                "Success signal for %s returned HTTP %d", fingerprint, response.status_code
            )
            return False
        return True

    def schedule_success_signal(self, fingerprint: str, context: dict[str, Any]) -> None:
        """Fire-and-forget send_success_signal(); safe from any thread."""
        self._submit(self.send_success_signal(fingerprint, context))

    # Introspection

    @property
    def stats(self) -> SenderStats:
        return self._stats

    @property
    def is_flushing(self) -> bool:
        return self._flushing

    @property
    def is_running(self) -> bool:
        return self._running

    def __len__(self) -> int:
        return len(self._buffer)
