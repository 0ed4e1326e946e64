"""RealtimeChannel implementation: best-effort event mirroring over a websocket.

Independent of the batch pipeline. Nothing is queued: sends while not
connected are dropped, and after too many failed reconnects the channel
gives up for the rest of the process.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Protocol

import aiohttp

from ..config import TelemetryConfig
from ..logging_config import get_logger
from ..models import ErrorEvent, MetricEvent

logger = get_logger(__name__)


class ChannelState(str, Enum):
    """Connection states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"  # closed by us or gave up; terminal


class IRealtimeChannel(Protocol):
    """Low-latency duplicate delivery of individual events."""

    async def start(self) -> None:
        """Open the connection in the background."""
        ...

    def send_error(self, event: ErrorEvent) -> None:
        """Mirror an error event if connected."""
        ...

    def send_metrics(self, event: MetricEvent) -> None:
        """Mirror a metric event if connected."""
        ...

    async def close(self) -> None:
        """Cancel reconnects and tear down the socket."""
        ...


class RealtimeChannel:
    """Websocket client for ``{websocket_url}/stream``."""

    BASE_RECONNECT_DELAY = 1.0
    MAX_RECONNECT_DELAY = 30.0
    MAX_RECONNECT_ATTEMPTS = 10
    HEARTBEAT = 30.0

    def __init__(
        self,
        config: TelemetryConfig,
        session: aiohttp.ClientSession | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._config = config
        self._session = session
        self._owns_session = session is None
        self._sleep = sleep

        self._state = ChannelState.DISCONNECTED
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._task: asyncio.Task | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._send_tasks: set[asyncio.Task] = set()
        self._reconnect_attempts = 0

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @classmethod
    def reconnect_delay(cls, attempt: int) -> float:
        return min(cls.BASE_RECONNECT_DELAY * (2**attempt), cls.MAX_RECONNECT_DELAY)

    async def start(self) -> None:
        """Connect eagerly when the channel is enabled."""
        if not self._config.enable_websocket:
            return
        if self._task is not None or self._state is ChannelState.CLOSED:
            return

        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        self._loop = asyncio.get_running_loop()
        self._task = self._loop.create_task(self._run())

    async def _run(self) -> None:
        """Connect, listen until the socket drops, back off, repeat."""
        while True:
            await self._connect_and_listen()

            if self._state is ChannelState.CLOSED:
                return
            if self._reconnect_attempts >= self.MAX_RECONNECT_ATTEMPTS:
                logger.error(
                    "Max WebSocket reconnect attempts (%d) reached, realtime channel disabled",
                    self.MAX_RECONNECT_ATTEMPTS,
                )
                self._state = ChannelState.CLOSED
                return

            delay = self.reconnect_delay(self._reconnect_attempts)
            logger.debug("WebSocket reconnect in %.1fs", delay)
            await self._sleep(delay)
            self._reconnect_attempts += 1

    async def _connect_and_listen(self) -> None:
        if self._session is None:
            return

        self._state = ChannelState.CONNECTING
        try:
            ws = await self._session.ws_connect(
                self._config.stream_url,
                headers={"X-API-Key": self._config.api_key},
                heartbeat=self.HEARTBEAT,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning("WebSocket connection error: %s", e)
            self._state = ChannelState.DISCONNECTED
            return

        self._ws = ws
        self._state = ChannelState.CONNECTED
        self._reconnect_attempts = 0
        logger.info("WebSocket connected to %s", self._config.stream_url)

        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("WebSocket error: %s", ws.exception())
                    break
        except (aiohttp.ClientError, OSError) as e:
            logger.warning("WebSocket receive error: %s", e)
        finally:
            self._ws = None
            if self._state is not ChannelState.CLOSED:
                self._state = ChannelState.DISCONNECTED

    def _handle_message(self, data: str) -> None:
        """Server pushes (e.g. configuration hints) are only logged for now."""
        try:
            message = json.loads(data)
        except ValueError as e:
            logger.warning("Error parsing WebSocket message: %s", e)
            return
        logger.debug("Received WebSocket message: %s", message)

    def send_error(self, event: ErrorEvent) -> None:
        """Mirror an error event; dropped unless connected."""
        self._send({"type": "error", "data": event.to_dict()})

    def send_metrics(self, event: MetricEvent) -> None:
        """Mirror a metric event; dropped unless connected."""
        self._send({"type": "metrics", "data": event.to_dict()})

    def _send(self, message: dict[str, Any]) -> None:
        ws = self._ws
        if self._state is not ChannelState.CONNECTED or ws is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        # The socket belongs to the loop the channel was started on
        if loop is not self._loop:
            return

        task = loop.create_task(self._send_frame(ws, message))
        self._send_tasks.add(task)
        task.add_done_callback(self._send_tasks.discard)

    async def _send_frame(self, ws: aiohttp.ClientWebSocketResponse, message: dict[str, Any]) -> None:
        try:
            await ws.send_str(json.dumps(message, default=str))
        except (aiohttp.ClientError, OSError, RuntimeError) as e:
            logger.warning("Error sending %s via WebSocket: %s", message.get("type"), e)

    async def close(self) -> None:
        """Stop reconnecting and close the socket and owned session."""
        self._state = ChannelState.CLOSED
        ws = self._ws

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._send_tasks:
            await asyncio.gather(*self._send_tasks, return_exceptions=True)

        if ws is not None:
            await ws.close()
        self._ws = None

        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None
