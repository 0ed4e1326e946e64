"""SDK facade and process-wide singleton.

Composes the error tracker, metrics collector, batch sender and realtime
channel. Every host-facing call is a fail-silent boundary: internal errors
are logged and swallowed so telemetry can never break the host.
"""

import asyncio
from collections.abc import Mapping
from typing import Any

import aiohttp
import httpx
from opentelemetry.sdk.trace import TracerProvider

from .config import TelemetryConfig, load_config
from .hooks import CrashHandlers
from .instrumentation import install_tracing
from .logging_config import get_logger
from .metrics import MetricsCollector, snapshot_to_events
from .models import BreadcrumbLevel, CaptureContext, ErrorEvent, MessageEvent, MetricEvent
from .tracker import ErrorTracker
from .transport import BatchSender, RealtimeChannel

logger = get_logger(__name__)


class TelemetrySDK:
    """One telemetry pipeline: capture, buffer, ship."""

    def __init__(
        self,
        config: TelemetryConfig,
        *,
        client: httpx.AsyncClient | None = None,
        ws_session: aiohttp.ClientSession | None = None,
    ):
        self._config = config
        self._tracker = ErrorTracker(config)
        self._metrics = MetricsCollector(config)
        self._sender = BatchSender(
            config, client=client, metrics_source=self._collect_metric_events
        )
        self._realtime = RealtimeChannel(config, session=ws_session)
        self._hooks = CrashHandlers(self._on_uncaught)
        self._tracer_provider: TracerProvider | None = None
        self._started = False

    async def start(self) -> None:
        """Start delivery, open the realtime channel and install hooks."""
        if self._started:
            return

        await self._sender.start()
        await self._realtime.start()

        if self._config.enable_error_tracking:
            self._hooks.install(asyncio.get_running_loop())
        if self._config.enable_auto_instrumentation:
            self._tracer_provider = install_tracing(self._sender, self._config)

        self._started = True
        logger.info(
            "Telemetry SDK started for %s (%s)",
            self._config.service_name,
            self._config.environment,
        )

    async def _collect_metric_events(self) -> list[MetricEvent]:
        events = snapshot_to_events(await self._metrics.snapshot(), self._config)
        for event in events:
            self._realtime.send_metrics(event)
        return events

    def _on_uncaught(self, error: BaseException) -> None:
        self.capture_error(error, {"additional": {"uncaught": True}})

    # Host-facing operations

    def capture_error(
        self,
        error: BaseException,
        context: CaptureContext | Mapping[str, Any] | None = None,
    ) -> ErrorEvent | None:
        """Queue an ErrorEvent for *error*. Returns None when tracking is off or capture failed."""
        if not self._config.enable_error_tracking:
            return None
        try:
            event = self._tracker.capture_error(error, context)
            self._sender.add_event_threadsafe(event)
            self._realtime.send_error(event)
            return event
        except Exception as e:
            logger.error("Failed to capture error: %s", e, exc_info=True)
            return None

    def capture_message(
        self,
        message: str,
        level: BreadcrumbLevel = "info",
        tags: Mapping[str, str] | None = None,
    ) -> MessageEvent | None:
        try:
            event = self._tracker.capture_message(message, level, tags)
            self._sender.add_event_threadsafe(event)
            return event
        except Exception as e:
            logger.error("Failed to capture message: %s", e, exc_info=True)
            return None

    def record_request(
        self, method: str, route: str, status_code: int, duration_ms: float
    ) -> None:
        """Record one served request; 4xx/5xx also count as errors."""
        if not self._config.enable_metrics:
            return
        try:
            self._metrics.record_request(method, route, status_code, duration_ms)
            if status_code >= 500:
                self._metrics.record_error(method, route, "server_error")
            elif status_code >= 400:
                self._metrics.record_error(method, route, "client_error")
        except Exception as e:
            logger.error("Failed to record request: %s", e, exc_info=True)

    def add_breadcrumb(
        self,
        message: str,
        category: str = "custom",
        level: BreadcrumbLevel = "info",
        data: dict[str, Any] | None = None,
    ) -> None:
        try:
            self._tracker.add_breadcrumb(message, category, level, data)
        except Exception as e:
            logger.error("Failed to add breadcrumb: %s", e, exc_info=True)

    async def flush(self) -> None:
        """Send everything buffered so far."""
        try:
            await self._sender.flush()
        except Exception as e:
            logger.error("Flush failed: %s", e, exc_info=True)

    async def shutdown(self) -> None:
        """Drain the buffer and release every resource. Idempotent."""
        if self._tracer_provider is not None:
            try:
                # Pushes the last spans into the sender before it drains
                await asyncio.to_thread(self._tracer_provider.shutdown)
            except Exception as e:
                logger.error("Tracer provider shutdown failed: %s", e, exc_info=True)
            self._tracer_provider = None

        try:
            await self._sender.shutdown()
        except Exception as e:
            logger.error("Batch sender shutdown failed: %s", e, exc_info=True)

        try:
            await self._realtime.close()
        except Exception as e:
            logger.error("Realtime channel close failed: %s", e, exc_info=True)

        self._hooks.uninstall()
        self._started = False
        logger.info("Telemetry SDK shut down")

    # Components

    @property
    def config(self) -> TelemetryConfig:
        return self._config

    @property
    def tracker(self) -> ErrorTracker:
        return self._tracker

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def sender(self) -> BatchSender:
        return self._sender

    @property
    def realtime(self) -> RealtimeChannel:
        return self._realtime

    @property
    def hooks(self) -> CrashHandlers:
        return self._hooks

    @property
    def is_started(self) -> bool:
        return self._started


_instance: TelemetrySDK | None = None


async def init(config: TelemetryConfig | None = None, **overrides: Any) -> TelemetrySDK:
    """Create and start the process-wide SDK.

    Without *config*, configuration is read from ``TELEMETRY_*`` environment
    variables. A second call returns the existing instance unchanged.
    """
    global _instance
    if _instance is not None:
        logger.warning("Telemetry SDK already initialized, returning existing instance")
        return _instance

    if config is None:
        config = load_config(**overrides)
    elif overrides:
        config = config.with_overrides(**overrides)

    sdk = TelemetrySDK(config)
    _instance = sdk
    try:
        await sdk.start()
    except Exception:
        _instance = None
        await sdk.shutdown()
        raise
    return sdk


def get_instance() -> TelemetrySDK | None:
    """The SDK created by init(), if any."""
    return _instance


async def reset_instance() -> None:
    """Shut down and forget the process-wide SDK."""
    global _instance
    sdk, _instance = _instance, None
    if sdk is not None:
        await sdk.shutdown()
