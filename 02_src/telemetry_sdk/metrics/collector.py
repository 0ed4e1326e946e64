"""MetricsCollector implementation backed by a private prometheus registry."""

import time
from dataclasses import dataclass, field
from typing import Protocol

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

from ..config import TelemetryConfig

REQUEST_DURATION_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10)


@dataclass(frozen=True)
class MetricSample:
    """A single labeled value of a metric."""

    name: str
    labels: dict[str, str]
    value: float
    timestamp: float | None = None  # seconds since epoch


@dataclass(frozen=True)
class MetricSnapshot:
    """Point-in-time view of one metric family."""

    name: str
    description: str = ""
    unit: str = ""
    kind: str = "untyped"
    samples: list[MetricSample] = field(default_factory=list)
    collected_at: float = 0.0  # seconds since epoch


class IMetricsSource(Protocol):
    """Anything that can hand the batch sender a metrics snapshot."""

    async def snapshot(self) -> list[MetricSnapshot]:
        """Collect all metric families."""
        ...


class MetricsCollector:
    """HTTP golden-signal metrics for the host service."""

    def __init__(self, config: TelemetryConfig, registry: CollectorRegistry | None = None):
        self._service = config.service_name
        self._registry = registry or CollectorRegistry(auto_describe=True)

        self._request_duration = Histogram(
            "http_request_duration_seconds",
            "Duration of HTTP requests in seconds",
            ["method", "route", "status_code", "service"],
            buckets=REQUEST_DURATION_BUCKETS,
            registry=self._registry,
        )
        self._request_total = Counter(
            "http_requests_total",
            "Total number of HTTP requests",
            ["method", "route", "status_code", "service"],
            registry=self._registry,
        )
        self._request_errors = Counter(
            "http_request_errors_total",
            "Total number of HTTP request errors",
            ["method", "route", "error_type", "service"],
            registry=self._registry,
        )
        self._active_requests = Gauge(
            "http_active_requests",
            "Number of active HTTP requests",
            ["service"],
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_request(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        """Count a served request and observe its latency."""
        labels = {
            "method": method,
            "route": route,
            "status_code": str(status_code),
            "service": self._service,
        }
        self._request_duration.labels(**labels).observe(duration_ms / 1000)
        self._request_total.labels(**labels).inc()

    def record_error(self, method: str, route: str, error_type: str) -> None:
        """Count a failed request by error class (client_error / server_error)."""
        self._request_errors.labels(
            method=method, route=route, error_type=error_type, service=self._service
        ).inc()

    def increment_active_requests(self) -> None:
        self._active_requests.labels(service=self._service).inc()

    def decrement_active_requests(self) -> None:
        self._active_requests.labels(service=self._service).dec()

    async def snapshot(self) -> list[MetricSnapshot]:
        """Collect every family in the registry, skipping ``*_created`` samples."""
        collected_at = time.time()
        snapshots = []
        for family in self._registry.collect():
            samples = [
                MetricSample(
                    name=sample.name,
                    labels=dict(sample.labels),
                    value=float(sample.value),
                    timestamp=sample.timestamp,
                )
                for sample in family.samples
                if not sample.name.endswith("_created")
            ]
            snapshots.append(
                MetricSnapshot(
                    name=family.name,
                    description=family.documentation,
                    unit=family.unit,
                    kind=family.type,
                    samples=samples,
                    collected_at=collected_at,
                )
            )
        return snapshots
