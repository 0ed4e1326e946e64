"""Wire event models.

Every event is a closed, frozen record with a ``type`` discriminant and is
independently parseable by the collector: the batch body is simply
``{"events": [event.to_dict(), ...]}``.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Literal, Union

from .breadcrumbs import Breadcrumb


def _compact(value: Any) -> Any:
    """Convert to JSON-ready structures, dropping None-valued fields."""
    if isinstance(value, Breadcrumb):
        return value.to_dict()
    if isinstance(value, dict):
        return {k: _compact(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_compact(v) for v in value]
    return value


class _WireEvent:
    """Shared serialisation for all event variants."""

    def to_dict(self) -> dict[str, Any]:
        return {
            f.name: _compact(getattr(self, f.name))
            for f in fields(self)  # type: ignore[arg-type]
            if getattr(self, f.name) is not None
        }


@dataclass(frozen=True)
class ErrorEvent(_WireEvent):
    """A captured exception."""

    event_id: str
    timestamp: str
    environment: str
    project_id: str
    exception_type: str
    message: str
    stack_trace: str
    fingerprint: str
    service: str
    endpoint: str | None = None
    method: str | None = None
    status_code: int | None = None
    trace_id: str | None = None
    span_id: str | None = None
    tags: dict[str, str] | None = None
    extra: dict[str, Any] | None = None
    breadcrumbs: tuple[Breadcrumb, ...] | None = None
    type: Literal["error"] = "error"


@dataclass(frozen=True)
class MessageEvent(_WireEvent):
    """A free-form message reported by the host."""

    event_id: str
    timestamp: str
    environment: str
    project_id: str
    message: str
    level: str = "info"
    service: str | None = None
    tags: dict[str, str] | None = None
    breadcrumbs: tuple[Breadcrumb, ...] | None = None
    type: Literal["message"] = "message"


@dataclass(frozen=True)
class MetricEvent(_WireEvent):
    """One labeled metric sample.

    Carries either ``value`` or the ``sum``/``count``/``min``/``max`` aggregate.
    """

    event_id: str
    timestamp: str
    environment: str
    project_id: str
    name: str
    metric_name: str
    description: str | None = None
    unit: str | None = None
    labels: dict[str, str] = field(default_factory=dict)
    value: float | None = None
    sum: float | None = None
    count: int | None = None
    min: float | None = None
    max: float | None = None
    start_time_unix_nano: int | None = None
    time_unix_nano: int | None = None
    resource: dict[str, Any] | None = None
    tags: dict[str, str] | None = None
    breadcrumbs: tuple[Breadcrumb, ...] | None = None
    type: Literal["metric"] = "metric"


@dataclass(frozen=True)
class SpanEvent(_WireEvent):
    """A finished trace span worth reporting."""

    event_id: str
    timestamp: str
    environment: str
    project_id: str
    name: str
    operation_type: str
    trace_id: str
    span_id: str
    is_error: bool
    parent_span_id: str | None = None
    start_time: int | None = None  # ns since epoch
    end_time: int | None = None
    duration_ns: int | None = None
    status: dict[str, str] | None = None
    attributes: dict[str, Any] | None = None
    events: list[dict[str, Any]] | None = None
    error: dict[str, str] | None = None
    tags: dict[str, str] | None = None
    breadcrumbs: tuple[Breadcrumb, ...] | None = None
    type: Literal["span"] = "span"


Event = Union[ErrorEvent, MessageEvent, MetricEvent, SpanEvent]
