"""Convert registry snapshots into wire MetricEvents."""

from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from ..config import TelemetryConfig
from ..fingerprint import generate_event_id
from ..models import MetricEvent
from .collector import MetricSample, MetricSnapshot

NANOS_PER_SECOND = 1_000_000_000


def to_unix_nano(seconds: float) -> int:
    """Seconds since epoch -> integer nanoseconds since epoch."""
    return int(round(seconds * NANOS_PER_SECOND))


def _coerce_snapshot(item: MetricSnapshot | Mapping[str, Any], now: float) -> MetricSnapshot:
    """Accept the plain ``{name, values: [{labels, value}]}`` shape too."""
    if isinstance(item, MetricSnapshot):
        return item
    name = str(item.get("name", ""))
    samples = [
        MetricSample(
            name=name,
            labels=dict(value.get("labels") or {}),
            value=value.get("value"),
            timestamp=value.get("timestamp"),
        )
        for value in item.get("values") or []
    ]
    return MetricSnapshot(
        name=name,
        description=str(item.get("help") or item.get("description") or ""),
        unit=str(item.get("unit") or ""),
        kind=str(item.get("type") or "untyped"),
        samples=samples,
        collected_at=float(item.get("collected_at") or now),
    )


def snapshot_to_events(
    snapshot: Iterable[MetricSnapshot | Mapping[str, Any]],
    config: TelemetryConfig,
) -> list[MetricEvent]:
    """One MetricEvent per labeled sample; labels are copied verbatim."""
    now = datetime.now(timezone.utc)
    timestamp = now.isoformat()
    events = []
    for item in snapshot:
        family = _coerce_snapshot(item, now.timestamp())
        for sample in family.samples:
            if sample.value is None:
                continue
            sampled_at = sample.timestamp if sample.timestamp is not None else family.collected_at
            events.append(
                MetricEvent(
                    event_id=generate_event_id(),
                    timestamp=timestamp,
                    environment=config.environment,
                    project_id=config.project_id,
                    name=sample.name,
                    metric_name=family.name,
                    description=family.description or None,
                    unit=family.unit or None,
                    labels=dict(sample.labels),
                    value=sample.value,
                    time_unix_nano=to_unix_nano(sampled_at),
                    tags=dict(config.tags) or None,
                )
            )
    return events
