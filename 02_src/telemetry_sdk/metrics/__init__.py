"""Metrics module."""

from .bridge import snapshot_to_events, to_unix_nano
from .collector import IMetricsSource, MetricSample, MetricSnapshot, MetricsCollector

__all__ = [
    "IMetricsSource",
    "MetricSample",
    "MetricSnapshot",
    "MetricsCollector",
    "snapshot_to_events",
    "to_unix_nano",
]
