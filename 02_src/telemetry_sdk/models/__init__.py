"""Core data models for the telemetry SDK."""

from .breadcrumbs import Breadcrumb, BreadcrumbLevel
from .context import CaptureContext, RequestContext, ResponseContext
from .events import ErrorEvent, Event, MessageEvent, MetricEvent, SpanEvent

__all__ = [
    # Events
    "Event",
    "ErrorEvent",
    "MessageEvent",
    "MetricEvent",
    "SpanEvent",
    # Breadcrumbs
    "Breadcrumb",
    "BreadcrumbLevel",
    # Capture context
    "CaptureContext",
    "RequestContext",
    "ResponseContext",
]
