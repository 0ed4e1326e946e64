"""OpenTelemetry span exporter feeding the batch pipeline.

Finished spans are converted to ``SpanEvent`` records and pushed into the
BatchSender. Spans that finished with an explicit OK status also schedule a
success signal so the collector can auto-resolve incidents for the same
operation.
"""

from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult
from opentelemetry.trace import StatusCode

from ..config import TelemetryConfig
from ..fingerprint import generate_event_id, operation_fingerprint
from ..logging_config import get_logger
from ..models import SpanEvent
from ..transport import BatchSender

logger = get_logger(__name__)

IMPORTANT_OPERATIONS = frozenset({"http", "db", "redis", "celery", "messaging"})


def determine_operation_type(attributes: Mapping[str, Any]) -> str:
    """Classify a span from its semantic-convention attributes."""
    if "http.method" in attributes or "http.request.method" in attributes or "http.url" in attributes:
        return "http"
    if attributes.get("db.system") == "redis":
        return "redis"
    if "db.system" in attributes or "db.statement" in attributes:
        return "db"
    if "celery.task_name" in attributes:
        return "celery"
    if "messaging.system" in attributes:
        return "messaging"
    return "generic"


class SpanEventExporter(SpanExporter):
    """SpanExporter that hands spans to a BatchSender instead of a remote OTLP endpoint."""

    def __init__(self, sender: BatchSender, config: TelemetryConfig):
        self._sender = sender
        self._config = config
        self._shutdown = False

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        if self._shutdown:
            return SpanExportResult.FAILURE
        try:
            for span in spans:
                event = self.convert(span)
                if event is None:
                    continue
                self._sender.add_event_threadsafe(event)
                if span.status.status_code is StatusCode.OK:
                    self._track_success(span, event.operation_type)
        except Exception as e:
            logger.error("Error exporting spans: %s", e, exc_info=True)
            return SpanExportResult.FAILURE
        return SpanExportResult.SUCCESS

    def convert(self, span: ReadableSpan) -> SpanEvent | None:
        """Build a SpanEvent, or None for spans not worth reporting."""
        attributes = dict(span.attributes or {})
        operation_type = determine_operation_type(attributes)
        is_error = span.status.status_code is StatusCode.ERROR

        if not is_error and operation_type not in IMPORTANT_OPERATIONS:
            return None

        status = {"code": span.status.status_code.name}
        if span.status.description:
            status["description"] = span.status.description

        span_events = [
            {
                "name": e.name,
                "timestamp": e.timestamp,
                "attributes": dict(e.attributes or {}),
            }
            for e in span.events
        ]

        duration_ns = None
        if span.start_time is not None and span.end_time is not None:
            duration_ns = span.end_time - span.start_time

        context = span.get_span_context()
        return SpanEvent(
            event_id=generate_event_id(),
            timestamp=datetime.now(timezone.utc).isoformat(),
            environment=self._config.environment,
            project_id=self._config.project_id,
            name=span.name,
            operation_type=operation_type,
            trace_id=format(context.trace_id, "032x"),
            span_id=format(context.span_id, "016x"),
            is_error=is_error,
            parent_span_id=format(span.parent.span_id, "016x") if span.parent else None,
            start_time=span.start_time,
            end_time=span.end_time,
            duration_ns=duration_ns,
            status=status,
            attributes=attributes or None,
            events=span_events or None,
            error=self._exception_details(span) if is_error else None,
        )

    @staticmethod
    def _exception_details(span: ReadableSpan) -> dict[str, str] | None:
        for event in span.events:
            if event.name != "exception":
                continue
            attrs = event.attributes or {}
            error = {
                key: str(attrs[attr])
                for key, attr in (
                    ("type", "exception.type"),
                    ("message", "exception.message"),
                    ("stacktrace", "exception.stacktrace"),
                )
                if attrs.get(attr)
            }
            if error:
                return error
        return None

    def _track_success(self, span: ReadableSpan, operation_type: str) -> None:
        attributes = dict(span.attributes or {})
        fingerprint = operation_fingerprint(operation_type, span.name, attributes)
        self._sender.schedule_success_signal(
            fingerprint,
            {
                "operation_type": operation_type,
                "operation_name": span.name,
                "attributes": attributes,
            },
        )

    def shutdown(self) -> None:
        self._shutdown = True

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return True
