"""ErrorTracker implementation for building error events."""

import traceback
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol

from opentelemetry import trace

from ..config import TelemetryConfig
from ..fingerprint import generate_event_id, generate_fingerprint
from ..logging_config import get_logger
from ..models import (
    Breadcrumb,
    BreadcrumbLevel,
    CaptureContext,
    ErrorEvent,
    MessageEvent,
)
from ..pii import PiiSanitizer
from .breadcrumbs import BreadcrumbBuffer

logger = get_logger(__name__)


class IErrorTracker(Protocol):
    """Turns exceptions into ErrorEvents and keeps the breadcrumb trail."""

    def capture_error(
        self, error: BaseException, context: CaptureContext | Mapping[str, Any] | None = None
    ) -> ErrorEvent:
        """Build a sanitized, fingerprinted ErrorEvent. Never raises."""
        ...

    def add_breadcrumb(
        self,
        message: str,
        category: str = "custom",
        level: BreadcrumbLevel = "info",
        data: dict[str, Any] | None = None,
    ) -> None:
        """Record a breadcrumb."""
        ...

    def get_breadcrumbs(self) -> list[Breadcrumb]:
        """Copy of the current breadcrumb trail."""
        ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _format_stack(error: BaseException) -> str:
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


def _current_trace_ids() -> tuple[str | None, str | None]:
    """Trace/span ids of the active OpenTelemetry span, if any."""
    span_context = trace.get_current_span().get_span_context()
    if not span_context.is_valid:
        return None, None
    return format(span_context.trace_id, "032x"), format(span_context.span_id, "016x")


class ErrorTracker:
    """Builds ErrorEvents from exceptions plus optional request/response context."""

    def __init__(self, config: TelemetryConfig):
        self._config = config
        self._sanitizer = PiiSanitizer(config.pii_fields, enabled=config.sanitize_pii)
        self._breadcrumbs = BreadcrumbBuffer(config.max_breadcrumbs)

    def capture_error(
        self, error: BaseException, context: CaptureContext | Mapping[str, Any] | None = None
    ) -> ErrorEvent:
        """Build an ErrorEvent for *error*. Falls back to a minimal event on internal failure."""
        try:
            return self._build_error_event(error, context)
        except Exception:
            logger.warning("Falling back to minimal error event", exc_info=True)
            return self._minimal_error_event(error)

    def _build_error_event(
        self, error: BaseException, context: CaptureContext | Mapping[str, Any] | None
    ) -> ErrorEvent:
        error_type = type(error).__name__ or "Error"
        ctx = CaptureContext.coerce(context)
        endpoint = (ctx.request.path if ctx.request else None) or "unknown"
        trace_id, span_id = _current_trace_ids()

        try:
            extra = self._sanitize_context(ctx)
        except Exception as e:
            logger.warning("Context sanitization failed: %s", e)
            extra = {"sanitization_error": type(e).__name__}

        return ErrorEvent(
            event_id=generate_event_id(),
            timestamp=_now_iso(),
            environment=self._config.environment,
            project_id=self._config.project_id,
            exception_type=error_type,
            message=str(error),
            stack_trace=_format_stack(error),
            fingerprint=generate_fingerprint(error_type, self._config.service_name, endpoint),
            service=self._config.service_name,
            endpoint=endpoint,
            method=ctx.request.method if ctx.request else None,
            status_code=ctx.response.status_code if ctx.response else None,
            trace_id=trace_id,
            span_id=span_id,
            tags=self._event_tags(),
            extra=extra,
            breadcrumbs=self._breadcrumbs.snapshot(),
        )

    def _minimal_error_event(self, error: BaseException) -> ErrorEvent:
        error_type = type(error).__name__
        return ErrorEvent(
            event_id=generate_event_id(),
            timestamp=_now_iso(),
            environment=self._config.environment,
            project_id=self._config.project_id,
            exception_type=error_type,
            message=repr(error),
            stack_trace="",
            fingerprint=generate_fingerprint(error_type, self._config.service_name, "unknown"),
            service=self._config.service_name,
            endpoint="unknown",
        )

    def _sanitize_context(self, ctx: CaptureContext) -> dict[str, Any]:
        """Snapshot request/response/additional, redacting PII when enabled."""
        sanitizer = self._sanitizer
        sanitized: dict[str, Any] = {}

        if ctx.request:
            req = ctx.request
            sanitized["request"] = {
                "method": req.method,
                "path": req.path,
                "headers": sanitizer.headers(req.headers or {}),
                "query": sanitizer.value(dict(req.query or {})),
                "params": dict(req.params) if req.params is not None else None,
                "ip": req.ip,
                "user_agent": req.user_agent,
                "body": sanitizer.value(req.body),
            }

        if ctx.response:
            resp = ctx.response
            sanitized["response"] = {
                "status_code": resp.status_code,
                "headers": sanitizer.headers(resp.headers or {}),
                "duration": resp.duration,
                "body": sanitizer.value(resp.body),
            }

        if ctx.additional:
            sanitized["additional"] = sanitizer.value(ctx.additional)

        return sanitized

    def _event_tags(self) -> dict[str, str]:
        return {
            **self._config.tags,
            "environment": self._config.environment,
            "version": self._config.version,
            "service": self._config.service_name,
        }

    def capture_message(
        self,
        message: str,
        level: BreadcrumbLevel = "info",
        tags: Mapping[str, str] | None = None,
    ) -> MessageEvent:
        """Build a MessageEvent carrying the current breadcrumbs."""
        return MessageEvent(
            event_id=generate_event_id(),
            timestamp=_now_iso(),
            environment=self._config.environment,
            project_id=self._config.project_id,
            message=self._sanitizer.value(message),
            level=level,
            service=self._config.service_name,
            tags={**self._event_tags(), **(tags or {})},
            breadcrumbs=self._breadcrumbs.snapshot(),
        )

    def add_breadcrumb(
        self,
        message: str,
        category: str = "custom",
        level: BreadcrumbLevel = "info",
        data: dict[str, Any] | None = None,
    ) -> None:
        """Record a breadcrumb; data is sanitized when PII scrubbing is on."""
        self._breadcrumbs.add(
            Breadcrumb(
                timestamp=_now_iso(),
                category=category,
                message=message,
                level=level,
                data=self._sanitizer.value(data),
            )
        )

    def get_breadcrumbs(self) -> list[Breadcrumb]:
        """Copy of the current breadcrumb trail."""
        return self._breadcrumbs.get_all()

    def clear_breadcrumbs(self) -> None:
        """Drop all breadcrumbs."""
        self._breadcrumbs.clear()
