"""In-process telemetry client: error capture, request metrics, batched delivery."""

from .config import ConfigError, TelemetryConfig, load_config, parse_dsn
from .fingerprint import generate_fingerprint
from .hooks import CrashHandlers
from .logging_config import get_logger, setup_logging
from .models import (
    Breadcrumb,
    CaptureContext,
    ErrorEvent,
    Event,
    MessageEvent,
    MetricEvent,
    RequestContext,
    ResponseContext,
    SpanEvent,
)
from .pii import sanitize, sanitize_headers
from .sdk import TelemetrySDK, get_instance, init, reset_instance

__all__ = [
    # Facade
    "TelemetrySDK",
    "init",
    "get_instance",
    "reset_instance",
    "CrashHandlers",
    # Configuration
    "ConfigError",
    "TelemetryConfig",
    "load_config",
    "parse_dsn",
    "setup_logging",
    "get_logger",
    # Models
    "Breadcrumb",
    "CaptureContext",
    "RequestContext",
    "ResponseContext",
    "Event",
    "ErrorEvent",
    "MessageEvent",
    "MetricEvent",
    "SpanEvent",
    # Helpers
    "generate_fingerprint",
    "sanitize",
    "sanitize_headers",
]
