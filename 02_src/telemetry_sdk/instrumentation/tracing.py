"""TracerProvider wiring for SpanEventExporter."""

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from ..config import TelemetryConfig
from ..logging_config import get_logger
from ..transport import BatchSender
from .exporter import SpanEventExporter

logger = get_logger(__name__)


def build_tracer_provider(sender: BatchSender, config: TelemetryConfig) -> TracerProvider:
    """TracerProvider tagged with the service identity, exporting into *sender*."""
    resource = Resource.create(
        {
            "service.name": config.service_name,
            "service.version": config.version,
            "deployment.environment": config.environment,
            "telemetry.project_id": config.project_id,
        }
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(SpanEventExporter(sender, config)))
    return provider


def install_tracing(sender: BatchSender, config: TelemetryConfig) -> TracerProvider:
    """Build the provider and register it as the global tracer provider."""
    provider = build_tracer_provider(sender, config)
    trace.set_tracer_provider(provider)
    logger.info("Tracing installed for service %s", config.service_name)
    return provider
