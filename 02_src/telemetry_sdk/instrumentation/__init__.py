"""Tracing instrumentation module."""

from .exporter import SpanEventExporter, determine_operation_type
from .tracing import build_tracer_provider, install_tracing

__all__ = [
    "SpanEventExporter",
    "build_tracer_provider",
    "determine_operation_type",
    "install_tracing",
]
