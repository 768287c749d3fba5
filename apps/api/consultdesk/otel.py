from __future__ import annotations

from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from consultdesk.core.config import Settings

SERVICE_NAME = "consultdesk-api"
_CORRELATION_HEADER = b"x-correlation-id"

_provider: TracerProvider | None = None


def tracer_provider(version: str = "dev") -> TracerProvider:
    """The process-wide provider, registered globally the first time it is requested."""
    global _provider
    if _provider is None:
        resource = Resource.create({"service.name": SERVICE_NAME, "service.version": version})
        _provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(_provider)
    return _provider


def configure_tracing(settings: Settings) -> TracerProvider | None:
    if not settings.otel_enabled:
        return None
    provider = tracer_provider(settings.app_version)
    if settings.otel_console_exporter:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    return provider


def capture_spans_in_memory() -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    tracer_provider().add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def tag_correlation_id(span: Any, scope: dict[str, Any]) -> None:
    """Server request hook: copy the inbound correlation header onto the server span."""
    if span is None or not span.is_recording():
        return
    for name, value in scope.get("headers", []):
        if name == _CORRELATION_HEADER:
            span.set_attribute("correlation_id", value.decode("latin-1"))
            return
