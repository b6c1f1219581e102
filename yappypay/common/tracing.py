"""OpenTelemetry helpers: provider setup, app instrumentation and flow spans."""

from contextlib import contextmanager
from typing import Iterator

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from yappypay.common.config import settings


def setup_tracing(service_name: str) -> None:
    """Register a tracer provider with OTLP HTTP exporter when tracing is enabled."""

    if not settings.tracing_enabled:
        return
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI) -> None:
    """Attach FastAPI auto-instrumentation for request spans."""

    FastAPIInstrumentor.instrument_app(app)


@contextmanager
def flow_span(name: str, **attributes: str) -> Iterator[trace.Span]:
    """Open a span for one payment-flow step; no-op until a provider is set."""

    tracer = trace.get_tracer("yappypay")
    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            if value:
                span.set_attribute(f"yappy.{key}", value)
        yield span
