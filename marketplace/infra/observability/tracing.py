"""
OpenTelemetry Tracing

Configures an OpenTelemetry tracer provider for the order engine. Spans are
printed to the console when ``TRACING_CONSOLE_EXPORT`` is on; otherwise they are
only recorded in-process (exporters are the deployment's concern).
"""

import logging
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

logger = logging.getLogger(__name__)

_initialized = False


def setup_tracing(service_name: str = "marketplace-orders", console_export: bool = False) -> None:
    """
    Initialize OpenTelemetry tracing.

    Args:
        service_name: Name of the service for tracing
        console_export: Print finished spans to stdout

    Example:
        setup_tracing(service_name="marketplace-orders")
    """
    global _initialized

    if _initialized:
        logger.warning("Tracing already initialized. Skipping.")
        return

    resource = Resource(attributes={SERVICE_NAME: service_name})
    tracer_provider = TracerProvider(resource=resource)

    if console_export:
        tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("Console span exporter enabled")

    trace.set_tracer_provider(tracer_provider)

    _initialized = True
    logger.info(f"OpenTelemetry tracing initialized for service: {service_name}")


def get_tracer(name: Optional[str] = None) -> trace.Tracer:
    """
    Get tracer instance for creating custom spans.

    Uses the global provider at call time, so spans go to a no-op tracer until
    ``setup_tracing`` has run.

    Example:
        tracer = get_tracer(__name__)

        with tracer.start_as_current_span("place_order"):
            ...
    """
    return trace.get_tracer(name or "marketplace")


def add_span_attributes(span: trace.Span, **attributes) -> None:
    """
    Add custom attributes to a span. Values are stringified.

    Example:
        with tracer.start_as_current_span("place_order") as span:
            add_span_attributes(span, user_id=42, line_items=3)
    """
    for key, value in attributes.items():
        span.set_attribute(key, str(value))
