"""Distributed tracing configuration for provider search services.

Wraps OpenTelemetry setup with an OTLP/HTTP exporter and provides small
conveniences for spans and scoped context managers used by the query handler
and the projection synchronizer. When no tracer provider has been configured
the OpenTelemetry API hands out no-op spans, so callers never need to branch.
"""

from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode
import structlog

logger = structlog.get_logger("tracing")


def configure_tracing(
    service_name: str,
    otlp_endpoint: str = "http://localhost:4318/v1/traces",
    environment: str = "local",
) -> Optional[trace.Tracer]:
    """Configure distributed tracing for a service.

    Parameters
    - service_name: Logical service identifier used in trace resources
    - otlp_endpoint: Collector endpoint for exporting spans
    - environment: Value for the ``deployment.environment`` resource attribute

    Returns
    - A tracer instance for ad-hoc span creation, or ``None`` on failure
    """
    try:
        tracer_provider = TracerProvider(
            resource=Resource.create({
                "service.name": service_name,
                "service.version": "0.1.0",
                "deployment.environment": environment,
            })
        )
        tracer_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint))
        )
        trace.set_tracer_provider(tracer_provider)

        logger.info(
            "Distributed tracing configured",
            service_name=service_name,
            otlp_endpoint=otlp_endpoint
        )
        return trace.get_tracer(service_name)

    except Exception as e:
        logger.error("Failed to configure tracing", error=str(e))
        return None


def create_span(tracer: trace.Tracer, operation_name: str, **attributes) -> trace.Span:
    """Create a new span with attributes."""
    span = tracer.start_span(operation_name)
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(key, str(value))
    return span


class TracingContext:
    """Context manager for tracing operations.

    Starts a span on entry and ensures it ends, recording success or error.
    """

    def __init__(self, tracer: trace.Tracer, operation_name: str, **attributes):
        self.tracer = tracer
        self.operation_name = operation_name
        self.attributes = attributes
        self.span: Optional[trace.Span] = None

    def __enter__(self) -> trace.Span:
        self.span = create_span(self.tracer, self.operation_name, **self.attributes)
        return self.span

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.span:
            if exc_type is not None:
                self.span.set_status(Status(StatusCode.ERROR, f"{exc_type.__name__}: {exc_val}"))
            else:
                self.span.set_status(Status(StatusCode.OK))
            self.span.end()
        return False


class SearchTracer:
    """Span helpers with stable names for search and projection work."""

    def __init__(self, service_name: str):
        self.service_name = service_name
        self.tracer = trace.get_tracer(service_name)

    def trace_search_query(self, radius_km: float, skip: int, take: int, **attributes) -> TracingContext:
        """Trace a provider search."""
        return TracingContext(
            self.tracer,
            "provider_search.query",
            radius_km=radius_km,
            skip=skip,
            take=take,
            **attributes
        )

    def trace_projection_event(self, event_type: str, provider_id: str, **attributes) -> TracingContext:
        """Trace application of a lifecycle event to the read model."""
        return TracingContext(
            self.tracer,
            "provider_search.projection",
            event_type=event_type,
            provider_id=provider_id,
            **attributes
        )


def get_search_tracer(service_name: str) -> SearchTracer:
    """Get a search tracer for a service."""
    return SearchTracer(service_name)
