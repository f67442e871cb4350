"""OpenTelemetry tracing for reconcile ticks and storage driver calls.

Tracing is off unless an OTLP endpoint is configured. Without a tracer every
span helper is a no-op, so callers never check whether tracing is enabled.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Any, Iterator

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Tracer

from .constants import CONTROLLER_NAME, OPERATOR_NAMESPACE

logger = logging.getLogger(__name__)

_tracer: Tracer | None = None


def initialize_tracing(service_name: str = CONTROLLER_NAME) -> bool:
    """Install an OTLP exporting tracer provider.

    Environment Variables:
        OTEL_EXPORTER_OTLP_ENDPOINT: OTLP gRPC endpoint, tracing is off when unset
        OTEL_TRACES_ENABLED: Set to "false" to turn tracing off
        OTEL_SERVICE_NAME: Overrides ``service_name``
        OTEL_SERVICE_VERSION: Reported service version

    Returns:
        True if a tracer was installed
    """
    global _tracer

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")
    if not endpoint or os.getenv("OTEL_TRACES_ENABLED", "true").lower() == "false":
        logger.debug("Tracing disabled")
        return False

    service_name = os.getenv("OTEL_SERVICE_NAME", service_name)
    try:
        provider = TracerProvider(
            resource=Resource.create(
                {
                    "service.name": service_name,
                    "service.version": os.getenv("OTEL_SERVICE_VERSION", "unknown"),
                    "k8s.namespace.name": OPERATOR_NAMESPACE,
                }
            )
        )
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        trace.set_tracer_provider(provider)
    except Exception as e:
        # The operator runs without traces rather than not at all
        logger.warning(f"Failed to initialize tracing: {e}")
        return False

    _tracer = trace.get_tracer(service_name)
    logger.info(f"Exporting traces to {endpoint} as {service_name}")
    return True


def get_tracer() -> Tracer | None:
    return _tracer


@contextmanager
def trace_span(
    name: str,
    kind: str | None = None,
    attributes: dict[str, Any] | None = None,
) -> Iterator[Span | None]:
    """Run the block inside a span named ``name``.

    Args:
        name: Span name
        kind: Resource kind recorded as ``resource.kind``
        attributes: Additional span attributes

    Yields:
        The span, or None when tracing is off
    """
    tracer = get_tracer()
    if tracer is None:
        yield None
        return

    attrs = dict(attributes or {})
    if kind:
        attrs["resource.kind"] = kind

    with tracer.start_as_current_span(
        name, attributes=attrs, record_exception=False, set_status_on_exception=False
    ) as span:
        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(trace.Status(trace.StatusCode.ERROR, type(e).__name__))
            raise


def storage_span(backend: str, operation: str, kind: str | None = None) -> Any:
    """Span around one storage driver operation such as ``create``."""
    return trace_span(
        f"storage_{operation}",
        kind=kind,
        attributes={"storage.backend": backend, "storage.operation": operation},
    )


def add_span_attribute(key: str, value: Any) -> None:
    """Add an attribute to the current span, if one is recording."""
    span = trace.get_current_span()
    if span.is_recording():
        span.set_attribute(key, value)
