"""OpenTelemetry tracing for the chat moderation service.

Spans are opened around HTTP requests, oracle calls and moderation actions.
Attribute keys shared by those spans live here so dashboards can rely on
one naming scheme (``arcade.<area>.<field>``).
"""

import logging
from contextlib import contextmanager
from typing import Optional

from opentelemetry import trace
from opentelemetry.propagate import set_global_textmap
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_NAMESPACE, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

logger = logging.getLogger(__name__)

TRACER_NAME = "arcade_chat"
SERVICE_NAMESPACE_VALUE = "arcade"

# Span attribute keys
ATTR_AUTOMOD_CONTEXT = "arcade.automod.context"
ATTR_AUTOMOD_ALLOWED = "arcade.automod.allowed"
ATTR_AUTOMOD_SEVERITY = "arcade.automod.severity"
ATTR_MODERATION_ACTION = "arcade.moderation.action"
ATTR_MODERATION_TARGET = "arcade.moderation.target_user_id"
ATTR_MODERATION_ACTOR = "arcade.moderation.actor_id"

_tracer: Optional[trace.Tracer] = None
_provider: Optional[TracerProvider] = None


def setup_tracing(
    service_name: str,
    service_version: str,
    environment: str = "development",
    otlp_endpoint: Optional[str] = None,
    enable_console_export: bool = False,
) -> trace.Tracer:
    """Install the tracer provider for this process.

    Args:
        service_name: Reported as ``service.name``
        service_version: Reported as ``service.version``
        environment: Reported as ``deployment.environment``
        otlp_endpoint: Export spans over OTLP/gRPC when set
        enable_console_export: Also print spans to stdout

    Returns:
        The service tracer
    """
    global _tracer, _provider

    resource = Resource.create({
        SERVICE_NAME: service_name,
        SERVICE_NAMESPACE: SERVICE_NAMESPACE_VALUE,
        SERVICE_VERSION: service_version,
        "deployment.environment": environment,
    })
    _provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        except ImportError:
            logger.warning("OTLP exporter not installed, skipping (pip install arcade-chat[otlp])")
        else:
            _provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
            logger.info(f"Exporting spans to {otlp_endpoint}")

    if enable_console_export:
        _provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(_provider)
    set_global_textmap(TraceContextTextMapPropagator())

    _tracer = trace.get_tracer(TRACER_NAME, service_version)
    logger.info(f"Tracing initialized for {service_name} v{service_version}")
    return _tracer


def get_tracer() -> trace.Tracer:
    """The service tracer, or a no-op tracer before setup."""
    if _tracer is None:
        return trace.get_tracer(TRACER_NAME)
    return _tracer


def get_trace_id() -> Optional[str]:
    """Current trace id as hex, for log correlation."""
    context = trace.get_current_span().get_span_context()
    return format(context.trace_id, "032x") if context.is_valid else None


def get_span_id() -> Optional[str]:
    context = trace.get_current_span().get_span_context()
    return format(context.span_id, "016x") if context.is_valid else None


@contextmanager
def create_span(
    name: str,
    attributes: Optional[dict] = None,
    kind: trace.SpanKind = trace.SpanKind.INTERNAL,
):
    """Open a span named ``name`` as the current span."""
    with get_tracer().start_as_current_span(name, kind=kind, attributes=attributes or {}) as span:
        yield span


def add_span_attributes(attributes: dict) -> None:
    span = trace.get_current_span()
    for key, value in attributes.items():
        span.set_attribute(key, value)


def record_exception(exception: BaseException, attributes: Optional[dict] = None) -> None:
    """Record an exception on the current span and mark it as failed."""
    span = trace.get_current_span()
    span.record_exception(exception, attributes=attributes)
    span.set_status(Status(StatusCode.ERROR, str(exception)))


def shutdown_tracing() -> None:
    """Flush pending spans and stop exporting."""
    if _provider:
        _provider.shutdown()
        logger.info("Tracing shutdown complete")
