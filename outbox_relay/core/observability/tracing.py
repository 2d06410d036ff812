"""
OpenTelemetry Tracing

One span per processor invocation and maintenance job, nested under the
HTTP server span when triggered over the API. The W3C trace context is
forwarded on outgoing broadcast requests.
"""

import asyncio
import logging
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.propagate import inject
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, Status, StatusCode

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "outbox-relay"

_tracer: Optional[trace.Tracer] = None


def init_tracing(
    service_name: str = DEFAULT_SERVICE_NAME,
    service_version: str = "1.0.0",
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False
) -> trace.Tracer:
    """
    Install a TracerProvider.

    Without an endpoint or console export spans are still created (and
    carry trace ids into the logs) but go nowhere.
    """
    global _tracer

    provider = TracerProvider(resource=Resource.create({
        SERVICE_NAME: service_name,
        SERVICE_VERSION: service_version,
    }))
    if otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
    if console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer(service_name, service_version)

    logger.info(
        f"OTel tracing initialized: {service_name} v{service_version} "
        f"(otlp={otlp_endpoint or 'off'}, console={console_export})"
    )
    return _tracer


def get_tracer() -> trace.Tracer:
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer(DEFAULT_SERVICE_NAME)
    return _tracer


def get_current_span() -> Optional[Span]:
    return trace.get_current_span()


def _valid_context(span: Optional[Span]):
    if span is None:
        return None
    context = span.get_span_context()
    return context if context.is_valid else None


def get_trace_id() -> Optional[str]:
    """Hex trace id of the active span, if any."""
    context = _valid_context(get_current_span())
    return format(context.trace_id, "032x") if context else None


def get_span_id() -> Optional[str]:
    context = _valid_context(get_current_span())
    return format(context.span_id, "016x") if context else None


@contextmanager
def create_span(
    name: str,
    attributes: Dict[str, Any] = None,
    kind: trace.SpanKind = trace.SpanKind.INTERNAL
) -> Iterator[Span]:
    """
    Run a block inside a new span; exceptions mark it as failed.

    Usage:
        with create_span("outbox.process", {"organization_id": org_id}) as span:
            span.set_attribute("outbox.processed", processed)
    """
    with get_tracer().start_as_current_span(name, kind=kind, attributes=attributes or {}) as span:
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise


def traced(name: Optional[str] = None, attributes: Dict[str, Any] = None) -> Callable:
    """Wrap a coroutine function in create_span()."""

    def decorator(func: Callable) -> Callable:
        if not asyncio.iscoroutinefunction(func):
            raise TypeError("traced() only wraps coroutine functions")
        span_name = name or func.__qualname__

        @wraps(func)
        async def wrapper(*args, **kwargs):
            with create_span(span_name, attributes):
                return await func(*args, **kwargs)

        return wrapper

    return decorator


def trace_context_headers() -> Dict[str, str]:
    """traceparent/tracestate headers for an outgoing request."""
    carrier: Dict[str, str] = {}
    inject(carrier)
    return carrier


def add_tenant_to_span(organization_id: str, span: Optional[Span] = None):
    span = span or get_current_span()
    if span:
        span.set_attribute("organization_id", organization_id)


def add_event_to_span(name: str, attributes: Dict[str, Any] = None, span: Optional[Span] = None):
    span = span or get_current_span()
    if span:
        span.add_event(name, attributes or {})
