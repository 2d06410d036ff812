"""
Observability Module

Tracing, metrics and structured logging on OpenTelemetry.
"""

from .tracing import (
    init_tracing,
    get_tracer,
    get_current_span,
    get_trace_id,
    get_span_id,
    create_span,
    traced,
    trace_context_headers,
    add_tenant_to_span,
    add_event_to_span,
)
from .metrics import (
    init_metrics,
    get_meter,
    record_counter,
    record_histogram,
)
from .logging import configure_logging

__all__ = [
    # Tracing
    "init_tracing",
    "get_tracer",
    "get_current_span",
    "get_trace_id",
    "get_span_id",
    "create_span",
    "traced",
    "trace_context_headers",
    "add_tenant_to_span",
    "add_event_to_span",
    # Metrics
    "init_metrics",
    "get_meter",
    "record_counter",
    "record_histogram",
    # Logging
    "configure_logging",
]
