"""
Request Tracing Middleware

Wraps each trigger request in a server span so processor and maintenance
spans nest under it, and records per-route request metrics.
"""

import logging
import time
from typing import Callable, Dict

from fastapi import Request, Response
from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware

from ....core.observability import (
    add_tenant_to_span,
    get_trace_id,
    get_tracer,
    record_counter,
    record_histogram,
)

logger = logging.getLogger(__name__)

# Health checks are polled constantly and carry no tenant work
UNTRACED_PATHS = frozenset({"/health", "/health/live", "/health/ready"})

TRACE_HEADER = "X-Trace-ID"


def _route_attributes(request: Request) -> Dict[str, str]:
    return {"method": request.method, "path": request.url.path}


class TracingMiddleware(BaseHTTPMiddleware):
    """
    Server span plus http_requests_total / http_request_duration_seconds.

    The org_id query parameter, when present, is attached to the span so a
    trace can be found by tenant. The trace id is echoed in X-Trace-ID.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in UNTRACED_PATHS:
            return await call_next(request)

        attributes = _route_attributes(request)
        started = time.perf_counter()
        status = "500"

        with get_tracer().start_as_current_span(
            f"{request.method} {request.url.path}",
            kind=trace.SpanKind.SERVER,
            attributes={"http.method": request.method, "http.route": request.url.path},
        ) as span:
            org_id = request.query_params.get("org_id")
            if org_id:
                add_tenant_to_span(org_id, span)

            try:
                response = await call_next(request)
                status = str(response.status_code)
                span.set_attribute("http.status_code", response.status_code)
                trace_id = get_trace_id()
                if trace_id:
                    response.headers[TRACE_HEADER] = trace_id
                return response
            finally:
                record_counter("http_requests_total", 1, {**attributes, "status": status})
                record_histogram(
                    "http_request_duration_seconds", time.perf_counter() - started, attributes
                )
