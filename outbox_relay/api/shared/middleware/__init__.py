"""
Shared API Middleware

Cross-cutting concerns for the job endpoints:
- Error handling with the standard envelope
- OpenTelemetry request tracing
- Processor authentication
"""

from .error_handler import register_error_handlers
from .tracing import TracingMiddleware
from .auth import require_processor_auth

__all__ = [
    "register_error_handlers",
    "TracingMiddleware",
    "require_processor_auth",
]
