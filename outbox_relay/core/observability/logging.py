"""
Structured Logging

JSON log lines correlated with the active OpenTelemetry span. Records
produced inside a tenant scope carry the organization_id once the tenant
filter from outbox_relay.core.outbox.scope is installed.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Iterable, Optional

from .tracing import get_span_id, get_trace_id

# LogRecord attributes that are not user-supplied extras
_RECORD_FIELDS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime", "trace_id", "organization_id"}

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "opentelemetry", "aiosqlite", "asyncio")


def _jsonable(value):
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "trace_id": get_trace_id(),
            "span_id": get_span_id(),
        }

        organization_id = getattr(record, "organization_id", None)
        if organization_id:
            entry["organization_id"] = organization_id

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update(
            (key, _jsonable(value))
            for key, value in vars(record).items()
            if key not in _RECORD_FIELDS and not key.startswith("_")
        )
        return json.dumps(entry)


class TraceContextFilter(logging.Filter):
    """Exposes %(trace_id)s to the plain-text format."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = get_trace_id() or "-"
        return True


def configure_logging(
    level: str = "INFO",
    structured: bool = True,
    service_name: str = "outbox-relay",
    stream: Optional[IO] = None,
    filters: Iterable[logging.Filter] = ()
):
    """
    Replace the root handlers with one stream handler.

    Args:
        level: Root log level name
        structured: JSON lines instead of the plain-text format
        service_name: Name reported in the startup line
        stream: Destination (stdout by default; the CLI runner uses stderr
            so its JSON result stays alone on stdout)
        filters: Extra handler filters, e.g. the tenant filter
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(numeric_level)
    if structured:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [%(trace_id)s] %(message)s"
        ))

    handler.addFilter(TraceContextFilter())
    for extra in filters:
        handler.addFilter(extra)
    root_logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging configured: {service_name}, level={level}, structured={structured}"
    )
