"""
OpenTelemetry Metrics

Instruments for outbox delivery, pruning, dead-lettering and the HTTP
trigger. Nothing is recorded until init_metrics() has registered them, so
library code can call record_counter() unconditionally.
"""

import logging
from typing import Any, Dict, Optional

from opentelemetry import metrics
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import SERVICE_NAME, Resource

logger = logging.getLogger(__name__)

METER_NAME = "outbox-relay"

# name -> (description, unit)
COUNTERS = {
    "outbox_processed_total": ("Outbox events delivered to subscribers", "1"),
    "outbox_delivery_failures_total": ("Failed broadcast attempts", "1"),
    "outbox_invocations_skipped_total": ("Invocations skipped on tenant lock contention", "1"),
    "outbox_pruned_total": ("Delivered events removed by the pruner", "1"),
    "dlq_entries_total": ("Events moved to the dead-letter store", "1"),
    "http_requests_total": ("Trigger endpoint requests", "1"),
}

HISTOGRAMS = {
    "outbox_processing_duration_seconds": ("Processor invocation duration", "s"),
    "outbox_prune_duration_seconds": ("Pruner invocation duration", "s"),
    "http_request_duration_seconds": ("Trigger endpoint latency", "s"),
}

_meter: Optional[metrics.Meter] = None
_counters: Dict[str, metrics.Counter] = {}
_histograms: Dict[str, metrics.Histogram] = {}


def init_metrics(
    service_name: str = METER_NAME,
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
    export_interval_ms: int = 60000
) -> metrics.Meter:
    """
    Install a MeterProvider and register the outbox instruments.

    Args:
        service_name: Resource service name
        otlp_endpoint: OTLP gRPC collector, e.g. "http://localhost:4317"
        console_export: Also print metrics to stdout
        export_interval_ms: Export period
    """
    global _meter

    exporters = []
    if otlp_endpoint:
        exporters.append(OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True))
    if console_export:
        exporters.append(ConsoleMetricExporter())

    readers = [
        PeriodicExportingMetricReader(exporter, export_interval_millis=export_interval_ms)
        for exporter in exporters
    ]
    provider = MeterProvider(
        resource=Resource.create({SERVICE_NAME: service_name}),
        metric_readers=readers,
    )
    metrics.set_meter_provider(provider)

    _meter = metrics.get_meter(service_name)
    _register_instruments(_meter)

    logger.info(
        f"OTel metrics initialized: {service_name} "
        f"(otlp={otlp_endpoint or 'off'}, console={console_export})"
    )
    return _meter


def _register_instruments(meter: metrics.Meter) -> None:
    for name, (description, unit) in COUNTERS.items():
        _counters[name] = meter.create_counter(name, description=description, unit=unit)
    for name, (description, unit) in HISTOGRAMS.items():
        _histograms[name] = meter.create_histogram(name, description=description, unit=unit)


def get_meter() -> metrics.Meter:
    global _meter
    if _meter is None:
        _meter = metrics.get_meter(METER_NAME)
    return _meter


def record_counter(name: str, value: int = 1, attributes: Dict[str, Any] = None):
    """Add to a registered counter; unknown names are ignored."""
    counter = _counters.get(name)
    if counter is not None:
        counter.add(value, attributes or {})


def record_histogram(name: str, value: float, attributes: Dict[str, Any] = None):
    """Record into a registered histogram; unknown names are ignored."""
    histogram = _histograms.get(name)
    if histogram is not None:
        histogram.record(value, attributes or {})
