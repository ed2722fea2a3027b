"""OpenTelemetry wiring plus the instruments the dashboard records into."""

import logging
import os
from functools import lru_cache

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

logger = logging.getLogger(__name__)


def _exporters(otlp_endpoint):
    """Return ``(span_exporter, metric_exporter)`` for the configured target."""
    if otlp_endpoint:
        return OTLPSpanExporter(endpoint=otlp_endpoint), OTLPMetricExporter(endpoint=otlp_endpoint)
    return ConsoleSpanExporter(), ConsoleMetricExporter()


def init_telemetry(app_name: str = "db-pulse") -> bool:
    """Install tracer and meter providers.  Returns False when telemetry is off."""
    otlp_endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")
    otel_debug = os.environ.get("OTEL_DEBUG", "false").lower() == "true"

    if not otlp_endpoint and not otel_debug:
        logger.info("OpenTelemetry is disabled (set OTEL_EXPORTER_OTLP_ENDPOINT to enable).")
        return False

    logger.info(f"Initializing OpenTelemetry for {app_name} (endpoint={otlp_endpoint or 'console'})")
    resource = Resource.create({"service.name": app_name})
    span_exporter, metric_exporter = _exporters(otlp_endpoint)

    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
    trace.set_tracer_provider(tracer_provider)

    reader = PeriodicExportingMetricReader(metric_exporter)
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[reader]))
    return True


def get_meter():
    """Get the application meter for custom metrics."""
    return metrics.get_meter("db-pulse.metrics")


def get_tracer():
    """Get the application tracer for custom spans."""
    return trace.get_tracer("db-pulse.tracer")


@lru_cache(maxsize=None)
def bridge_instruments():
    """Counters and histogram recorded around every backend bridge call."""
    meter = get_meter()
    calls = meter.create_counter(
        "db_pulse.bridge.calls",
        description="Backend commands invoked through the bridge",
    )
    failures = meter.create_counter(
        "db_pulse.bridge.failures",
        description="Backend commands that raised",
    )
    duration = meter.create_histogram(
        "db_pulse.bridge.duration",
        unit="ms",
        description="Wall-clock duration of backend commands",
    )
    return calls, failures, duration
