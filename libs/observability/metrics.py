"""
OpenTelemetry metrics provider (OTLP -> Collector) and HTTP server instruments.

Golden signals we emit:
- http.server.requests{method,route,status}   counter, unit {requests}
- http.server.duration{method,route,status}   histogram, unit ms
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from opentelemetry import metrics
from opentelemetry.metrics import Counter, Histogram, Meter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader
from opentelemetry.sdk.resources import Resource

from libs.core.config import ObservabilitySettings

from .errors import TelemetryInitError
from .exporters import build_metric_exporter, build_metric_reader

REQUEST_COUNTER_NAME = "http.server.requests"
DURATION_HISTOGRAM_NAME = "http.server.duration"


@dataclass(frozen=True)
class HttpServerInstruments:
    """Instruments written by the request telemetry middleware."""

    request_counter: Counter
    duration_histogram: Histogram


def build_meter_provider(
    *,
    resource: Resource,
    settings: ObservabilitySettings,
    metric_reader: Optional[MetricReader] = None,
) -> MeterProvider:
    """
    Create a meter provider bound to ``resource``.

    Args:
        resource: shared service resource
        settings: observability settings (exporter + push interval)
        metric_reader: reader override; defaults to periodic OTLP push

    Returns:
        MeterProvider
    """
    reader = metric_reader or build_metric_reader(
        build_metric_exporter(settings), settings
    )
    return MeterProvider(
        resource=resource, metric_readers=[reader], shutdown_on_exit=False
    )


def register_meter_provider(provider: MeterProvider) -> None:
    """Install ``provider`` as the process-wide default."""
    metrics.set_meter_provider(provider)


def create_http_server_instruments(meter: Meter) -> HttpServerInstruments:
    """
    Register the request counter and duration histogram on ``meter``.

    Raises:
        TelemetryInitError: instrument registration failed.
    """
    try:
        request_counter = meter.create_counter(
            name=REQUEST_COUNTER_NAME,
            description="Number of HTTP requests",
            unit="{requests}",
        )
        duration_histogram = meter.create_histogram(
            name=DURATION_HISTOGRAM_NAME,
            description="Duration of HTTP requests",
            unit="ms",
        )
    except Exception as exc:  # noqa: BLE001
        raise TelemetryInitError("Failed to create HTTP server instruments") from exc
    return HttpServerInstruments(
        request_counter=request_counter, duration_histogram=duration_histogram
    )
