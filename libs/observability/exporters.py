"""
OTLP exporter adapter (service -> OTel Collector).

Builds the span/metric exporters for the configured protocol and wraps them
in the SDK components that batch and periodically push:

- spans: BatchSpanProcessor (bounded queue, flushed on schedule or size)
- metrics: PeriodicExportingMetricReader (push every export interval)

Protocols:
- grpc (default): endpoint is ``host:port``; scheme is optional
- http/protobuf: endpoint is a base URL; ``/v1/traces`` or ``/v1/metrics``
  is appended
"""

from __future__ import annotations

from opentelemetry.sdk.metrics.export import MetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter

from libs.core.config import ObservabilitySettings

from .errors import TelemetryInitError

_GRPC = "grpc"
_HTTP_PROTOBUF = "http/protobuf"


def _http_url(endpoint: str, suffix: str) -> str:
    base = endpoint if "://" in endpoint else f"http://{endpoint}"
    return f"{base.rstrip('/')}{suffix}"


def build_span_exporter(settings: ObservabilitySettings) -> SpanExporter:
    """
    Create the OTLP span exporter described by ``settings``.

    Raises:
        TelemetryInitError: unknown protocol or exporter construction failure.
    """
    protocol = settings.otel_exporter_otlp_protocol
    endpoint = settings.otel_exporter_otlp_endpoint
    try:
        if protocol == _GRPC:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                OTLPSpanExporter,
            )

            return OTLPSpanExporter(
                endpoint=endpoint, insecure=settings.otel_exporter_otlp_insecure
            )
        if protocol == _HTTP_PROTOBUF:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
                OTLPSpanExporter as HttpOTLPSpanExporter,
            )

            return HttpOTLPSpanExporter(endpoint=_http_url(endpoint, "/v1/traces"))
    except Exception as exc:  # noqa: BLE001
        raise TelemetryInitError(
            f"Failed to initialize OTLP trace exporter (protocol={protocol}, endpoint={endpoint})"
        ) from exc
    raise TelemetryInitError(f"Unsupported OTLP protocol: {protocol}")


def build_metric_exporter(settings: ObservabilitySettings) -> MetricExporter:
    """
    Create the OTLP metric exporter described by ``settings``.

    Raises:
        TelemetryInitError: unknown protocol or exporter construction failure.
    """
    protocol = settings.otel_exporter_otlp_protocol
    endpoint = settings.otel_exporter_otlp_endpoint
    try:
        if protocol == _GRPC:
            from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
                OTLPMetricExporter,
            )

            return OTLPMetricExporter(
                endpoint=endpoint, insecure=settings.otel_exporter_otlp_insecure
            )
        if protocol == _HTTP_PROTOBUF:
            from opentelemetry.exporter.otlp.proto.http.metric_exporter import (
                OTLPMetricExporter as HttpOTLPMetricExporter,
            )

            return HttpOTLPMetricExporter(endpoint=_http_url(endpoint, "/v1/metrics"))
    except Exception as exc:  # noqa: BLE001
        raise TelemetryInitError(
            f"Failed to initialize OTLP metric exporter (protocol={protocol}, endpoint={endpoint})"
        ) from exc
    raise TelemetryInitError(f"Unsupported OTLP protocol: {protocol}")


def build_span_processor(
    exporter: SpanExporter, settings: ObservabilitySettings
) -> BatchSpanProcessor:
    """Queue finished spans and export them in batches."""
    return BatchSpanProcessor(
        exporter,
        max_queue_size=settings.bsp_max_queue_size,
        schedule_delay_millis=settings.bsp_schedule_delay_millis,
        max_export_batch_size=min(
            settings.bsp_max_export_batch_size, settings.bsp_max_queue_size
        ),
        export_timeout_millis=settings.bsp_export_timeout_millis,
    )


def build_metric_reader(
    exporter: MetricExporter, settings: ObservabilitySettings
) -> PeriodicExportingMetricReader:
    """Push collected metric points every export interval."""
    return PeriodicExportingMetricReader(
        exporter, export_interval_millis=settings.metric_export_interval_millis
    )
