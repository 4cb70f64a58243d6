"""
OpenTelemetry tracing provider (OTLP -> Collector).

Every span is sampled (ALWAYS_ON). Finished spans are queued in a
BatchSpanProcessor and only exported once ended.
"""

from __future__ import annotations

from typing import Optional

from opentelemetry import trace
from opentelemetry.baggage.propagation import W3CBaggagePropagator
from opentelemetry.propagate import set_global_textmap
from opentelemetry.propagators.composite import CompositePropagator
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SpanExporter
from opentelemetry.sdk.trace.sampling import ALWAYS_ON
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from libs.core.config import ObservabilitySettings

from .exporters import build_span_exporter, build_span_processor


def build_tracer_provider(
    *,
    resource: Resource,
    settings: ObservabilitySettings,
    span_exporter: Optional[SpanExporter] = None,
) -> TracerProvider:
    """
    Create a tracer provider bound to ``resource``.

    Args:
        resource: shared service resource
        settings: observability settings (exporter + batching)
        span_exporter: exporter override; defaults to OTLP from settings

    Returns:
        TracerProvider
    """
    exporter = span_exporter or build_span_exporter(settings)
    provider = TracerProvider(
        sampler=ALWAYS_ON, resource=resource, shutdown_on_exit=False
    )
    provider.add_span_processor(build_span_processor(exporter, settings))
    return provider


def register_tracer_provider(provider: TracerProvider) -> None:
    """Install ``provider`` and W3C propagators as process-wide defaults."""
    trace.set_tracer_provider(provider)
    set_global_textmap(
        CompositePropagator(
            [TraceContextTextMapPropagator(), W3CBaggagePropagator()]
        )
    )
