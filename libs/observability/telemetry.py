"""
Telemetry provider lifecycle.

``init_telemetry`` builds the resource, the tracer and meter providers and
the HTTP server instruments, and returns them as one explicit ``Telemetry``
object that the application passes to its router and middleware.

``Telemetry.shutdown`` flushes and closes the tracer provider, then the
meter provider. It is idempotent: only the first call does any work.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from opentelemetry.metrics import Counter, Histogram, Meter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SpanExporter
from opentelemetry.trace import Tracer

from libs.core.config import ObservabilitySettings, ServiceIdentitySettings

from .errors import TelemetryInitError, TelemetryShutdownError
from .metrics import (
    HttpServerInstruments,
    build_meter_provider,
    create_http_server_instruments,
    register_meter_provider,
)
from .resource import build_resource
from .tracing import build_tracer_provider, register_tracer_provider

logger = logging.getLogger(__name__)


class Telemetry:
    """Tracer, meter and instruments for one process, plus their shutdown."""

    def __init__(
        self,
        *,
        resource: Resource,
        tracer_provider: TracerProvider,
        meter_provider: MeterProvider,
        tracer: Tracer,
        meter: Meter,
        instruments: HttpServerInstruments,
        flush_timeout_millis: int = 5_000,
    ) -> None:
        self.resource = resource
        self.tracer_provider = tracer_provider
        self.meter_provider = meter_provider
        self.tracer = tracer
        self.meter = meter
        self.instruments = instruments
        self._flush_timeout_millis = flush_timeout_millis
        self._lock = threading.Lock()
        self._shut_down = False

    @property
    def request_counter(self) -> Counter:
        return self.instruments.request_counter

    @property
    def duration_histogram(self) -> Histogram:
        return self.instruments.duration_histogram

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down

    def shutdown(self) -> None:
        """
        Flush and close the tracer provider, then the meter provider.

        Both providers are always attempted. Calls after the first are no-ops.

        Raises:
            TelemetryShutdownError: chained to the first provider failure.
        """
        with self._lock:
            if self._shut_down:
                return
            self._shut_down = True

            errors: list[tuple[str, Exception]] = []
            for name, provider in (
                ("tracer", self.tracer_provider),
                ("meter", self.meter_provider),
            ):
                try:
                    if not provider.force_flush(
                        timeout_millis=self._flush_timeout_millis
                    ):
                        logger.warning(
                            "Telemetry flush did not complete",
                            extra={
                                "provider": name,
                                "timeout_ms": self._flush_timeout_millis,
                            },
                        )
                except Exception as exc:  # noqa: BLE001
                    logger.error(
                        "Telemetry provider flush failed",
                        exc_info=exc,
                        extra={"provider": name},
                    )
                    errors.append((name, exc))

                # A failed flush must not keep the provider open.
                try:
                    provider.shutdown()
                except Exception as exc:  # noqa: BLE001
                    logger.error(
                        "Telemetry provider shutdown failed",
                        exc_info=exc,
                        extra={"provider": name},
                    )
                    errors.append((name, exc))

        if errors:
            name, first = errors[0]
            raise TelemetryShutdownError(
                f"{name} provider shutdown failed: {first}"
            ) from first
        logger.info("Telemetry providers shut down")


def init_telemetry(
    *,
    identity: ServiceIdentitySettings,
    settings: ObservabilitySettings,
    span_exporter: Optional[SpanExporter] = None,
    metric_reader: Optional[MetricReader] = None,
    register_global: bool = True,
) -> Telemetry:
    """
    Initialize tracing + metrics for this process.

    Args:
        identity: service identity (resource attributes, scope names).
        settings: collector endpoint, protocol and batching settings.
        span_exporter: exporter override (tests); defaults to OTLP.
        metric_reader: reader override (tests); defaults to periodic OTLP push.
        register_global: install providers and propagators as process defaults.

    Returns:
        Telemetry: handle used by the app and for shutdown.

    Raises:
        TelemetryInitError: any part of the pipeline could not be built.
    """
    try:
        resource = build_resource(identity)
    except Exception as exc:  # noqa: BLE001
        raise TelemetryInitError("Failed to create resource") from exc

    try:
        tracer_provider = build_tracer_provider(
            resource=resource, settings=settings, span_exporter=span_exporter
        )
    except TelemetryInitError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise TelemetryInitError("Failed to create tracer provider") from exc

    try:
        meter_provider = build_meter_provider(
            resource=resource, settings=settings, metric_reader=metric_reader
        )
    except Exception as exc:  # noqa: BLE001
        tracer_provider.shutdown()
        if isinstance(exc, TelemetryInitError):
            raise
        raise TelemetryInitError("Failed to create meter provider") from exc

    tracer = tracer_provider.get_tracer(f"{identity.service_name}-tracer")
    meter = meter_provider.get_meter(f"{identity.service_name}-meter")
    try:
        instruments = create_http_server_instruments(meter)
    except Exception as exc:  # noqa: BLE001
        tracer_provider.shutdown()
        meter_provider.shutdown()
        if isinstance(exc, TelemetryInitError):
            raise
        raise TelemetryInitError("Failed to create instruments") from exc

    if register_global:
        register_tracer_provider(tracer_provider)
        register_meter_provider(meter_provider)

    logger.info(
        "Telemetry initialized",
        extra={
            "endpoint": settings.otel_exporter_otlp_endpoint,
            "protocol": settings.otel_exporter_otlp_protocol,
            "service": identity.service_name,
        },
    )
    return Telemetry(
        resource=resource,
        tracer_provider=tracer_provider,
        meter_provider=meter_provider,
        tracer=tracer,
        meter=meter,
        instruments=instruments,
        flush_timeout_millis=settings.flush_timeout_millis,
    )
