"""
Shared observability helpers.

This package provides:
- Structured logging with trace/span correlation
- OpenTelemetry tracing and metrics providers (OTLP -> Collector)
- Request telemetry middleware for FastAPI apps

Design goals:
- Explicit telemetry handle passed to the app (no hidden globals in handlers)
- Environment-variable overrides (12-factor)
- Fail fast: no telemetry-disabled mode
"""

from __future__ import annotations

from .errors import TelemetryError, TelemetryInitError, TelemetryShutdownError
from .http_instrumentation import instrument_fastapi
from .logging import configure_logging, get_logger, logging_session
from .telemetry import Telemetry, init_telemetry

__all__ = [
    "Telemetry",
    "TelemetryError",
    "TelemetryInitError",
    "TelemetryShutdownError",
    "configure_logging",
    "get_logger",
    "init_telemetry",
    "instrument_fastapi",
    "logging_session",
]
