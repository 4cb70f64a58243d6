class TelemetryError(Exception):
    """Base telemetry error."""


class TelemetryInitError(TelemetryError):
    """Raised when a resource, exporter, provider or instrument cannot be built."""


class TelemetryShutdownError(TelemetryError):
    """Raised when a provider fails to flush or shut down."""
