"""
Shared, typed configuration (12-factor) for all services.

Uses pydantic-settings so config is:
- typed
- validated
- env-driven
- consistent across services

Rule:
- libs/* should define *shared* settings building blocks
- each service defines its own Settings that composes these blocks
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LogFormat = Literal["json", "text"]
OtlpProtocol = Literal["http/protobuf", "grpc"]

DEFAULT_OTLP_ENDPOINT = "otel-collector.observability.svc.cluster.local:4317"


class ObservabilitySettings(BaseSettings):
    """Observability settings shared by all services."""

    model_config = SettingsConfigDict(
        env_prefix="", extra="ignore", env_ignore_empty=True, populate_by_name=True
    )

    log_level: str = Field(default="info", alias="LOG_LEVEL")
    log_format: LogFormat = Field(default="json", alias="LOG_FORMAT")

    # OTLP exporter configuration (service -> OTel Collector)
    otel_exporter_otlp_endpoint: str = Field(
        default=DEFAULT_OTLP_ENDPOINT,
        alias="OTEL_EXPORTER_OTLP_ENDPOINT",
        description="Collector address (host:port for grpc, URL for http/protobuf)",
    )
    otel_exporter_otlp_protocol: OtlpProtocol = Field(
        default="grpc",
        alias="OTEL_EXPORTER_OTLP_PROTOCOL",
        description="OTLP protocol (grpc or http/protobuf)",
    )
    otel_exporter_otlp_insecure: bool = Field(
        default=True,
        alias="OTEL_EXPORTER_OTLP_INSECURE",
        description="Connect to the collector without transport encryption",
    )

    metric_export_interval_millis: int = Field(
        default=60_000,
        alias="OTEL_METRIC_EXPORT_INTERVAL",
        ge=100,
        description="Metric push interval in milliseconds",
    )

    # BatchSpanProcessor tuning (standard OTEL_BSP_* names, milliseconds)
    bsp_schedule_delay_millis: int = Field(
        default=5_000, alias="OTEL_BSP_SCHEDULE_DELAY", ge=1
    )
    bsp_max_queue_size: int = Field(default=2048, alias="OTEL_BSP_MAX_QUEUE_SIZE", ge=1)
    bsp_max_export_batch_size: int = Field(
        default=512, alias="OTEL_BSP_MAX_EXPORT_BATCH_SIZE", ge=1
    )
    bsp_export_timeout_millis: int = Field(
        default=30_000, alias="OTEL_BSP_EXPORT_TIMEOUT", ge=1
    )

    flush_timeout_millis: int = Field(
        default=5_000,
        alias="TELEMETRY_FLUSH_TIMEOUT_MILLIS",
        ge=1,
        description="Upper bound for each provider flush during shutdown",
    )


class HttpServerSettings(BaseSettings):
    """HTTP server settings shared by FastAPI services."""

    model_config = SettingsConfigDict(
        env_prefix="", extra="ignore", env_ignore_empty=True, populate_by_name=True
    )

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8080, alias="PORT", ge=0, le=65535)

    shutdown_timeout_seconds: float = Field(
        default=5.0,
        alias="SHUTDOWN_TIMEOUT_SECONDS",
        gt=0,
        description="Bound on the graceful drain of in-flight requests",
    )


class ServiceIdentitySettings(BaseSettings):
    """Service identity used for telemetry resource attributes and logs."""

    model_config = SettingsConfigDict(
        env_prefix="", extra="ignore", env_ignore_empty=True, populate_by_name=True
    )

    service_name: str = Field(default="unknown-service", alias="SERVICE_NAME")
    service_version: Optional[str] = Field(default=None, alias="SERVICE_VERSION")
    environment: str = Field(default="local", alias="ENVIRONMENT")
    application: Optional[str] = Field(default=None, alias="SERVICE_APPLICATION")
