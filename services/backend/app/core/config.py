"""
Backend settings.

Composes shared settings and adds the work simulation knobs used by the
mock handlers.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from libs.core.config import (
    HttpServerSettings,
    ObservabilitySettings,
    ServiceIdentitySettings,
)


class BackendIdentitySettings(ServiceIdentitySettings):
    """Identity defaults for the backend; SERVICE_* env vars still override."""

    service_name: str = Field(default="backend", alias="SERVICE_NAME")
    service_version: Optional[str] = Field(default="1.0.0", alias="SERVICE_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    application: Optional[str] = Field(
        default="backend-api", alias="SERVICE_APPLICATION"
    )


class SimulationSettings(BaseSettings):
    """
    Simulated latency and failure for the mock endpoints.

    Environment variables (with BACKEND_ prefix):
      - PROCESS_FAILURE_RATE=0.05
      - USERS_LATENCY_MAX_MS=50
      - USER_LATENCY_MAX_MS=100
      - PROCESS_LATENCY_MAX_MS=100
    """

    model_config = SettingsConfigDict(
        env_prefix="BACKEND_", extra="ignore", env_ignore_empty=True
    )

    process_failure_rate: float = Field(default=0.05, ge=0.0, le=1.0)
    users_latency_max_ms: int = Field(default=50, ge=0)
    user_latency_max_ms: int = Field(default=100, ge=0)
    process_latency_max_ms: int = Field(default=100, ge=0)


class Settings(BaseSettings):
    """Typed settings for the backend service."""

    model_config = SettingsConfigDict(env_prefix="BACKEND_", extra="ignore")

    identity: ServiceIdentitySettings = Field(default_factory=BackendIdentitySettings)
    http: HttpServerSettings = Field(default_factory=HttpServerSettings)
    obs: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    simulation: SimulationSettings = Field(default_factory=SimulationSettings)


def load_settings() -> Settings:
    """Load and validate settings from environment."""
    return Settings()
