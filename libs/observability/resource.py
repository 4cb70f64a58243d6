"""
Service resource descriptor.

The resource is built once at startup and shared by the tracer and meter
providers. Extra tags can be supplied via OTEL_RESOURCE_ATTRIBUTES; the
identity attributes below always take precedence.
"""

from __future__ import annotations

from opentelemetry.sdk.resources import (
    DEPLOYMENT_ENVIRONMENT,
    SERVICE_NAME,
    SERVICE_VERSION,
    Resource,
)

from libs.core.config import ServiceIdentitySettings

APPLICATION = "application"


def build_resource(identity: ServiceIdentitySettings) -> Resource:
    """
    Build the immutable resource attached to every exported span and metric.

    Args:
        identity: service identity settings

    Returns:
        Resource
    """
    attrs: dict[str, str] = {
        SERVICE_NAME: identity.service_name,
        DEPLOYMENT_ENVIRONMENT: identity.environment,
    }
    if identity.service_version:
        attrs[SERVICE_VERSION] = identity.service_version
    if identity.application:
        attrs[APPLICATION] = identity.application
    return Resource.create(attrs)
