"""
Liveness endpoint.

Use for:
- container liveness
- basic process-level check

Should NOT check downstream dependencies.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter

from services.backend.app.api.deps import SettingsDep
from services.backend.app.models.response import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["system"])
def health_handler(settings: SettingsDep) -> HealthResponse:
    """Return liveness status."""
    ts = datetime.now(timezone.utc).isoformat(timespec="seconds")
    return HealthResponse(service=settings.identity.service_name, time=ts)
