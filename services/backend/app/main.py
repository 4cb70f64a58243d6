"""
Backend service entry point.

Startup order: logging -> telemetry -> app (router + middleware) -> listener.
Shutdown order: listener (bounded drain) -> telemetry (flush, then close)
-> log flush.
"""

from __future__ import annotations

import random
import sys
from typing import Optional

from fastapi import FastAPI

from libs.core.server import ServiceRunner, UvicornListener
from libs.observability import (
    Telemetry,
    TelemetryInitError,
    get_logger,
    init_telemetry,
    instrument_fastapi,
    logging_session,
)
from services.backend.app.api.router import api_router
from services.backend.app.core.config import Settings, load_settings
from services.backend.app.core.exceptions import install_exception_handlers
from services.backend.app.core.simulator import RandomWorkSimulator, WorkSimulator
from services.backend.app.core.users import UserRepository


def create_app(
    *,
    settings: Settings,
    telemetry: Telemetry,
    simulator: Optional[WorkSimulator] = None,
) -> FastAPI:
    """
    Build the FastAPI app with request telemetry and exception handlers.

    Args:
        settings: service settings
        telemetry: initialized telemetry, injected into middleware and handlers
        simulator: latency/failure source; random by default

    Returns:
        FastAPI
    """
    if simulator is None:
        simulator = RandomWorkSimulator(
            failure_rate=settings.simulation.process_failure_rate,
            rng=random.Random(),
        )

    app = FastAPI(
        title=settings.identity.service_name,
        version=settings.identity.service_version or "0.0.0",
    )
    app.state.settings = settings
    app.state.telemetry = telemetry
    app.state.simulator = simulator
    app.state.users = UserRepository(
        tracer=telemetry.tracer,
        simulator=simulator,
        list_latency_max_ms=settings.simulation.users_latency_max_ms,
        lookup_latency_max_ms=settings.simulation.user_latency_max_ms,
    )

    install_exception_handlers(app)
    instrument_fastapi(app, telemetry)
    app.include_router(api_router)
    return app


def main() -> None:
    settings = load_settings()
    identity = settings.identity

    with logging_session(
        service_name=identity.service_name,
        service_version=identity.service_version,
        log_level=settings.obs.log_level,
        fmt=settings.obs.log_format,
    ):
        logger = get_logger(__name__)
        try:
            telemetry = init_telemetry(identity=identity, settings=settings.obs)
        except TelemetryInitError:
            logger.critical("Failed to initialize telemetry", exc_info=True)
            sys.exit(1)

        app = create_app(settings=settings, telemetry=telemetry)
        runner = ServiceRunner(
            listener=UvicornListener(
                app, host=settings.http.host, port=settings.http.port
            ),
            telemetry=telemetry,
            shutdown_timeout=settings.http.shutdown_timeout_seconds,
        )

        logger.info(
            "Starting backend server",
            extra={"host": settings.http.host, "port": settings.http.port},
        )
        exit_code = runner.run()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
