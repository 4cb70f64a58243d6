from __future__ import annotations

from fastapi import APIRouter
from opentelemetry import trace

from services.backend.app.api.deps import SettingsDep, SimulatorDep
from services.backend.app.core.exceptions import ErrorResponse, ProcessingFailedError
from services.backend.app.models.response import ProcessResponse

router = APIRouter()


@router.post(
    "/api/process",
    response_model=ProcessResponse,
    responses={500: {"model": ErrorResponse}},
    summary="Run simulated processing",
)
def process_handler(settings: SettingsDep, simulator: SimulatorDep) -> ProcessResponse:
    # Simulate heavy processing
    simulator.simulate_latency("process", settings.simulation.process_latency_max_ms)

    if simulator.should_fail("process"):
        trace.get_current_span().set_attribute("error", True)
        raise ProcessingFailedError()

    return ProcessResponse(message="Processing completed", status="success")
