"""
Shared fixtures.

- In-memory span exporter / metric reader wired into a real SDK pipeline
- Scripted work simulator (no randomness, optional real latency)
- FastAPI app + TestClient built from them
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Callable, Iterator, Optional

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import SpanKind

from libs.core.config import ObservabilitySettings
from libs.observability import Telemetry, init_telemetry
from services.backend.app.core.config import BackendIdentitySettings, Settings
from services.backend.app.main import create_app

_ENV_PREFIXES = ("OTEL_", "SERVICE_", "BACKEND_", "LOG_", "TELEMETRY_")
_ENV_NAMES = ("ENVIRONMENT", "HOST", "PORT", "SHUTDOWN_TIMEOUT_SECONDS")


class ScriptedWorkSimulator:
    """Deterministic WorkSimulator: failures are queued, latency is opt-in."""

    def __init__(self) -> None:
        self.latency_calls: list[tuple[str, int]] = []
        self.latency_s = 0.0
        self.on_latency: Optional[Callable[[str], None]] = None
        self._failures: list[bool] = []

    def fail_next(self, *outcomes: bool) -> None:
        self._failures.extend(outcomes)

    def simulate_latency(self, operation: str, max_ms: int) -> None:
        self.latency_calls.append((operation, max_ms))
        if self.on_latency is not None:
            self.on_latency(operation)
        if self.latency_s:
            time.sleep(self.latency_s)

    def should_fail(self, operation: str) -> bool:
        return self._failures.pop(0) if self._failures else False


@pytest.fixture(autouse=True)
def hermetic_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ignore service/telemetry env vars from the machine running the tests."""
    for name in list(os.environ):
        if name.startswith(_ENV_PREFIXES) or name in _ENV_NAMES:
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def restore_root_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def metric_reader() -> InMemoryMetricReader:
    return InMemoryMetricReader()


@pytest.fixture
def telemetry(
    span_exporter: InMemorySpanExporter, metric_reader: InMemoryMetricReader
) -> Iterator[Telemetry]:
    handle = init_telemetry(
        identity=BackendIdentitySettings(),
        settings=ObservabilitySettings(),
        span_exporter=span_exporter,
        metric_reader=metric_reader,
        register_global=False,
    )
    yield handle
    handle.shutdown()


@pytest.fixture
def finished_spans(
    telemetry: Telemetry, span_exporter: InMemorySpanExporter
) -> Callable[[], tuple[ReadableSpan, ...]]:
    def _read() -> tuple[ReadableSpan, ...]:
        if not telemetry.is_shut_down:
            telemetry.tracer_provider.force_flush()
        return span_exporter.get_finished_spans()

    return _read


@pytest.fixture
def server_spans(
    finished_spans: Callable[[], tuple[ReadableSpan, ...]],
) -> Callable[[], list[ReadableSpan]]:
    def _read() -> list[ReadableSpan]:
        return [s for s in finished_spans() if s.kind == SpanKind.SERVER]

    return _read


@pytest.fixture
def metric_points(metric_reader: InMemoryMetricReader) -> Callable[[str], list[Any]]:
    """Return the data points collected so far for one metric name."""

    def _read(name: str) -> list[Any]:
        data = metric_reader.get_metrics_data()
        if data is None:
            return []
        points: list[Any] = []
        for resource_metrics in data.resource_metrics:
            for scope_metrics in resource_metrics.scope_metrics:
                for metric in scope_metrics.metrics:
                    if metric.name == name:
                        points.extend(metric.data.data_points)
        return points

    return _read


@pytest.fixture
def simulator() -> ScriptedWorkSimulator:
    return ScriptedWorkSimulator()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def app(
    settings: Settings, telemetry: Telemetry, simulator: ScriptedWorkSimulator
) -> FastAPI:
    return create_app(settings=settings, telemetry=telemetry, simulator=simulator)


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
