"""
Request interceptor pipeline.

A pipeline is an ordered list of stages wrapped around a terminal endpoint.
Each stage receives the shared ``RequestExchange`` and a ``call_next``
continuation; code before ``await call_next()`` runs before the inner stages
and code after it (or in ``finally``) runs after them.

Default order (outermost first): logging -> metrics -> tracing -> endpoint.

Stages are framework independent: the HTTP adapter fills the exchange from
the incoming request and records the response status on it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Sequence

from opentelemetry import propagate
from opentelemetry.trace import Span, SpanKind, Status, StatusCode, Tracer

from .metrics import HttpServerInstruments

Next = Callable[[], Awaitable[Any]]

UNMATCHED_ROUTE = "unmatched"

# Status recorded when the endpoint raised instead of returning a response.
UNHANDLED_STATUS = 500


@dataclass(frozen=True)
class RequestTelemetryRecord:
    """What one finished request contributes to logs, metrics and traces."""

    method: str
    route: str
    path: str
    status_code: int
    duration_ms: float
    client_address: str


@dataclass
class RequestExchange:
    """Mutable per-request state shared by the pipeline stages."""

    method: str
    path: str
    route: str
    handler_name: str
    client_address: str
    headers: Mapping[str, str] = field(default_factory=dict)
    status_code: Optional[int] = None
    span: Optional[Span] = None
    started_at: float = field(default_factory=time.perf_counter)
    _duration_ms: Optional[float] = field(default=None, repr=False)

    @property
    def resolved_status(self) -> int:
        return self.status_code if self.status_code is not None else UNHANDLED_STATUS

    def elapsed_ms(self) -> float:
        """Elapsed time since entry. Fixed by the first call."""
        if self._duration_ms is None:
            self._duration_ms = (time.perf_counter() - self.started_at) * 1000.0
        return self._duration_ms

    def record(self) -> RequestTelemetryRecord:
        return RequestTelemetryRecord(
            method=self.method,
            route=self.route,
            path=self.path,
            status_code=self.resolved_status,
            duration_ms=self.elapsed_ms(),
            client_address=self.client_address,
        )


class RequestInterceptor(Protocol):
    async def __call__(self, exchange: RequestExchange, call_next: Next) -> Any: ...


class InterceptorPipeline:
    """Runs stages in order around a terminal endpoint."""

    def __init__(self, stages: Sequence[RequestInterceptor]) -> None:
        self._stages = tuple(stages)

    @property
    def stages(self) -> tuple[RequestInterceptor, ...]:
        return self._stages

    async def run(self, exchange: RequestExchange, endpoint: Next) -> Any:
        async def dispatch(index: int) -> Any:
            if index == len(self._stages):
                return await endpoint()
            return await self._stages[index](exchange, lambda: dispatch(index + 1))

        return await dispatch(0)


class LoggingStage:
    """Emit one structured log line per request, after all inner stages."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger(__name__)

    async def __call__(self, exchange: RequestExchange, call_next: Next) -> Any:
        try:
            return await call_next()
        finally:
            record = exchange.record()
            extra: dict[str, Any] = {
                "method": record.method,
                "path": record.path,
                "status": record.status_code,
                "duration_ms": round(record.duration_ms, 3),
                "client_ip": record.client_address,
            }
            if exchange.span is not None:
                ctx = exchange.span.get_span_context()
                if ctx.is_valid:
                    extra["trace_id"] = f"{ctx.trace_id:032x}"
                    extra["span_id"] = f"{ctx.span_id:016x}"
            self._logger.info("HTTP request", extra=extra)


class MetricsStage:
    """Count the request and observe its duration, tagged by route template."""

    def __init__(self, instruments: HttpServerInstruments) -> None:
        self._instruments = instruments

    async def __call__(self, exchange: RequestExchange, call_next: Next) -> Any:
        try:
            return await call_next()
        finally:
            attrs = {
                "method": exchange.method,
                "route": exchange.route,
                "status": exchange.resolved_status,
            }
            self._instruments.request_counter.add(1, attributes=attrs)
            self._instruments.duration_histogram.record(
                exchange.elapsed_ms(), attributes=attrs
            )


class TracingStage:
    """Wrap the endpoint in a SERVER span named after the handler."""

    def __init__(self, tracer: Tracer) -> None:
        self._tracer = tracer

    async def __call__(self, exchange: RequestExchange, call_next: Next) -> Any:
        parent = propagate.extract(exchange.headers)
        with self._tracer.start_as_current_span(
            exchange.handler_name,
            context=parent,
            kind=SpanKind.SERVER,
            attributes={
                "http.request.method": exchange.method,
                "http.route": exchange.route,
                "url.path": exchange.path,
                "client.address": exchange.client_address,
            },
        ) as span:
            exchange.span = span
            try:
                return await call_next()
            finally:
                # Inner code may resolve the route only after dispatch.
                span.update_name(exchange.handler_name)
                span.set_attribute("http.route", exchange.route)
                status = exchange.resolved_status
                span.set_attribute("http.response.status_code", status)
                if status >= 500:
                    span.set_status(Status(StatusCode.ERROR, f"HTTP {status}"))


def build_request_pipeline(
    *,
    tracer: Tracer,
    instruments: HttpServerInstruments,
    logger: Optional[logging.Logger] = None,
) -> InterceptorPipeline:
    """Logging -> metrics -> tracing, wrapping the handler."""
    return InterceptorPipeline(
        [LoggingStage(logger), MetricsStage(instruments), TracingStage(tracer)]
    )
