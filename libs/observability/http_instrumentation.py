"""
HTTP instrumentation for FastAPI/Starlette apps.

- Reads the route that handled the request from the ASGI scope once the
  router has dispatched it, and normalises it to a route template
  (``/api/users/{id}`` -> ``/api/users/:id``) so labels never carry raw path
  parameters. Routes declared on included routers are resolved the same way
  whether the framework flattens them onto the app or keeps them nested.
- Runs the request through the interceptor pipeline (logging -> metrics ->
  tracing) with the route handler as the terminal endpoint.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping, Optional

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .pipeline import (
    UNMATCHED_ROUTE,
    InterceptorPipeline,
    RequestExchange,
    build_request_pipeline,
)
from .telemetry import Telemetry

logger = logging.getLogger(__name__)

_PATH_PARAM = re.compile(r"\{([^}:]+)(?::[^}]*)?\}")


def to_route_template(path: str) -> str:
    """
    Convert a Starlette path (``/users/{id}``, ``/files/{p:path}``) to the
    ``:param`` template form used in telemetry labels.
    """
    return _PATH_PARAM.sub(r":\1", path)


def _render(path: str, params: Mapping[str, Any]) -> str:
    return _PATH_PARAM.sub(lambda m: str(params.get(m.group(1), "")), path)


def matched_route(
    scope: Mapping[str, Any], *, path: str, method: str
) -> tuple[Optional[str], Optional[str]]:
    """
    Route template and handler name for a dispatched request.

    The router stores the handling route in ``scope["route"]``. Its ``path``
    may be the full path or only the part below an included router's
    prefix; any concrete prefix in front of it is taken from the request
    path.

    Args:
        scope: ASGI scope after dispatch
        path: request path relative to the app
        method: request method

    Returns:
        (route template, handler name), or (None, None) when no route
        matched. The handler name is None when the route exists but does
        not accept ``method``.
    """
    route = scope.get("route")
    route_path = getattr(route, "path", None)
    if route_path is None:
        return (None, None)

    rendered = _render(route_path, scope.get("path_params") or {})
    prefix = path[: len(path) - len(rendered)] if path.endswith(rendered) else ""
    template = prefix + to_route_template(route_path)

    methods = getattr(route, "methods", None)
    if methods and method not in methods:
        return (template, None)
    return (template, getattr(route, "name", None))


def client_address(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


class RequestTelemetryMiddleware(BaseHTTPMiddleware):
    """Per-request telemetry: one span, one counter add, one histogram record, one log line."""

    def __init__(self, app: Any, *, pipeline: InterceptorPipeline) -> None:
        super().__init__(app)
        self._pipeline = pipeline

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        method = request.method
        root_path = request.scope.get("root_path", "")
        app_path = request.url.path
        if root_path and app_path.startswith(root_path):
            app_path = app_path[len(root_path) :] or "/"

        exchange = RequestExchange(
            method=method,
            path=request.url.path,
            route=UNMATCHED_ROUTE,
            handler_name=f"HTTP {method}",
            client_address=client_address(request),
            headers=request.headers,
        )

        async def endpoint() -> Response:
            try:
                response = await call_next(request)
                exchange.status_code = response.status_code
                return response
            finally:
                # The router writes the matched route into the shared scope,
                # also when the handler raised.
                route, handler_name = matched_route(
                    request.scope, path=app_path, method=method
                )
                if route is not None:
                    exchange.route = route
                if handler_name:
                    exchange.handler_name = handler_name

        return await self._pipeline.run(exchange, endpoint)


def instrument_fastapi(app: FastAPI, telemetry: Telemetry) -> InterceptorPipeline:
    """
    Install request telemetry on a FastAPI app.

    Args:
        app: FastAPI instance
        telemetry: initialized telemetry (tracer + instruments)

    Returns:
        InterceptorPipeline: the installed pipeline
    """
    pipeline = build_request_pipeline(
        tracer=telemetry.tracer,
        instruments=telemetry.instruments,
        logger=logging.getLogger("http.access"),
    )
    app.add_middleware(RequestTelemetryMiddleware, pipeline=pipeline)
    logger.info("Request telemetry middleware enabled")
    return pipeline
