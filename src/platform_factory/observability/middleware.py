"""HTTP middleware for the platform factory API.

- ``RequestIdMiddleware``: accepts a well-formed ``X-Request-ID`` or mints
  one, exposes it on ``request.state`` and ``request_id_ctx``, echoes it.
- ``MetricsMiddleware``: Prometheus request counters and latency.
- ``RequestLoggingMiddleware``: one ``request_completed`` line per request.

Metric and log labels use the matched route template
(``/api/v1/platforms``), never the raw URL, so unknown paths collapse
into a single ``unmatched`` series.
"""

from __future__ import annotations

import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .logging import get_logger, request_id_ctx
from .metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_FLIGHT,
    HTTP_REQUESTS_TOTAL,
)

logger = get_logger(__name__)

_VALID_REQUEST_ID = re.compile(r"^[a-zA-Z0-9\-]{8,128}$")

UNMATCHED_ROUTE = "unmatched"


def route_label(request: Request) -> str:
    """Template of the route that handled ``request``.

    Only meaningful after routing ran (i.e. after ``call_next``).
    """
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    return template if isinstance(template, str) else UNMATCHED_ROUTE


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Propagate a request ID through ``request.state`` and the log context."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        rid = request.headers.get("x-request-id", "")
        if not _VALID_REQUEST_ID.match(rid):
            rid = str(uuid.uuid4())

        request.state.request_id = rid
        token = request_id_ctx.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)
        response.headers["X-Request-ID"] = rid
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        status = "500"
        HTTP_REQUESTS_IN_FLIGHT.inc()
        start = time.perf_counter()
        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            HTTP_REQUESTS_IN_FLIGHT.dec()
            path = route_label(request)
            HTTP_REQUEST_DURATION_SECONDS.labels(
                method=request.method, path=path,
            ).observe(time.perf_counter() - start)
            HTTP_REQUESTS_TOTAL.labels(
                method=request.method, path=path, status=status,
            ).inc()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "request_completed",
            method=request.method,
            route=route_label(request),
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return response
