"""Observability middleware for HTTP metrics."""

import time
from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from prescreen.observability import record_http_request


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Middleware that records Prometheus metrics for HTTP requests.

    Requests are labelled by route template rather than raw path, so lead
    and batch ids never become label values.
    """

    EXCLUDED_PATHS = {"/health", "/health/db", "/metrics"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request with metric instrumentation."""
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            record_http_request(
                method=request.method,
                route=self._route_template(request),
                status_code=status_code,
                duration=time.perf_counter() - start_time,
            )

    def _route_template(self, request: Request) -> str:
        route = request.scope.get("route")
        return getattr(route, "path", None) or "unmatched"
