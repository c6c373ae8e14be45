"""Request logging middleware."""

import time
from collections.abc import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from prescreen.api.middleware.context import client_ip

logger = structlog.get_logger("prescreen.api.requests")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware that logs every HTTP request with its outcome.

    Only method, path and status are logged; query strings and bodies may
    carry personal data and are left out. Compliance events go through the
    AuditLogger in the services instead.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and log request/response."""
        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        status_code = response.status_code
        if status_code >= 500:
            log = logger.error
        elif status_code >= 400:
            log = logger.warning
        else:
            log = logger.info

        caller = getattr(request.state, "caller", None)
        log(
            "http_request",
            request_id=str(getattr(request.state, "request_id", "unknown")),
            actor_id=caller.actor_id if caller else None,
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=round(duration_ms, 2),
            client_ip=client_ip(request),
        )
        return response
