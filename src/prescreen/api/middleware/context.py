"""Request context middleware for propagating context through the request lifecycle."""

from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from uuid_utils.compat import uuid7

from prescreen.core.context import create_context, request_context


def client_ip(request: Request) -> str | None:
    """Extract client IP from request, considering proxy headers."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # First IP in the chain is the original client
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host

    return None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware that sets up RequestContext for each request.

    Requires:
        request.state.caller: Set by AuthenticationMiddleware (optional on
            unauthenticated paths)

    Sets:
        request.state.request_id: The generated request ID (UUIDv7)
        X-Request-ID response header: For client correlation
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request within a RequestContext."""
        request_id = uuid7()
        request.state.request_id = request_id

        ctx = create_context(
            caller=getattr(request.state, "caller", None),
            ip_address=client_ip(request),
            user_agent=request.headers.get("User-Agent"),
            request_id=request_id,
        )

        with request_context(ctx):
            response = await call_next(request)

        response.headers["X-Request-ID"] = str(request_id)
        return response
