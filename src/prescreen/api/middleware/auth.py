"""Authentication middleware for the session layer's forwarded identity."""

import hmac
import re
from collections.abc import Callable
from datetime import UTC, datetime

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from prescreen.api.schemas.errors import APIError, ErrorCode
from prescreen.core.context import Caller, Role

# Paths that don't require authentication
SKIP_AUTH_PATHS = {
    "/health",
    "/health/db",
    "/metrics",
    "/docs",
    "/redoc",
    "/openapi.json",
}

_BEARER_RE = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Middleware that validates the shared Bearer secret and reads the caller.

    The session layer in front of this service authenticates users and
    forwards ``Authorization: Bearer <API_SECRET_KEY>`` together with
    ``X-Actor-Id``, ``X-Actor-Email`` and ``X-Actor-Role``.

    Sets:
        request.state.caller: The authenticated Caller
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and validate authentication."""
        if request.url.path in SKIP_AUTH_PATHS:
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if not auth_header:
            return self._unauthorized_response("Missing Authorization header")

        match = _BEARER_RE.match(auth_header)
        if not match:
            return self._unauthorized_response("Invalid Authorization header format")

        if not self._validate_token(match.group(1), request):
            return self._unauthorized_response("Invalid API key")

        actor_id = (request.headers.get("X-Actor-Id") or "").strip()
        if not actor_id:
            return self._unauthorized_response("Missing X-Actor-Id header")

        role_header = (request.headers.get("X-Actor-Role") or Role.USER.value).strip().lower()
        try:
            role = Role(role_header)
        except ValueError:
            return self._unauthorized_response("Invalid X-Actor-Role header")

        request.state.caller = Caller(
            actor_id=actor_id,
            email=request.headers.get("X-Actor-Email") or None,
            role=role,
        )
        return await call_next(request)

    def _validate_token(self, token: str, request: Request) -> bool:
        """Compare the Bearer token with the configured secret.

        Without a configured secret every token is rejected.
        """
        secret = request.app.state.settings.API_SECRET_KEY
        if secret is None:
            return False
        return hmac.compare_digest(token.encode(), secret.get_secret_value().encode())

    def _unauthorized_response(self, message: str) -> JSONResponse:
        """Create a 401 unauthorized response."""
        error = APIError(
            error_code=ErrorCode.UNAUTHORIZED.value,
            message=message,
            details=None,
            request_id="unknown",  # Request ID not yet assigned
            timestamp=datetime.now(UTC),
        )

        return JSONResponse(
            status_code=401,
            content=error.model_dump(mode="json"),
            headers={"WWW-Authenticate": "Bearer"},
        )
