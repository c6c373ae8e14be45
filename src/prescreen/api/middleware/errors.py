"""Error handling middleware for mapping exceptions to HTTP responses."""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from prescreen.api.schemas.errors import APIError, ErrorCode
from prescreen.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    BatchStateError,
    ContextNotSetError,
    DecryptionError,
    GatewayError,
    GatewayNotConfigured,
    GatewayTimeout,
    GatewayUnavailable,
    NotFoundError,
    ValidationError,
)

logger = structlog.get_logger()

# Exception to HTTP status/error code mapping, most specific first
# Format: Exception -> (status_code, error_code)
EXCEPTION_MAP: dict[type[Exception], tuple[int, str]] = {
    ValidationError: (400, ErrorCode.INVALID_REQUEST.value),
    AuthenticationError: (401, ErrorCode.UNAUTHORIZED.value),
    AuthorizationError: (403, ErrorCode.FORBIDDEN.value),
    NotFoundError: (404, ErrorCode.NOT_FOUND.value),
    BatchStateError: (409, ErrorCode.CONFLICT.value),
    DecryptionError: (500, ErrorCode.DECRYPTION_FAILED.value),
    ContextNotSetError: (500, ErrorCode.INTERNAL_ERROR.value),
    GatewayNotConfigured: (503, ErrorCode.GATEWAY_NOT_CONFIGURED.value),
    GatewayTimeout: (504, ErrorCode.GATEWAY_TIMEOUT.value),
    GatewayUnavailable: (503, ErrorCode.GATEWAY_UNAVAILABLE.value),
    GatewayError: (502, ErrorCode.GATEWAY_ERROR.value),
}


def error_response(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Build an APIError JSON response carrying the request ID."""
    request_id = _get_request_id(request)
    error = APIError(
        error_code=error_code,
        message=message,
        details=details,
        request_id=request_id,
        timestamp=datetime.now(UTC),
    )
    return JSONResponse(
        status_code=status_code,
        content=error.model_dump(mode="json"),
        headers={"X-Request-ID": request_id},
    )


def _get_request_id(request: Request) -> str:
    """Extract request ID from state or return a placeholder."""
    if hasattr(request.state, "request_id"):
        rid = request.state.request_id
        return str(rid) if isinstance(rid, UUID) else rid
    return "unknown"


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware that catches exceptions and returns standardized error responses.

    Maps domain exceptions to HTTP status codes and formats all errors using
    the APIError schema. Unmapped exceptions become a generic 500 without
    detail.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and handle any exceptions."""
        try:
            return await call_next(request)
        except Exception as exc:
            return self._handle_exception(request, exc)

    def _handle_exception(self, request: Request, exc: Exception) -> JSONResponse:
        """Convert exception to JSON error response."""
        status_code, error_code, message, details = self._map_exception(exc)
        if status_code >= 500:
            logger.error(
                "request_failed",
                path=request.url.path,
                error_type=type(exc).__name__,
                status_code=status_code,
                exc_info=not isinstance(exc, GatewayError | DecryptionError),
            )
        return error_response(request, status_code, error_code, message, details)

    def _map_exception(self, exc: Exception) -> tuple[int, str, str, dict | None]:
        """Map exception to (status_code, error_code, message, details)."""
        for exc_type, (status_code, error_code) in EXCEPTION_MAP.items():
            if not isinstance(exc, exc_type):
                continue

            if isinstance(exc, DecryptionError):
                return status_code, error_code, "Stored value could not be decrypted", None

            if isinstance(exc, ContextNotSetError):
                return (
                    status_code,
                    error_code,
                    "Internal server error: context not initialized",
                    None,
                )

            return status_code, error_code, str(exc), self._details(exc)

        return 500, ErrorCode.INTERNAL_ERROR.value, "Internal server error", None

    def _details(self, exc: Exception) -> dict | None:
        if isinstance(exc, ValidationError) and exc.field:
            return {"field": exc.field}
        if isinstance(exc, AuthorizationError):
            return {"required_role": exc.required_role}
        if isinstance(exc, NotFoundError):
            return {"entity": exc.entity, "entity_id": str(exc.entity_id)}
        if isinstance(exc, BatchStateError):
            return {"batch_id": str(exc.batch_id), "status": exc.status}
        if isinstance(exc, GatewayError) and exc.status_code is not None:
            return {"status_code": exc.status_code}
        return None
