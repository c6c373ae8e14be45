"""Request context for async-safe caller propagation.

The context carries who is calling and from where, so the audit logger and
the log processor can attribute events without threading the caller through
every function.

Usage:
    from prescreen.core.context import Caller, create_context, request_context

    ctx = create_context(caller=Caller(actor_id="u-1", email="a@b.c", role="admin"))
    with request_context(ctx):
        await service.decrypt_field(lead_id, "ssn")
"""

from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field
from uuid_utils.compat import uuid7

from prescreen.core.exceptions import ContextNotSetError


class Role(str, Enum):
    """Caller role as forwarded by the session layer."""

    ADMIN = "admin"
    USER = "user"


class Caller(BaseModel):
    """Identity of an authenticated caller."""

    actor_id: str
    email: str | None = None
    role: Role = Role.USER

    model_config = {"frozen": True}

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class RequestContext(BaseModel):
    """Context for a single request/operation."""

    request_id: UUID = Field(default_factory=uuid7)
    caller: Caller | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    initiated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_audit_dict(self) -> dict[str, Any]:
        """Convert context to a dictionary for audit logging."""
        return {
            "request_id": str(self.request_id),
            "actor_id": self.caller.actor_id if self.caller else None,
            "actor_email": self.caller.email if self.caller else None,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }


# =============================================================================
# Context Variable Management
# =============================================================================

_request_context: ContextVar[RequestContext | None] = ContextVar("request_context", default=None)


def get_current_context() -> RequestContext:
    """Get the current request context.

    Raises:
        ContextNotSetError: If no context is set in the current execution context
    """
    ctx = _request_context.get()
    if ctx is None:
        raise ContextNotSetError(
            "No request context is set. Use request_context() context manager."
        )
    return ctx


def get_current_context_or_none() -> RequestContext | None:
    """Get the current request context, or None if not set."""
    return _request_context.get()


def set_context(ctx: RequestContext) -> Token[RequestContext | None]:
    """Set the request context and return a token for restoration.

    This is a low-level API. Prefer using the request_context() context manager.
    """
    return _request_context.set(ctx)


def reset_context(token: Token[RequestContext | None]) -> None:
    """Reset the context to its previous value using a token."""
    _request_context.reset(token)


@contextmanager
def request_context(ctx: RequestContext):
    """Context manager for setting request context.

    Works for both sync and async code because contextvars are copied into
    tasks created inside the block.

    Args:
        ctx: The context to set for the duration of the block

    Yields:
        The context that was set
    """
    token = set_context(ctx)
    try:
        yield ctx
    finally:
        reset_context(token)


def create_context(
    *,
    caller: Caller | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    request_id: UUID | None = None,
) -> RequestContext:
    """Factory function to create a RequestContext with defaults."""
    return RequestContext(
        request_id=request_id or uuid7(),
        caller=caller,
        ip_address=ip_address,
        user_agent=user_agent,
    )
