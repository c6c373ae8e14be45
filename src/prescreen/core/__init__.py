"""Core services and utilities for the prescreen service.

``prescreen.core.audit`` and ``prescreen.core.encryption`` are imported from
their modules directly; they depend on the persistence and settings layers.
"""

from .context import (
    Caller,
    RequestContext,
    Role,
    create_context,
    get_current_context,
    get_current_context_or_none,
    request_context,
    reset_context,
    set_context,
)
from .exceptions import (
    AuthenticationError,
    AuthorizationError,
    BatchStateError,
    ContextNotSetError,
    DecryptionError,
    EncryptionError,
    EncryptionKeyError,
    GatewayAuthenticationError,
    GatewayBlockedError,
    GatewayError,
    GatewayNotConfigured,
    GatewayTimeout,
    GatewayUnavailable,
    NotFoundError,
    ValidationError,
)

__all__ = [
    # Context
    "Caller",
    "RequestContext",
    "Role",
    "create_context",
    "get_current_context",
    "get_current_context_or_none",
    "request_context",
    "reset_context",
    "set_context",
    # Exceptions
    "AuthenticationError",
    "AuthorizationError",
    "BatchStateError",
    "ContextNotSetError",
    "DecryptionError",
    "EncryptionError",
    "EncryptionKeyError",
    "GatewayAuthenticationError",
    "GatewayBlockedError",
    "GatewayError",
    "GatewayNotConfigured",
    "GatewayTimeout",
    "GatewayUnavailable",
    "NotFoundError",
    "ValidationError",
]
