"""Domain exceptions for the prescreen service.

Each exception maps to one HTTP status in the error-handling middleware.
Bureau no-hit and address mismatch are outcomes, not exceptions.
"""

from uuid import UUID

from prescreen.utils.exceptions import PrescreenError


class ContextNotSetError(PrescreenError):
    """Raised when attempting to access request context that is not set."""

    def __init__(self, message: str = "Request context is not set"):
        super().__init__(message)


class ValidationError(PrescreenError):
    """Raised when caller input fails a domain rule.

    Attributes:
        field: The offending field, when one can be named
    """

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field

    def __str__(self) -> str:
        if self.field:
            return f"{self.field}: {self.args[0]}"
        return self.args[0]


class AuthenticationError(PrescreenError):
    """Raised when the caller could not be identified."""

    def __init__(self, reason: str = "Authentication required"):
        super().__init__(reason)
        self.reason = reason


class AuthorizationError(PrescreenError):
    """Raised when an authenticated caller lacks the required role.

    Attributes:
        required_role: The role the operation requires
    """

    def __init__(self, required_role: str = "admin"):
        super().__init__(f"Role '{required_role}' is required for this operation")
        self.required_role = required_role


class NotFoundError(PrescreenError):
    """Raised when a referenced entity does not exist.

    Attributes:
        entity: Entity type name (e.g., "lead")
        entity_id: Identifier that was looked up
    """

    def __init__(self, entity: str, entity_id: UUID | str):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class BatchStateError(PrescreenError):
    """Raised when a batch operation does not fit the batch's current status.

    Attributes:
        batch_id: The batch in question
        status: The batch's current status
        expected: Statuses the operation accepts
    """

    def __init__(
        self,
        batch_id: UUID,
        status: str,
        expected: tuple[str, ...],
        reason: str | None = None,
    ):
        super().__init__(
            reason or f"Batch {batch_id} is '{status}', expected one of: {', '.join(expected)}"
        )
        self.batch_id = batch_id
        self.status = status
        self.expected = expected


# =============================================================================
# Encryption
# =============================================================================


class EncryptionError(PrescreenError):
    """Base exception for encryption errors."""

    pass


class EncryptionKeyError(EncryptionError):
    """Raised when the encryption key is missing or invalid."""

    pass


class DecryptionError(EncryptionError):
    """Raised when a stored envelope cannot be decrypted.

    Covers malformed envelopes, unknown key versions and failed tag
    verification. The message never contains ciphertext or plaintext.
    """

    def __init__(self, message: str = "Failed to decrypt value"):
        super().__init__(message)


# =============================================================================
# Bureau gateway
# =============================================================================


class GatewayError(PrescreenError):
    """Raised when the bureau gateway call fails as a whole.

    Attributes:
        status_code: HTTP status returned by the gateway, if any
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GatewayNotConfigured(GatewayError):
    """Raised when gateway credentials are incomplete."""

    def __init__(self, message: str = "Bureau gateway is not configured"):
        super().__init__(message)


class GatewayAuthenticationError(GatewayError):
    """Raised when the gateway rejects our credentials."""

    pass


class GatewayBlockedError(GatewayError):
    """Raised when the gateway refuses the request because of our source IP."""

    pass


class GatewayUnavailable(GatewayError):
    """Raised for network errors and 5xx responses once retries are exhausted."""

    pass


class GatewayTimeout(GatewayUnavailable):
    """Raised when a gateway call exceeds its timeout."""

    pass
