"""Field-level encryption for SSN and date of birth.

Values are sealed with AES-256-GCM under a versioned keyring. The stored
envelope is ``v<version>:<base64(nonce || ciphertext || tag)>`` and the
version tag is bound as associated data.

Usage:
    from prescreen.core.encryption import get_encryptor, normalize_ssn, last_four

    ssn = normalize_ssn("123-45-6789")
    envelope = get_encryptor().encrypt(ssn)
    assert get_encryptor().decrypt(envelope) == ssn
    assert last_four(ssn) == "6789"
"""

import base64
import binascii
import re
import secrets
from datetime import date, datetime
from typing import TYPE_CHECKING

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from prescreen.core.exceptions import (
    DecryptionError,
    EncryptionError,
    EncryptionKeyError,
    ValidationError,
)

if TYPE_CHECKING:
    from prescreen.config.settings import Settings

# Constants
NONCE_SIZE = 12  # 96 bits recommended for AES-GCM
TAG_SIZE = 16
KEY_SIZE = 32  # 256 bits for AES-256
SSN_LENGTH = 9

_ENVELOPE_RE = re.compile(r"^v(\d+):([A-Za-z0-9+/]+={0,2})$")
_NON_DIGITS_RE = re.compile(r"\D")


class Encryptor:
    """AES-256-GCM encryptor with a versioned keyring.

    Encryption always uses ``current_version``; decryption selects the key by
    the envelope's version tag, so older keys can stay in the ring while
    their envelopes are re-encrypted.
    """

    def __init__(self, keys: dict[int, bytes], current_version: int):
        """Initialize encryptor with a keyring.

        Args:
            keys: Mapping of key version to 32-byte key
            current_version: Version used for new envelopes

        Raises:
            EncryptionKeyError: If a key has the wrong size or the current
                version is missing from the ring
        """
        if current_version not in keys:
            raise EncryptionKeyError(f"Key version {current_version} is not in the keyring")
        self._ciphers: dict[int, AESGCM] = {}
        for version, key in keys.items():
            if len(key) != KEY_SIZE:
                raise EncryptionKeyError(
                    f"Encryption key v{version} must be {KEY_SIZE} bytes, got {len(key)}"
                )
            self._ciphers[version] = AESGCM(key)
        self.current_version = current_version

    @classmethod
    def from_key(cls, key: bytes, version: int = 1) -> "Encryptor":
        """Build an encryptor with a single key."""
        return cls({version: key}, current_version=version)

    def encrypt(self, plaintext: str) -> str:
        """Seal a string into a versioned envelope.

        A fresh random nonce is drawn on every call, so equal plaintexts
        produce different envelopes.

        Raises:
            EncryptionError: If encryption fails
        """
        version = self.current_version
        nonce = secrets.token_bytes(NONCE_SIZE)
        try:
            sealed = self._ciphers[version].encrypt(
                nonce, plaintext.encode("utf-8"), _aad(version)
            )
        except (OverflowError, ValueError) as e:
            raise EncryptionError("Encryption failed") from e
        return f"v{version}:{base64.b64encode(nonce + sealed).decode('ascii')}"

    def decrypt(self, envelope: str) -> str:
        """Open a versioned envelope.

        Raises:
            DecryptionError: For a malformed envelope, an unknown key version
                or a failed authentication tag. Never returns the input.
        """
        match = _ENVELOPE_RE.match(envelope or "")
        if match is None:
            raise DecryptionError("Malformed encrypted value")

        version = int(match.group(1))
        cipher = self._ciphers.get(version)
        if cipher is None:
            raise DecryptionError(f"Unknown key version v{version}")

        try:
            raw = base64.b64decode(match.group(2), validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError("Malformed encrypted value") from e
        if len(raw) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionError("Encrypted value too short")

        try:
            plaintext = cipher.decrypt(raw[:NONCE_SIZE], raw[NONCE_SIZE:], _aad(version))
        except InvalidTag as e:
            raise DecryptionError("Authentication tag verification failed") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted value is not valid text") from e


def _aad(version: int) -> bytes:
    return f"v{version}".encode("ascii")


# =============================================================================
# Key management
# =============================================================================


def generate_key() -> bytes:
    """Generate a new random 256-bit encryption key."""
    return secrets.token_bytes(KEY_SIZE)


def key_to_string(key: bytes) -> str:
    """Convert key to base64 string for storage."""
    return base64.b64encode(key).decode("ascii")


def key_from_string(key_string: str) -> bytes:
    """Convert base64 string back to key bytes.

    Raises:
        EncryptionKeyError: If key string is invalid
    """
    try:
        key = base64.b64decode(key_string, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EncryptionKeyError("Encryption key is not valid base64") from e
    if len(key) != KEY_SIZE:
        raise EncryptionKeyError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
    return key


# Global encryptor instance (lazy-loaded)
_encryptor: Encryptor | None = None


def get_encryptor() -> Encryptor:
    """Get the global encryptor instance.

    Loads the key from settings on first call.

    Raises:
        EncryptionKeyError: If ENCRYPTION_KEY is not configured
    """
    global _encryptor

    if _encryptor is None:
        from prescreen.config.settings import get_settings

        _encryptor = encryptor_from_settings(get_settings())

    return _encryptor


def encryptor_from_settings(settings: "Settings") -> Encryptor:
    """Build an encryptor from ``ENCRYPTION_KEY`` and ``ENCRYPTION_KEY_VERSION``.

    Raises:
        EncryptionKeyError: If ENCRYPTION_KEY is not configured or invalid
    """
    if settings.ENCRYPTION_KEY is None:
        raise EncryptionKeyError(
            "ENCRYPTION_KEY is not configured. Set it in environment variables."
        )
    key = key_from_string(settings.ENCRYPTION_KEY.get_secret_value())
    return Encryptor.from_key(key, version=settings.ENCRYPTION_KEY_VERSION)


def reset_encryptor() -> None:
    """Reset the global encryptor (for testing)."""
    global _encryptor
    _encryptor = None


# =============================================================================
# SSN / DOB helpers
# =============================================================================


def normalize_ssn(value: str) -> str:
    """Strip everything but digits and require exactly nine.

    Raises:
        ValidationError: If the result is not nine digits
    """
    digits = _NON_DIGITS_RE.sub("", value or "")
    if len(digits) != SSN_LENGTH:
        raise ValidationError("SSN must contain exactly 9 digits", field="ssn")
    return digits


def last_four(ssn_digits: str) -> str:
    """Return the trailing four digits of a normalized SSN.

    Raises:
        ValidationError: If the input is not exactly nine digits
    """
    if len(ssn_digits) != SSN_LENGTH or not ssn_digits.isdigit():
        raise ValidationError("SSN must contain exactly 9 digits", field="ssn")
    return ssn_digits[-4:]


def normalize_dob(value: str) -> str:
    """Parse a date of birth into ``YYYY-MM-DD``.

    Accepts ``YYYY-MM-DD`` or ``MM/DD/YYYY``; the date must exist on the
    calendar and may not be in the future.

    Raises:
        ValidationError: If the value cannot be parsed
    """
    text = (value or "").strip()
    parsed: date | None = None
    for fmt in ("%Y-%m-%d", "%m/%d/%Y"):
        try:
            parsed = datetime.strptime(text, fmt).date()
            break
        except ValueError:
            continue
    if parsed is None:
        raise ValidationError("Date of birth must be YYYY-MM-DD or MM/DD/YYYY", field="dob")
    if parsed > date.today():
        raise ValidationError("Date of birth cannot be in the future", field="dob")
    return parsed.isoformat()


def mask_ssn(last4: str | None) -> str:
    """Render an SSN for display from its last four digits."""
    if not last4:
        return "***-**-****"
    return f"***-**-{last4}"


def mask_dob(dob: str | None) -> str:
    """Render a date of birth showing only the year."""
    if not dob or len(dob) < 4:
        return "**/**/****"
    return f"**/**/{dob[:4]}"
