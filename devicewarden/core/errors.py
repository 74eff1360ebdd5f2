"""
Error Taxonomy

Failures are split by who has to react to them:

- Crypto failures (KeyNotInitialized, AuthenticationFailure, MalformedCiphertext)
  are fatal to the operation that triggered them.
- Storage failures propagate to the caller of the mutating operation.
  In-memory state already applied is NOT rolled back.
- Action and telemetry failures are command-level outcomes; the executor
  turns them into failed responses.

Policy denials and rate limiting are business outcomes, not exceptions.
See service.auth.authorizer.DenialReason.
"""


class DeviceWardenError(Exception):
    """Base class for all agent errors."""


# === Crypto ===


class CryptoError(DeviceWardenError):
    """Base class for cryptographic failures."""


class KeyNotInitialized(CryptoError):
    """Encryption requested before the symmetric key exists."""


class AuthenticationFailure(CryptoError):
    """AEAD tag did not verify (tampered blob or wrong key)."""


class MalformedCiphertext(CryptoError):
    """Blob too short to contain nonce and tag."""


# === Storage ===


class StorageError(DeviceWardenError):
    """Disk I/O failed while reading, persisting or erasing data."""


class UnsupportedExportFormat(DeviceWardenError, ValueError):
    """Audit export requested in an unknown format."""

    def __init__(self, fmt: str):
        super().__init__(f"Unsupported export format: {fmt}")
        self.format = fmt


# === Platform actions ===


class ActionError(DeviceWardenError):
    """Platform action provider failed."""


class ActionUnsupported(ActionError):
    """No implementation of the action for this platform."""


class ActionFailed(ActionError):
    """The platform action ran and reported failure."""


# === Collaborators / input ===


class TelemetryError(DeviceWardenError):
    """Host status snapshot could not be collected."""


class CommandFormatError(DeviceWardenError, ValueError):
    """Inbound command does not match the wire shape."""


class ConfigError(DeviceWardenError):
    """Configuration file unreadable or invalid."""
