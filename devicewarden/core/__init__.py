"""Core command model and error taxonomy."""

from .commands import (
    Command,
    CommandHistoryEntry,
    CommandKind,
    CommandResponse,
    canonical_payload,
)
from .errors import (
    ActionError,
    ActionFailed,
    ActionUnsupported,
    AuthenticationFailure,
    CommandFormatError,
    ConfigError,
    CryptoError,
    DeviceWardenError,
    KeyNotInitialized,
    MalformedCiphertext,
    StorageError,
    TelemetryError,
    UnsupportedExportFormat,
)

__all__ = [
    "Command",
    "CommandHistoryEntry",
    "CommandKind",
    "CommandResponse",
    "canonical_payload",
    "ActionError",
    "ActionFailed",
    "ActionUnsupported",
    "AuthenticationFailure",
    "CommandFormatError",
    "ConfigError",
    "CryptoError",
    "DeviceWardenError",
    "KeyNotInitialized",
    "MalformedCiphertext",
    "StorageError",
    "TelemetryError",
    "UnsupportedExportFormat",
]
