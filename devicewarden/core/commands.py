"""
Command Model - Remote operator commands and their outcomes.

Wire shape (inbound):
    {
        "kind": "Lock" | "Logout" | "Ping" | "Status",
        "command_id": "...",
        "issuer": "...",
        "issued_at": "2024-01-01T12:00:00Z",
        "signature": "<base64 HMAC-SHA256>"
    }

Signature payload is the UTF-8 string command_id || issuer || unix_seconds(issued_at),
concatenated without separators. No other field participates.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from .errors import CommandFormatError


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CommandKind(str, Enum):
    """Remote command kinds."""

    LOCK = "Lock"  # Lock the workstation
    LOGOUT = "Logout"  # Terminate the interactive session
    PING = "Ping"  # Liveness check
    STATUS = "Status"  # Host telemetry snapshot


def canonical_payload(command_id: str, issuer: str, issued_at: datetime) -> str:
    """Build the signed payload: id || issuer || unix seconds."""
    return f"{command_id}{issuer}{int(parse_timestamp(issued_at).timestamp())}"


@dataclass(frozen=True)
class Command:
    """Inbound command. Immutable once received."""

    command_id: str
    kind: CommandKind
    issuer: str
    issued_at: datetime
    signature: str = ""

    def canonical_payload(self) -> str:
        return canonical_payload(self.command_id, self.issuer, self.issued_at)

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "Command":
        """
        Parse the wire shape.

        Raises:
            CommandFormatError: missing fields, unknown kind, bad timestamp
        """
        if not isinstance(data, dict):
            raise CommandFormatError("Command must be a JSON object")

        missing = [
            name
            for name in ("kind", "command_id", "issuer", "issued_at")
            if not data.get(name)
        ]
        if missing:
            raise CommandFormatError(f"Missing command fields: {', '.join(missing)}")

        try:
            kind = CommandKind(data["kind"])
        except ValueError:
            raise CommandFormatError(f"Unknown command kind: {data['kind']!r}")

        try:
            issued_at = parse_timestamp(data["issued_at"])
        except ValueError as e:
            raise CommandFormatError(f"Invalid issued_at: {e}")

        signature = data.get("signature") or ""
        if not isinstance(signature, str):
            raise CommandFormatError("signature must be a base64 string")

        return cls(
            command_id=str(data["command_id"]),
            kind=kind,
            issuer=str(data["issuer"]),
            issued_at=issued_at,
            signature=signature,
        )

    def to_wire(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "command_id": self.command_id,
            "issuer": self.issuer,
            "issued_at": self.issued_at.isoformat(),
            "signature": self.signature,
        }


@dataclass
class CommandResponse:
    """Outcome of one command. Produced exactly once per Command."""

    command_id: str
    success: bool
    message: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command_id": self.command_id,
            "success": self.success,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class CommandHistoryEntry:
    """History record owned by the executor, keyed by command_id."""

    command_id: str
    kind: CommandKind
    issuer: str
    completed_at: datetime
    success: bool
    details: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command_id": self.command_id,
            "kind": self.kind.value,
            "issuer": self.issuer,
            "completed_at": self.completed_at.isoformat(),
            "success": self.success,
            "details": self.details,
        }
