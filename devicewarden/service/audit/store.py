"""
Audit Store - Encrypted, bounded, append-only event log.

Every security-relevant decision the agent makes is appended here.

Key Features:
- Write-through: log() returns only after the whole log is encrypted and on disk
- Bounded: oldest entries evicted first once max_entries is reached
- Confidential at rest: single AES-256-GCM blob, readable only with the in-memory key
- Fail-closed restore: an undecryptable blob stops startup instead of starting empty
- Secure clear: the blob is overwritten before removal

Severity is derived from the event type:
    login / logout / heartbeat           -> Info
    failed_auth / rate_limit_exceeded    -> Warning
    command_executed                     -> Security
    anything else                        -> Info

Usage:
    store = AuditStore(crypto, storage_dir)
    await store.initialize()
    await store.log("command_executed", {"command_id": "c-1"}, user="alice")
    recent = store.query(limit=10)
"""

import asyncio
import csv
import io
import json
import logging
import os
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

import aiofiles

from ...core.commands import parse_timestamp, utcnow
from ...core.errors import StorageError, UnsupportedExportFormat
from ..crypto.service import CryptoService

logger = logging.getLogger(__name__)

AUDIT_BLOB_NAME = "audit_log.enc"
DEFAULT_MAX_ENTRIES = 10000
CSV_HEADER = ["Timestamp", "Event Type", "User", "Severity", "Source", "Details"]


class LogSeverity(str, Enum):
    INFO = "Info"
    WARNING = "Warning"
    ERROR = "Error"
    SECURITY = "Security"


SEVERITY_BY_EVENT: Dict[str, LogSeverity] = {
    "login": LogSeverity.INFO,
    "logout": LogSeverity.INFO,
    "heartbeat": LogSeverity.INFO,
    "failed_auth": LogSeverity.WARNING,
    "rate_limit_exceeded": LogSeverity.WARNING,
    "command_executed": LogSeverity.SECURITY,
}


def severity_for(event_type: str) -> LogSeverity:
    return SEVERITY_BY_EVENT.get(event_type, LogSeverity.INFO)


def local_user() -> Optional[str]:
    """Account the agent runs as."""
    return os.getenv("USER") or os.getenv("USERNAME")


@dataclass
class AuditLogEntry:
    """Single audit event."""

    timestamp: datetime
    event_type: str
    severity: LogSeverity
    source: str
    user: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "user": self.user,
            "details": self.details,
            "severity": self.severity.value,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditLogEntry":
        return cls(
            timestamp=parse_timestamp(data["timestamp"]),
            event_type=data["event_type"],
            severity=LogSeverity(data["severity"]),
            source=data.get("source", ""),
            user=data.get("user"),
            details=data.get("details") or {},
        )


class AuditStore:
    """
    Owns the audit log. Nothing else reads or writes the blob.

    With storage_dir=None the store is memory-only; behavior is otherwise identical.
    """

    def __init__(
        self,
        crypto: CryptoService,
        storage_dir: Optional[Path],
        *,
        enabled: bool = True,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        source: str = "devicewarden",
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")

        self.crypto = crypto
        self.storage_dir = Path(storage_dir) if storage_dir is not None else None
        self.enabled = enabled
        self.max_entries = max_entries
        self.source = source

        self._entries: Deque[AuditLogEntry] = deque(maxlen=max_entries)
        self._lock = asyncio.Lock()
        self._initialized = False

        logger.info(
            f"AuditStore initialized (capacity={max_entries}, "
            f"storage={self.blob_path or 'memory'}, enabled={enabled})"
        )

    @property
    def blob_path(self) -> Optional[Path]:
        if self.storage_dir is None:
            return None
        return self.storage_dir / AUDIT_BLOB_NAME

    def __len__(self) -> int:
        return len(self._entries)

    # === Lifecycle ===

    async def initialize(self) -> int:
        """
        Ensure the key exists and restore any persisted log.

        Returns:
            Number of entries restored

        Raises:
            CryptoError: the blob does not decrypt with the current key
            StorageError: the blob cannot be read or is not a valid log
        """
        async with self._lock:
            if self._initialized:
                return 0
            self.crypto.initialize_key()
            restored = await self._restore_locked()
            self._initialized = True
        return restored

    async def _restore_locked(self) -> int:
        path = self.blob_path
        if path is None or not path.exists():
            return 0

        try:
            async with aiofiles.open(path, "rb") as f:
                blob = await f.read()
        except OSError as e:
            logger.error(f"Failed to read audit log {path}: {e}")
            raise StorageError(f"Failed to read audit log {path}: {e}") from e

        # CryptoError propagates: refuse to run on an unreadable trail
        plaintext = self.crypto.decrypt(blob)

        try:
            records = json.loads(plaintext)
            entries = [AuditLogEntry.from_dict(r) for r in records]
        except (ValueError, KeyError, TypeError) as e:
            raise StorageError(f"Audit log {path} is corrupt: {e}") from e

        self._entries.clear()
        self._entries.extend(entries)

        logger.info(f"Loaded {len(self._entries)} audit log entries")
        return len(self._entries)

    async def flush(self) -> None:
        """Persist the current log. Called on shutdown."""
        async with self._lock:
            await self._persist_locked()

    # === Append ===

    async def log(
        self,
        event_type: str,
        details: Optional[Dict[str, Any]] = None,
        user: Optional[str] = None,
    ) -> Optional[AuditLogEntry]:
        """
        Append an event and persist the whole log before returning.

        Returns:
            The new entry, or None when audit logging is disabled

        Raises:
            CryptoError, StorageError: persistence failed; the entry stays in memory
        """
        if not self.enabled:
            logger.debug(f"Audit logging disabled, skipping {event_type}")
            return None

        if not self._initialized:
            await self.initialize()

        entry = AuditLogEntry(
            timestamp=utcnow(),
            event_type=event_type,
            severity=severity_for(event_type),
            source=self.source,
            user=user if user is not None else local_user(),
            details=details or {},
        )

        async with self._lock:
            self._entries.append(entry)
            await self._persist_locked()

        logger.debug(f"Audit event logged: {event_type} ({entry.severity.value})")
        return entry

    async def _persist_locked(self) -> None:
        path = self.blob_path
        if path is None:
            return

        payload = json.dumps([e.to_dict() for e in self._entries]).encode("utf-8")
        blob = self.crypto.encrypt(payload)

        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(blob)
                await f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            logger.error(f"Failed to persist audit log {path}: {e}")
            raise StorageError(f"Failed to persist audit log {path}: {e}") from e

    # === Read ===

    def query(
        self, limit: Optional[int] = None, event_type: Optional[str] = None
    ) -> List[AuditLogEntry]:
        """Entries newest-first, optionally filtered by exact event type."""
        entries = [
            e
            for e in reversed(self._entries)
            if event_type is None or e.event_type == event_type
        ]
        if limit is not None:
            entries = entries[: max(limit, 0)]
        return entries

    def export(self, fmt: str) -> bytes:
        """
        Serialize the full log, newest-first.

        Args:
            fmt: "json" (array of entries) or "csv" (quoted tabular rows)

        Raises:
            UnsupportedExportFormat: any other format name
        """
        entries = self.query()
        fmt_lower = fmt.lower()

        if fmt_lower == "json":
            return json.dumps([e.to_dict() for e in entries], indent=2).encode("utf-8")

        if fmt_lower == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
            writer.writerow(CSV_HEADER)
            for e in entries:
                writer.writerow(
                    [
                        e.timestamp.isoformat(),
                        e.event_type,
                        e.user or "Unknown",
                        e.severity.value,
                        e.source,
                        json.dumps(e.details, separators=(",", ":")),
                    ]
                )
            return buffer.getvalue().encode("utf-8")

        raise UnsupportedExportFormat(fmt)

    # === Clear ===

    async def clear(self) -> int:
        """
        Drop every entry and securely erase the persisted blob.

        Only the rename happens under the lock; the overwrite passes run
        after it is released, so concurrent log() calls are not held up.

        Returns:
            Number of entries removed
        """
        doomed: Optional[Path] = None
        async with self._lock:
            removed = len(self._entries)
            self._entries.clear()
            path = self.blob_path
            if path is not None and path.exists():
                # Detach the blob so later appends start a fresh file
                doomed = path.with_suffix(path.suffix + ".erasing")
                try:
                    os.replace(path, doomed)
                except OSError as e:
                    raise StorageError(f"Cannot detach audit log {path}: {e}") from e

        if doomed is not None:
            await self.crypto.secure_erase(doomed)

        logger.info(f"Audit log cleared ({removed} entries)")
        return removed

    # === Stats ===

    def get_stats(self) -> Dict[str, Any]:
        severities: Dict[str, int] = {}
        for e in self._entries:
            severities[e.severity.value] = severities.get(e.severity.value, 0) + 1

        path = self.blob_path
        blob_size = path.stat().st_size if path is not None and path.exists() else 0
        file_count = (
            len(list(self.storage_dir.glob("*.enc")))
            if self.storage_dir is not None and self.storage_dir.exists()
            else 0
        )

        return {
            "enabled": self.enabled,
            "total_entries": len(self._entries),
            "max_entries": self.max_entries,
            "severity_breakdown": severities,
            "storage_path": str(path) if path else None,
            "storage_size_bytes": blob_size,
            "encrypted_files": file_count,
        }
