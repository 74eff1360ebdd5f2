"""
Audit Module.

Encrypted, bounded, write-through audit trail.
"""

from .store import (
    AUDIT_BLOB_NAME,
    AuditLogEntry,
    AuditStore,
    LogSeverity,
    severity_for,
)

__all__ = [
    "AUDIT_BLOB_NAME",
    "AuditLogEntry",
    "AuditStore",
    "LogSeverity",
    "severity_for",
]
