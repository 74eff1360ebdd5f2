"""
System Telemetry - Host status snapshot for Status commands.

Collected with psutil in a worker thread (cpu_percent blocks for its interval).
Only gathered on demand; there is no polling loop.
"""

import asyncio
import logging
import platform
import socket
import time
from abc import ABC, abstractmethod
from typing import Any, Dict

import psutil

from ...core.commands import utcnow
from ...core.errors import TelemetryError

logger = logging.getLogger(__name__)

MB = 1024 * 1024


class TelemetryProvider(ABC):
    @abstractmethod
    async def get_status(self) -> Dict[str, Any]:
        """Structured host snapshot. Raises TelemetryError on failure."""


class SystemTelemetry(TelemetryProvider):
    """psutil-backed host snapshot."""

    def __init__(self, cpu_sample_seconds: float = 0.1):
        self.cpu_sample_seconds = cpu_sample_seconds

    async def get_status(self) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(self._collect)
        except (psutil.Error, OSError) as e:
            logger.error(f"Failed to collect system status: {e}")
            raise TelemetryError(f"Failed to collect system status: {e}") from e

    def _collect(self) -> Dict[str, Any]:
        memory = psutil.virtual_memory()
        boot_time = psutil.boot_time()

        return {
            "platform": platform.system(),
            "hostname": socket.gethostname(),
            "os_release": platform.release(),
            "cpu_count": psutil.cpu_count(),
            "cpu_percent": psutil.cpu_percent(interval=self.cpu_sample_seconds),
            "memory_total_mb": memory.total // MB,
            "memory_available_mb": memory.available // MB,
            "memory_percent": memory.percent,
            "boot_time": boot_time,
            "uptime_seconds": int(time.time() - boot_time),
            "users": sorted({u.name for u in psutil.users()}),
            "timestamp": utcnow().isoformat(),
        }


def summarize(snapshot: Dict[str, Any]) -> str:
    """One-line text used in Status command responses."""
    users = ", ".join(snapshot.get("users") or []) or "none"
    uptime_hours = snapshot.get("uptime_seconds", 0) / 3600
    return (
        f"Status: {snapshot.get('hostname', 'unknown')} "
        f"({snapshot.get('platform', 'unknown')} {snapshot.get('os_release', '')}) | "
        f"CPU {snapshot.get('cpu_percent', 0):.1f}% of {snapshot.get('cpu_count', '?')} cores | "
        f"Memory {snapshot.get('memory_percent', 0):.1f}% of "
        f"{snapshot.get('memory_total_mb', 0)} MB | "
        f"Uptime {uptime_hours:.1f}h | Users: {users}"
    )
