"""
Heartbeat Service - Periodic liveness notification.

One background task sends a heartbeat every `interval` seconds and records
it in the audit log. Stopped by setting the shared shutdown event, which is
checked at every iteration boundary; the task is never cancelled mid-send.
A failed beat is logged and counted; the next one is still attempted.

Usage:
    shutdown = asyncio.Event()
    heartbeat = HeartbeatService(notifier, audit, shutdown, interval=300)
    await heartbeat.start()
    ...
    shutdown.set()
    await heartbeat.stop()
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from ...core.errors import DeviceWardenError
from ..audit.store import AuditStore
from ..notify.webhook import Notifier

logger = logging.getLogger(__name__)


class HeartbeatService:
    def __init__(
        self,
        notifier: Notifier,
        audit: AuditStore,
        shutdown: asyncio.Event,
        interval: float = 300,
    ):
        self.notifier = notifier
        self.audit = audit
        self.shutdown = shutdown
        self.interval = interval

        self._task: Optional[asyncio.Task] = None
        self._beats = 0
        self._failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Heartbeat started (every {self.interval:g}s)")

    async def stop(self) -> None:
        """Signal shutdown and wait for the loop to finish its current beat."""
        self.shutdown.set()
        if self._task:
            try:
                await self._task
            except Exception as e:
                logger.error(f"Heartbeat task ended with error: {e}")
            self._task = None
        logger.info("Heartbeat stopped")

    async def beat(self) -> None:
        await self.notifier.send_heartbeat()
        await self.audit.log("heartbeat", {"sequence": self._beats})
        self._beats += 1

    async def _loop(self) -> None:
        while not self.shutdown.is_set():
            try:
                await self.beat()
            except DeviceWardenError as e:
                self._failures += 1
                logger.error(f"Heartbeat failed: {e}")
            try:
                await asyncio.wait_for(self.shutdown.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "interval_seconds": self.interval,
            "beats_sent": self._beats,
            "failures": self._failures,
        }
