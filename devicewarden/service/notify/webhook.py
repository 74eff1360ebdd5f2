"""
Webhook Notifier - Outbound event notifications.

Posts Discord-style embeds to the configured webhook. Sends nothing unless
the operator consented to notifications and configured a URL.

Delivery is best-effort: failures are logged and reported as False,
never raised. Only a SHA-256 of the device id leaves the host.
"""

import asyncio
import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import aiohttp

from ...config.agent_config import AgentConfig
from ...core.commands import utcnow

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    FAILED_AUTH = "FailedAuth"
    HEARTBEAT = "Heartbeat"
    COMMAND_EXECUTED = "CommandExecuted"


EMBED_STYLE = {
    EventType.FAILED_AUTH: (0xFF0000, "⚠️ Failed Authentication"),
    EventType.HEARTBEAT: (0x0088FF, "💓 System Heartbeat"),
    EventType.COMMAND_EXECUTED: (0x8800FF, "⚡ Command Executed"),
}


@dataclass
class NotificationEvent:
    device_alias: str
    device_id_hash: str
    event_type: EventType
    timestamp: datetime
    user: Optional[str] = None
    notes: Optional[str] = None

    def to_embed(self) -> Dict[str, Any]:
        color, title = EMBED_STYLE[self.event_type]
        fields: List[Dict[str, Any]] = [
            {"name": "Device", "value": self.device_alias, "inline": True},
            {"name": "Event Type", "value": self.event_type.value, "inline": True},
            {
                "name": "Timestamp",
                "value": self.timestamp.strftime("%Y-%m-%d %H:%M:%S UTC"),
                "inline": True,
            },
        ]
        if self.user:
            fields.append({"name": "User", "value": self.user, "inline": True})
        if self.notes:
            fields.append({"name": "Details", "value": self.notes, "inline": False})

        return {
            "title": title,
            "color": color,
            "fields": fields,
            "timestamp": self.timestamp.isoformat(),
            "footer": {"text": "Device Notifier"},
        }


def hash_device_id(device_id: str) -> str:
    return hashlib.sha256(device_id.encode()).hexdigest()


class Notifier(ABC):
    """Outbound event sink. Delivery is best-effort and never raises."""

    @abstractmethod
    async def send_heartbeat(self) -> bool:
        """Announce liveness. Returns True if delivered."""

    @abstractmethod
    async def send_failed_auth(self, user: str, details: str) -> bool:
        """Report a denied command."""

    @abstractmethod
    async def send_command_executed(
        self, command: str, success: bool, details: str
    ) -> bool:
        """Report a dispatched command and its outcome."""

    @abstractmethod
    def get_status(self) -> Dict[str, Any]:
        ...


class WebhookNotifier(Notifier):
    """Sends agent events to a chat webhook."""

    def __init__(self, config: AgentConfig, timeout_seconds: float = 30):
        self.config = config
        self.timeout_seconds = timeout_seconds
        self.last_heartbeat: Optional[datetime] = None
        self._stats = {"sent": 0, "failed": 0, "skipped": 0}

    @property
    def enabled(self) -> bool:
        return bool(
            self.config.consent.notifications_enabled and self.config.remote.webhook_url
        )

    def _event(
        self,
        event_type: EventType,
        user: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> NotificationEvent:
        return NotificationEvent(
            device_alias=self.config.device.device_name,
            device_id_hash=hash_device_id(self.config.device.device_id),
            event_type=event_type,
            timestamp=utcnow(),
            user=user,
            notes=notes,
        )

    async def send_event(self, event: NotificationEvent) -> bool:
        """
        Post one event.

        Returns:
            True if the webhook accepted it
        """
        if not self.config.consent.notifications_enabled:
            logger.debug(f"Notifications disabled, skipping {event.event_type.value}")
            self._stats["skipped"] += 1
            return False

        url = self.config.remote.webhook_url
        if not url:
            logger.warning("No webhook URL configured")
            self._stats["skipped"] += 1
            return False

        payload = {"embeds": [event.to_embed()]}
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                ) as resp:
                    if 200 <= resp.status < 300:
                        self._stats["sent"] += 1
                        logger.info(f"Notification sent: {event.event_type.value}")
                        return True
                    logger.warning(f"Notification rejected by webhook: {resp.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Notification delivery error: {e}")

        self._stats["failed"] += 1
        return False

    async def send_heartbeat(self) -> bool:
        sent = await self.send_event(
            self._event(EventType.HEARTBEAT, notes="System heartbeat")
        )
        self.last_heartbeat = utcnow()
        return sent

    async def send_failed_auth(self, user: str, details: str) -> bool:
        return await self.send_event(
            self._event(EventType.FAILED_AUTH, user=user, notes=details)
        )

    async def send_command_executed(
        self, command: str, success: bool, details: str
    ) -> bool:
        outcome = "SUCCESS" if success else "FAILED"
        return await self.send_event(
            self._event(
                EventType.COMMAND_EXECUTED,
                notes=f"Command '{command}' executed: {outcome} - {details}",
            )
        )

    def get_status(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "webhook_configured": bool(self.config.remote.webhook_url),
            "device_alias": self.config.device.device_name,
            "device_id_hash": hash_device_id(self.config.device.device_id),
            "last_heartbeat": (
                self.last_heartbeat.isoformat() if self.last_heartbeat else None
            ),
            "stats": dict(self._stats),
        }
