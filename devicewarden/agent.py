"""
DeviceWarden - Device Agent

Composition root. Builds every service exactly once and hands references
to the components that use them:

    CryptoService ─┬─> CommandAuthorizer ─┐
                   ├─> AuditStore ────────┼─> CommandExecutor
                   └─> EncryptedVault     │
    RateLimiter ──────────────────────────┤
    SystemActionProvider / SystemTelemetry┤
    WebhookNotifier ──────────────────────┘──> HeartbeatService

Lifecycle is explicit: start() restores the audit trail and starts the
heartbeat; shutdown() stops background tasks and flushes the audit log.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from . import __version__
from .config.agent_config import AgentConfig
from .core.commands import Command, CommandResponse, utcnow
from .service.audit import AuditStore
from .service.auth import CommandAuthorizer
from .service.commands import CommandExecutor
from .service.crypto import CryptoService
from .service.heartbeat import HeartbeatService
from .service.notify import Notifier, WebhookNotifier
from .service.platform import ActionProvider, SystemActionProvider
from .service.ratelimit import RateLimiter
from .service.storage import EncryptedVault
from .service.telemetry import SystemTelemetry, TelemetryProvider

logger = logging.getLogger(__name__)


class DeviceAgent:
    """Owns every service instance for one agent process."""

    def __init__(
        self,
        config: Optional[AgentConfig] = None,
        *,
        actions: Optional[ActionProvider] = None,
        telemetry: Optional[TelemetryProvider] = None,
        notifier: Optional[Notifier] = None,
        crypto: Optional[CryptoService] = None,
        persist: bool = True,
    ):
        self.config = config or AgentConfig.load()
        security = self.config.security

        self.crypto = crypto or CryptoService(key=security.encryption_key_bytes())
        self.rate_limiter = RateLimiter(
            max_commands=security.max_commands_per_minute,
            window_seconds=security.rate_window_seconds,
        )
        self.authorizer = CommandAuthorizer(self.crypto, self.config)
        self.audit = AuditStore(
            self.crypto,
            self.config.storage_dir if persist else None,
            enabled=self.config.features.audit_logging_enabled,
        )
        self.vault = EncryptedVault(self.crypto, self.config.storage_dir)
        self.notifier = notifier or WebhookNotifier(self.config)
        self.executor = CommandExecutor(
            authorizer=self.authorizer,
            rate_limiter=self.rate_limiter,
            audit=self.audit,
            actions=actions
            or SystemActionProvider(timeout_seconds=security.command_timeout_seconds),
            telemetry=telemetry or SystemTelemetry(),
            notifier=self.notifier,
        )

        self._shutdown = asyncio.Event()
        self.heartbeat = HeartbeatService(
            self.notifier,
            self.audit,
            self._shutdown,
            interval=self.config.features.heartbeat_interval_seconds,
        )
        self._started = False

    # === Lifecycle ===

    async def start(self) -> None:
        """
        Bring the agent up.

        Raises:
            CryptoError: the persisted audit trail cannot be decrypted
        """
        if self._started:
            return

        restored = await self.audit.initialize()
        logger.info(f"Audit trail ready ({restored} entries restored)")

        if self.config.is_emergency_disabled():
            logger.warning("Agent is EMERGENCY DISABLED - all commands will be denied")

        self._shutdown.clear()
        if self.config.features.heartbeat_enabled:
            await self.heartbeat.start()

        await self.audit.log(
            "agent_started",
            {"version": __version__, "device_id": self.config.device.device_id},
        )
        self._started = True
        logger.info(f"DeviceWarden agent v{__version__} started")

    async def shutdown(self) -> None:
        """Stop background tasks, record the stop, flush the audit log."""
        if not self._started:
            return

        self._shutdown.set()
        await self.heartbeat.stop()

        await self.audit.log("agent_stopped", {"version": __version__})
        await self.audit.flush()
        self._started = False
        logger.info("DeviceWarden agent stopped")

    # === Operations ===

    async def handle_command(self, command: Command) -> CommandResponse:
        return await self.executor.execute(command)

    def security_status(self) -> Dict[str, Any]:
        return {
            "encryption_initialized": self.crypto.has_key,
            "hmac_secret_configured": bool(self.config.security.hmac_secret),
            "signature_verification": (
                "enforced" if self.authorizer.signature_check_enabled else "disabled"
            ),
            "remote_commands_enabled": self.config.consent.remote_commands_enabled,
            "audit_logging_enabled": self.audit.enabled,
            "emergency_disabled": self.config.is_emergency_disabled(),
            "timestamp": utcnow().isoformat(),
        }

    def get_status(self) -> Dict[str, Any]:
        return {
            "version": __version__,
            "device_id": self.config.device.device_id,
            "device_name": self.config.device.device_name,
            "running": self._started,
            "notifier": self.notifier.get_status(),
            "heartbeat": self.heartbeat.get_status(),
            "rate_limit": {
                "max_commands": self.rate_limiter.max_commands,
                "window_seconds": self.rate_limiter.window_seconds,
            },
            "audit_entries": len(self.audit),
            "history_entries": len(self.executor.get_history()),
            "timestamp": utcnow().isoformat(),
        }
