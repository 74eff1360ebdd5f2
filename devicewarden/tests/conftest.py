"""Shared fixtures and collaborator fakes."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from devicewarden.config.agent_config import AgentConfig
from devicewarden.core.commands import Command, CommandKind, canonical_payload
from devicewarden.core.errors import ActionFailed, TelemetryError
from devicewarden.service.crypto import CryptoService
from devicewarden.service.notify import Notifier
from devicewarden.service.platform import ActionProvider
from devicewarden.service.telemetry import TelemetryProvider

SECRET = "test-shared-secret"
NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeActions(ActionProvider):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[str] = []

    async def lock(self) -> None:
        self.calls.append("lock")
        if self.fail:
            raise ActionFailed("display server unavailable")

    async def terminate_session(self) -> None:
        self.calls.append("terminate_session")
        if self.fail:
            raise ActionFailed("no interactive session")


class FakeTelemetry(TelemetryProvider):
    def __init__(self, fail: bool = False):
        self.fail = fail

    async def get_status(self) -> Dict[str, Any]:
        if self.fail:
            raise TelemetryError("psutil unavailable")
        return {
            "platform": "Linux",
            "hostname": "testhost",
            "os_release": "6.1",
            "cpu_count": 4,
            "cpu_percent": 12.5,
            "memory_total_mb": 8192,
            "memory_available_mb": 4096,
            "memory_percent": 50.0,
            "uptime_seconds": 7200,
            "users": ["alice"],
        }


class FakeNotifier(Notifier):
    """Records notifications; always reports delivery failure."""

    def __init__(self):
        self.failed_auth: List[tuple] = []
        self.executed: List[tuple] = []
        self.heartbeats = 0

    async def send_failed_auth(self, user: str, details: str) -> bool:
        self.failed_auth.append((user, details))
        return False

    async def send_command_executed(self, command: str, success: bool, details: str) -> bool:
        self.executed.append((command, success, details))
        return False

    async def send_heartbeat(self) -> bool:
        self.heartbeats += 1
        return False

    def get_status(self) -> Dict[str, Any]:
        return {
            "enabled": False,
            "heartbeats": self.heartbeats,
            "failed_auth": len(self.failed_auth),
            "executed": len(self.executed),
        }


class FakeMonotonic:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_command(
    kind: str = "Ping",
    issuer: str = "alice",
    secret: Optional[str] = SECRET,
    issued_at: Optional[datetime] = None,
    command_id: Optional[str] = None,
) -> Command:
    issued_at = issued_at or NOW
    command_id = command_id or f"cmd-{uuid.uuid4().hex[:8]}"
    signature = ""
    if secret:
        signature = CryptoService().sign(
            canonical_payload(command_id, issuer, issued_at), secret
        )
    return Command(
        command_id=command_id,
        kind=CommandKind(kind),
        issuer=issuer,
        issued_at=issued_at,
        signature=signature,
    )


@pytest.fixture
def config(tmp_path):
    """Config that accepts signed commands from alice."""
    cfg = AgentConfig(config_dir=tmp_path)
    cfg.consent.remote_commands_enabled = True
    cfg.remote.allowed_users = ["alice", "bob"]
    cfg.security.hmac_secret = SECRET
    cfg.features.heartbeat_enabled = False
    return cfg


@pytest.fixture
def crypto():
    service = CryptoService()
    service.initialize_key()
    return service
