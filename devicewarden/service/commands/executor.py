"""
Command Executor - Runs one remote command from receipt to response.

Per command:

    Received -> Authorized? --no--> Denied            (failed_auth, Warning)
                   |
                  yes
                   v
               Rate check  --no--> RateLimited        (rate_limit_exceeded, Warning)
                   |
                  yes
                   v
               Dispatch by kind -> Success | Failure  (command_executed, Security)

Every path records a history entry keyed by command_id and produces exactly
one CommandResponse. Denied commands never consume rate-limit quota.

Action and telemetry errors become failed responses. Crypto and storage
errors from the audit store propagate: a broken audit trail is not a
rejected command.
"""

import asyncio
import logging
from collections import Counter
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ...core.commands import (
    Command,
    CommandHistoryEntry,
    CommandKind,
    CommandResponse,
    utcnow,
)
from ...core.errors import ActionError, TelemetryError
from ..audit.store import AuditStore
from ..auth.authorizer import CommandAuthorizer
from ..notify.webhook import Notifier
from ..platform.actions import ActionProvider
from ..ratelimit.limiter import RateLimiter
from ..telemetry.system import TelemetryProvider, summarize

logger = logging.getLogger(__name__)

DEFAULT_MAX_HISTORY = 1000
PONG_MESSAGE = "Pong! Device is responsive"
RATE_LIMITED_MESSAGE = "Rate limit exceeded"

Outcome = Tuple[bool, str]


class CommandExecutor:
    """Authorize, rate-limit, dispatch, audit and record remote commands."""

    def __init__(
        self,
        authorizer: CommandAuthorizer,
        rate_limiter: RateLimiter,
        audit: AuditStore,
        actions: ActionProvider,
        telemetry: TelemetryProvider,
        notifier: Optional[Notifier] = None,
        max_history: int = DEFAULT_MAX_HISTORY,
    ):
        self.authorizer = authorizer
        self.rate_limiter = rate_limiter
        self.audit = audit
        self.actions = actions
        self.telemetry = telemetry
        self.notifier = notifier
        self.max_history = max_history

        self._handlers: Dict[CommandKind, Callable[[], Awaitable[Outcome]]] = {
            CommandKind.LOCK: self._lock,
            CommandKind.LOGOUT: self._logout,
            CommandKind.PING: self._ping,
            CommandKind.STATUS: self._status,
        }
        missing = set(CommandKind) - set(self._handlers)
        if missing:
            raise RuntimeError(
                f"No handler for command kinds: {sorted(k.value for k in missing)}"
            )

        self._history: Dict[str, CommandHistoryEntry] = {}
        self._history_lock = asyncio.Lock()

        logger.info(f"CommandExecutor initialized (history capacity {max_history})")

    # === Entry point ===

    async def execute(self, command: Command) -> CommandResponse:
        """
        Process one command end to end.

        Raises:
            CryptoError, StorageError: the audit trail could not be written
        """
        logger.info(
            f"Received {command.kind.value} command {command.command_id} "
            f"from {command.issuer}"
        )

        decision = self.authorizer.validate(command)
        if not decision.authorized:
            message = decision.message
            await self._record(command, False, message)
            await self.audit.log(
                "failed_auth",
                {
                    "command_id": command.command_id,
                    "command": command.kind.value,
                    "reason": decision.reason.value,
                    "message": message,
                },
                user=command.issuer,
            )
            if self.notifier:
                await self.notifier.send_failed_auth(command.issuer, message)
            return CommandResponse(command.command_id, False, message)

        if not await self.rate_limiter.check_and_record(command.issuer):
            await self._record(command, False, RATE_LIMITED_MESSAGE)
            await self.audit.log(
                "rate_limit_exceeded",
                {
                    "command_id": command.command_id,
                    "command": command.kind.value,
                    "max_commands": self.rate_limiter.max_commands,
                    "window_seconds": self.rate_limiter.window_seconds,
                },
                user=command.issuer,
            )
            return CommandResponse(command.command_id, False, RATE_LIMITED_MESSAGE)

        success, message = await self._handlers[command.kind]()

        await self._record(command, success, message)
        await self.audit.log(
            "command_executed",
            {
                "command_id": command.command_id,
                "command": command.kind.value,
                "success": success,
                "details": message,
            },
            user=command.issuer,
        )
        if self.notifier:
            await self.notifier.send_command_executed(
                command.kind.value, success, message
            )

        logger.info(
            f"Command {command.command_id} ({command.kind.value}) "
            f"{'succeeded' if success else 'failed'}: {message}"
        )
        return CommandResponse(command.command_id, success, message)

    # === Handlers ===

    async def _lock(self) -> Outcome:
        try:
            await self.actions.lock()
        except ActionError as e:
            return False, f"Failed to lock screen: {e}"
        return True, "Screen locked successfully"

    async def _logout(self) -> Outcome:
        try:
            await self.actions.terminate_session()
        except ActionError as e:
            return False, f"Failed to logout user: {e}"
        return True, "User logged out successfully"

    async def _ping(self) -> Outcome:
        return True, PONG_MESSAGE

    async def _status(self) -> Outcome:
        try:
            snapshot = await self.telemetry.get_status()
        except TelemetryError as e:
            return False, f"Failed to get status: {e}"
        return True, summarize(snapshot)

    # === History ===

    async def _record(self, command: Command, success: bool, details: str) -> None:
        entry = CommandHistoryEntry(
            command_id=command.command_id,
            kind=command.kind,
            issuer=command.issuer,
            completed_at=utcnow(),
            success=success,
            details=details,
        )
        async with self._history_lock:
            self._history[command.command_id] = entry
            if len(self._history) > self.max_history:
                self._evict_locked()

    def _evict_locked(self) -> None:
        excess = len(self._history) - self.max_history
        oldest = sorted(self._history.values(), key=lambda e: e.completed_at)[:excess]
        for entry in oldest:
            del self._history[entry.command_id]
        logger.debug(f"Evicted {excess} command history entries")

    def get_history(self, limit: Optional[int] = None) -> List[CommandHistoryEntry]:
        """History entries newest-first."""
        entries = sorted(
            self._history.values(), key=lambda e: e.completed_at, reverse=True
        )
        if limit is not None:
            entries = entries[: max(limit, 0)]
        return entries

    async def clear_history(self) -> int:
        async with self._history_lock:
            removed = len(self._history)
            self._history.clear()
        logger.info(f"Command history cleared ({removed} entries)")
        return removed

    def get_stats(self) -> Dict[str, Any]:
        entries = list(self._history.values())
        total = len(entries)
        successful = sum(1 for e in entries if e.success)

        return {
            "total_commands": total,
            "successful_commands": successful,
            "failed_commands": total - successful,
            "success_rate_percent": (successful / total * 100.0) if total else 0.0,
            "command_type_breakdown": dict(Counter(e.kind.value for e in entries)),
            "user_breakdown": dict(Counter(e.issuer for e in entries)),
            "timestamp": utcnow().isoformat(),
        }
