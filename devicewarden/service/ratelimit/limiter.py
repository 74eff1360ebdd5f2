"""
Rate Limiter - Per-identity sliding-window admission control.

Each identity keeps the monotonic timestamps of its admitted commands.
On every check the record is pruned to the trailing window, then the
command is admitted (and recorded) only if fewer than max_commands remain.

Check and record happen under one lock, so two concurrent requests can
never both take the last slot.

Usage:
    limiter = RateLimiter(max_commands=10, window_seconds=60)
    if await limiter.check_and_record("alice"):
        ...
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_COMMANDS = 10
DEFAULT_WINDOW_SECONDS = 60.0


class RateLimiter:
    """Sliding-window limiter keyed by issuer identity."""

    def __init__(
        self,
        max_commands: int = DEFAULT_MAX_COMMANDS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_commands < 1:
            raise ValueError("max_commands must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.max_commands = max_commands
        self.window_seconds = window_seconds
        self._clock = clock

        self._windows: Dict[str, Deque[float]] = {}
        self._lock = asyncio.Lock()

        self._admitted = 0
        self._denied = 0

        logger.info(
            f"RateLimiter initialized: {max_commands} commands per {window_seconds:g}s"
        )

    def _prune(self, window: Deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()

    async def check_and_record(self, identity: str) -> bool:
        """
        Admit and record a command for identity if under the limit.

        Returns:
            True if admitted, False if the identity is over its quota
        """
        async with self._lock:
            now = self._clock()
            window = self._windows.setdefault(identity, deque())
            self._prune(window, now)

            if len(window) >= self.max_commands:
                self._denied += 1
                admitted = False
            else:
                window.append(now)
                self._admitted += 1
                admitted = True

        if not admitted:
            logger.warning(f"Rate limit exceeded for {identity}")
        return admitted

    async def remaining(self, identity: str) -> int:
        """Admissions left for identity in the current window."""
        async with self._lock:
            window = self._windows.get(identity)
            if not window:
                return self.max_commands
            self._prune(window, self._clock())
            return self.max_commands - len(window)

    async def reset(self, identity: Optional[str] = None) -> None:
        """Forget one identity's record, or every record when identity is None."""
        async with self._lock:
            if identity is None:
                self._windows.clear()
            else:
                self._windows.pop(identity, None)

    async def get_stats(self) -> Dict[str, Any]:
        async with self._lock:
            now = self._clock()
            for window in self._windows.values():
                self._prune(window, now)
            active = {k: len(v) for k, v in self._windows.items() if v}

        return {
            "max_commands": self.max_commands,
            "window_seconds": self.window_seconds,
            "tracked_identities": len(active),
            "in_window": active,
            "admitted_total": self._admitted,
            "denied_total": self._denied,
        }
