"""
Platform Actions - Lock the workstation, end the interactive session.

Supported platforms:
- Windows: LockWorkStation (user32), shutdown /l
- macOS:   pmset displaysleepnow, System Events log out
- Linux:   loginctl lock-session / terminate-session

Anything else raises ActionUnsupported.

Usage:
    provider = SystemActionProvider(timeout_seconds=30)
    await provider.lock()
"""

import asyncio
import logging
import os
import platform
from abc import ABC, abstractmethod
from typing import List, Optional

from ...core.errors import ActionFailed, ActionUnsupported

logger = logging.getLogger(__name__)


class ActionProvider(ABC):
    """Side effects a remote command can trigger on the host."""

    @abstractmethod
    async def lock(self) -> None:
        """Lock the workstation. Raises ActionError on failure."""

    @abstractmethod
    async def terminate_session(self) -> None:
        """Log the interactive user out. Raises ActionError on failure."""


class SystemActionProvider(ActionProvider):
    """Runs the host's native lock/logout mechanisms."""

    def __init__(self, timeout_seconds: float = 30, system: Optional[str] = None):
        self.timeout_seconds = timeout_seconds
        self.system = system or platform.system()
        logger.info(f"SystemActionProvider initialized for {self.system}")

    async def lock(self) -> None:
        if self.system == "Windows":
            await self._windows_lock()
        elif self.system == "Darwin":
            await self._run(["pmset", "displaysleepnow"])
        elif self.system == "Linux":
            await self._run(self._loginctl("lock-session"))
        else:
            raise ActionUnsupported(f"Screen lock not implemented for {self.system}")

        logger.info("Screen locked")

    async def terminate_session(self) -> None:
        if self.system == "Windows":
            await self._run(["shutdown", "/l"])
        elif self.system == "Darwin":
            await self._run(
                [
                    "osascript",
                    "-e",
                    'tell application "System Events" to log out',
                ]
            )
        elif self.system == "Linux":
            await self._run(self._loginctl("terminate-session"))
        else:
            raise ActionUnsupported(f"User logout not implemented for {self.system}")

        logger.info("User session terminated")

    @staticmethod
    def _loginctl(verb: str) -> List[str]:
        session_id = os.getenv("XDG_SESSION_ID")
        return ["loginctl", verb] + ([session_id] if session_id else [])

    async def _windows_lock(self) -> None:
        import ctypes

        ok = await asyncio.to_thread(ctypes.windll.user32.LockWorkStation)
        if not ok:
            raise ActionFailed("LockWorkStation returned failure")

    async def _run(self, argv: List[str]) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ActionFailed(f"{argv[0]} could not be started: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ActionFailed(
                f"{argv[0]} did not finish within {self.timeout_seconds}s"
            ) from None

        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip() or f"exit code {proc.returncode}"
            raise ActionFailed(f"{argv[0]} failed: {detail}")
