"""
Command Execution Module.

Authorize, rate-limit, dispatch and record remote commands.
"""

from .executor import (
    CommandExecutor,
    DEFAULT_MAX_HISTORY,
    PONG_MESSAGE,
    RATE_LIMITED_MESSAGE,
)

__all__ = [
    "CommandExecutor",
    "DEFAULT_MAX_HISTORY",
    "PONG_MESSAGE",
    "RATE_LIMITED_MESSAGE",
]
