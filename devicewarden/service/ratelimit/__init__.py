"""
Rate Limiting Module.

Per-issuer sliding-window admission for remote commands.
"""

from .limiter import RateLimiter, DEFAULT_MAX_COMMANDS, DEFAULT_WINDOW_SECONDS

__all__ = ["RateLimiter", "DEFAULT_MAX_COMMANDS", "DEFAULT_WINDOW_SECONDS"]
