"""HTTP API."""

from .commands import create_command_routes

__all__ = ["create_command_routes"]
