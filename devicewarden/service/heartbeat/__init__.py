"""Periodic heartbeat."""

from .service import HeartbeatService

__all__ = ["HeartbeatService"]
