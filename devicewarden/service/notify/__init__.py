"""Outbound notifications."""

from .webhook import EventType, NotificationEvent, Notifier, WebhookNotifier, hash_device_id

__all__ = ["EventType", "NotificationEvent", "Notifier", "WebhookNotifier", "hash_device_id"]
