"""Host telemetry for Status commands."""

from .system import SystemTelemetry, TelemetryProvider, summarize

__all__ = ["SystemTelemetry", "TelemetryProvider", "summarize"]
