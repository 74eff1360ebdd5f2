"""
DeviceWarden - Host Command Agent

Host-resident agent that executes remotely issued operator commands
(lock workstation, force logout, ping, status) only when they are
authentic, fresh, rate-limited and permitted by local policy.

Architecture:
- Core: command model and error taxonomy
- Services: crypto, authorizer, rate limiter, executor, encrypted audit store
- Collaborators: platform actions, host telemetry, webhook notifier, heartbeat
- API: local FastAPI surface + operator CLI

Key Properties:
- Authentic: HMAC-SHA256 signatures over a canonical payload
- Fresh: commands outside the freshness window are rejected
- Bounded: per-issuer sliding-window rate limits, capped history and audit log
- Confidential at rest: audit trail encrypted with AES-256-GCM
"""

__version__ = "0.1.0"
