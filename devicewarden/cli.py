#!/usr/bin/env python3
"""
DeviceWarden CLI

Talks to the local agent over HTTP, and manages the local configuration
(init-config, emergency kill switch) directly.
"""

import argparse
import base64
import json
import os
import sys
import uuid
from typing import Any, Dict, Optional

import httpx

from .config.agent_config import AgentConfig
from .core.commands import CommandKind, canonical_payload, utcnow
from .service.crypto import CryptoService

AGENT_URL = os.getenv("DEVICEWARDEN_URL", "http://127.0.0.1:8787")


def get_client():
    """Get HTTP client."""
    return httpx.Client(base_url=AGENT_URL, timeout=10)


def build_command(
    kind: str,
    issuer: str,
    secret: Optional[str] = None,
    command_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Wire-format command, signed when a secret is given."""
    command_id = command_id or str(uuid.uuid4())
    issued_at = utcnow().replace(microsecond=0)
    signature = ""
    if secret:
        signature = CryptoService().sign(
            canonical_payload(command_id, issuer, issued_at), secret
        )
    return {
        "kind": CommandKind(kind).value,
        "command_id": command_id,
        "issuer": issuer,
        "issued_at": issued_at.isoformat(),
        "signature": signature,
    }


def _fail(response: httpx.Response):
    try:
        detail = response.json().get("detail", response.text)
    except ValueError:
        detail = response.text
    print(f"❌ Error ({response.status_code}): {detail}")
    sys.exit(1)


def _not_running():
    print("❌ DeviceWarden agent not running")
    print("   Start it with: python -m devicewarden.main")
    sys.exit(1)


def cmd_status(args):
    """Show agent status."""
    try:
        client = get_client()
        health = client.get("/health").json()
        status = client.get("/api/v1/status").json()
    except httpx.ConnectError:
        _not_running()

    print("🛡️  DeviceWarden Status")
    print("=" * 40)
    print(f"Status: {health['status']}")
    print(f"Version: {health['version']}")
    print(f"Device: {status['device_name']} ({status['device_id']})")
    print()
    rate = status["rate_limit"]
    print(f"Rate limit: {rate['max_commands']} commands / {rate['window_seconds']}s")
    print(f"Audit entries: {status['audit_entries']}")
    print(f"History entries: {status['history_entries']}")
    notifier = status["notifier"]
    print(f"Notifications: {'on' if notifier['enabled'] else 'off'}")


def cmd_security(args):
    """Show security posture."""
    try:
        data = get_client().get("/api/v1/security/status").json()
    except httpx.ConnectError:
        _not_running()

    print("🔐 Security Status")
    print("=" * 40)
    for key, value in data.items():
        print(f"{key.replace('_', ' ').title()}: {value}")

    if data.get("signature_verification") == "disabled":
        print()
        print("⚠️  No HMAC secret configured: command signatures are NOT verified")


def cmd_history(args):
    """Show recent commands."""
    try:
        client = get_client()
        if args.clear:
            response = client.delete("/api/v1/commands/history")
            if response.status_code != 200:
                _fail(response)
            print(f"✅ Cleared {response.json()['cleared']} history entries")
            return
        data = client.get("/api/v1/commands/history", params={"limit": args.limit}).json()
    except httpx.ConnectError:
        _not_running()

    if not data["entries"]:
        print("No commands yet")
        return
    for e in data["entries"]:
        mark = "✅" if e["success"] else "❌"
        print(f"{mark} {e['completed_at']}  {e['kind']:<7} {e['issuer']:<16} {e['details']}")


def cmd_stats(args):
    """Show command statistics."""
    try:
        stats = get_client().get("/api/v1/commands/stats").json()
    except httpx.ConnectError:
        _not_running()

    print(f"Commands: {stats['total_commands']} total")
    print(f"  - succeeded: {stats['successful_commands']}")
    print(f"  - failed: {stats['failed_commands']}")
    print(f"  - success rate: {stats['success_rate_percent']:.1f}%")
    for kind, count in stats["command_type_breakdown"].items():
        print(f"  {kind}: {count}")


def cmd_audit(args):
    """Show or export the audit log."""
    try:
        client = get_client()
        if args.export:
            response = client.get("/api/v1/audit/export", params={"format": args.export})
            if response.status_code != 200:
                _fail(response)
            if args.output:
                with open(args.output, "wb") as f:
                    f.write(response.content)
                print(f"✅ Exported audit log to {args.output}")
            else:
                sys.stdout.write(response.text)
            return

        params = {"limit": args.limit}
        if args.event_type:
            params["event_type"] = args.event_type
        response = client.get("/api/v1/audit", params=params)
        if response.status_code != 200:
            _fail(response)
        data = response.json()
    except httpx.ConnectError:
        _not_running()

    for entry in data["entries"]:
        print(
            f"{entry['timestamp']}  [{entry['severity']}] {entry['event_type']} "
            f"user={entry['user'] or 'Unknown'}"
        )
        if args.verbose:
            print(f"    {json.dumps(entry['details'])}")


def cmd_send(args):
    """Build, sign and submit a command."""
    secret = args.secret or os.getenv("DEVICEWARDEN_HMAC_SECRET")
    payload = build_command(args.kind, args.issuer, secret=secret)

    try:
        response = get_client().post("/api/v1/commands", json=payload)
    except httpx.ConnectError:
        _not_running()

    if response.status_code != 200:
        _fail(response)

    result = response.json()
    mark = "✅" if result["success"] else "❌"
    print(f"{mark} {result['command_id']}: {result['message']}")
    if not result["success"]:
        sys.exit(2)


def cmd_emergency_disable(args):
    """Activate the kill switch."""
    config = AgentConfig.load()
    config.emergency_disable()
    print("🚨 EMERGENCY DISABLE ACTIVATED")
    print("   All remote features have been disabled.")
    print(f"   Remove {config.emergency_marker_path} or run 'devicewarden emergency-enable' to re-enable.")


def cmd_emergency_enable(args):
    """Clear the kill switch."""
    config = AgentConfig.load()
    if config.emergency_enable():
        print("✅ Emergency disable cleared")
        print("   Remote commands stay off until re-enabled in config.yaml")
    else:
        print("Emergency disable was not active")


def cmd_init_config(args):
    """Write a default configuration file."""
    config = AgentConfig.load()
    if config.config_path.exists() and not args.force:
        print(f"Configuration already exists at {config.config_path} (use --force)")
        sys.exit(1)

    if args.generate_key:
        config.security.encryption_key = base64.b64encode(
            CryptoService.generate_key()
        ).decode("ascii")
    if args.generate_secret:
        config.security.hmac_secret = CryptoService.generate_token(48)

    path = config.save()
    print(f"✅ Configuration written to {path}")


def main():
    parser = argparse.ArgumentParser(
        description="DeviceWarden CLI - Authenticated remote lock and audit",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  devicewarden status                      Show agent status
  devicewarden security                    Show security posture
  devicewarden send Ping --issuer alice    Submit a signed Ping
  devicewarden history                     Recent commands
  devicewarden audit --export csv -o a.csv Export the audit log
  devicewarden emergency-disable           Kill switch
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # status
    status_parser = subparsers.add_parser("status", help="Show agent status")
    status_parser.set_defaults(func=cmd_status)

    # security
    security_parser = subparsers.add_parser("security", help="Show security status")
    security_parser.set_defaults(func=cmd_security)

    # history
    history_parser = subparsers.add_parser("history", help="Show command history")
    history_parser.add_argument("--limit", type=int, default=20, help="Number of entries")
    history_parser.add_argument("--clear", action="store_true", help="Clear history")
    history_parser.set_defaults(func=cmd_history)

    # stats
    stats_parser = subparsers.add_parser("stats", help="Show command statistics")
    stats_parser.set_defaults(func=cmd_stats)

    # audit
    audit_parser = subparsers.add_parser("audit", help="Show or export the audit log")
    audit_parser.add_argument("--limit", type=int, default=10, help="Number of entries")
    audit_parser.add_argument("--event-type", help="Only this event type")
    audit_parser.add_argument("--export", choices=["json", "csv"], help="Export format")
    audit_parser.add_argument("-o", "--output", help="Export destination file")
    audit_parser.add_argument("-v", "--verbose", action="store_true")
    audit_parser.set_defaults(func=cmd_audit)

    # send
    send_parser = subparsers.add_parser("send", help="Submit a command")
    send_parser.add_argument("kind", choices=[k.value for k in CommandKind])
    send_parser.add_argument("--issuer", required=True, help="Issuer identity")
    send_parser.add_argument("--secret", help="HMAC secret (default: $DEVICEWARDEN_HMAC_SECRET)")
    send_parser.set_defaults(func=cmd_send)

    # emergency
    disable_parser = subparsers.add_parser(
        "emergency-disable", help="Disable all remote features"
    )
    disable_parser.set_defaults(func=cmd_emergency_disable)

    enable_parser = subparsers.add_parser(
        "emergency-enable", help="Clear the emergency disable marker"
    )
    enable_parser.set_defaults(func=cmd_emergency_enable)

    # init-config
    init_parser = subparsers.add_parser("init-config", help="Write default configuration")
    init_parser.add_argument("--force", action="store_true", help="Overwrite existing file")
    init_parser.add_argument(
        "--generate-key", action="store_true", help="Provision a persistent encryption key"
    )
    init_parser.add_argument(
        "--generate-secret", action="store_true", help="Generate an HMAC secret"
    )
    init_parser.set_defaults(func=cmd_init_config)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
