"""
Command Authorization Module.

Consent, allow-list, freshness and HMAC signature checks for remote commands.
"""

from .authorizer import (
    AuthorizationDecision,
    CommandAuthorizer,
    DenialReason,
    KindPolicy,
)

__all__ = [
    "AuthorizationDecision",
    "CommandAuthorizer",
    "DenialReason",
    "KindPolicy",
]
