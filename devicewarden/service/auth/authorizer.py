"""
Command Authorizer - Decides whether a remote command may run.

Validation order (first failure wins, each with its own reason):
1. Global policy   - remote commands consented and no emergency disable
2. Issuer          - member of the configured allow-list
3. Freshness       - issued_at within the window of now, in either direction
4. Signature       - HMAC over id || issuer || unix seconds, when a secret is set
5. Kind policy     - optional per-kind checks registered by the host

Denials are returned as AuthorizationDecision values, never raised.

Usage:
    authorizer = CommandAuthorizer(crypto, config)
    decision = authorizer.validate(command)
    if not decision.authorized:
        print(decision.reason, decision.message)
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ...config.agent_config import AgentConfig
from ...core.commands import Command, CommandKind, utcnow
from ..crypto.service import CryptoService

logger = logging.getLogger(__name__)

# Returns None to allow, or a human-readable denial message.
KindPolicy = Callable[[Command], Optional[str]]


class DenialReason(str, Enum):
    """Why a command was refused."""

    NONE = "none"
    POLICY_DISABLED = "policy_disabled"
    UNAUTHORIZED_ISSUER = "unauthorized_issuer"
    STALE_TIMESTAMP = "stale_timestamp"
    FUTURE_TIMESTAMP = "future_timestamp"
    INVALID_SIGNATURE = "invalid_signature"
    KIND_POLICY = "kind_policy"


@dataclass
class AuthorizationDecision:
    """Outcome of validating one command."""

    authorized: bool
    reason: DenialReason = DenialReason.NONE
    message: str = "Authorized"

    @classmethod
    def allow(cls) -> "AuthorizationDecision":
        return cls(authorized=True)

    @classmethod
    def deny(cls, reason: DenialReason, message: str) -> "AuthorizationDecision":
        return cls(authorized=False, reason=reason, message=message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "authorized": self.authorized,
            "reason": self.reason.value,
            "message": self.message,
        }


class CommandAuthorizer:
    """
    Validates inbound commands against consent, allow-list, freshness and signature.

    Reads the live AgentConfig on every call, so consent changes and the
    emergency marker take effect without a restart.
    """

    def __init__(
        self,
        crypto: CryptoService,
        config: AgentConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.crypto = crypto
        self.config = config
        self._clock = clock
        self._kind_policies: Dict[CommandKind, List[KindPolicy]] = {}

        if not self.signature_check_enabled:
            logger.warning(
                "No HMAC secret configured - command signature verification is DISABLED"
            )

        logger.info(
            f"CommandAuthorizer initialized "
            f"({len(config.remote.allowed_users)} allowed issuers, "
            f"freshness {self.freshness_window_seconds}s)"
        )

    @property
    def signature_check_enabled(self) -> bool:
        return self.config.signature_check_enabled

    @property
    def freshness_window_seconds(self) -> int:
        return self.config.security.freshness_window_seconds

    def register_kind_policy(self, kind: CommandKind, policy: KindPolicy) -> None:
        """
        Add a check that runs for one command kind after the signature step.

        Policies for the same kind run in registration order.
        """
        self._kind_policies.setdefault(kind, []).append(policy)
        logger.info(f"Registered {kind.value} policy: {getattr(policy, '__name__', policy)}")

    def validate(self, command: Command) -> AuthorizationDecision:
        """Run every check in order and return the first denial, or allow."""
        decision = self._validate(command)
        if decision.authorized:
            logger.info(
                f"Authorized {command.kind.value} command {command.command_id} "
                f"from {command.issuer}"
            )
        else:
            logger.warning(
                f"Denied {command.kind.value} command {command.command_id} "
                f"from {command.issuer}: {decision.reason.value}"
            )
        return decision

    def _validate(self, command: Command) -> AuthorizationDecision:
        # 1. Global policy
        if self.config.is_emergency_disabled():
            return AuthorizationDecision.deny(
                DenialReason.POLICY_DISABLED,
                "Remote commands are emergency-disabled on this device",
            )
        if not self.config.consent.remote_commands_enabled:
            return AuthorizationDecision.deny(
                DenialReason.POLICY_DISABLED,
                "Remote commands are disabled on this device",
            )

        # 2. Issuer allow-list
        if command.issuer not in self.config.remote.allowed_users:
            return AuthorizationDecision.deny(
                DenialReason.UNAUTHORIZED_ISSUER,
                f"Issuer {command.issuer} is not authorized",
            )

        # 3. Freshness
        window = self.freshness_window_seconds
        age = (self._clock() - command.issued_at).total_seconds()
        if age > window:
            return AuthorizationDecision.deny(
                DenialReason.STALE_TIMESTAMP,
                f"Command is too old ({int(age)}s, limit {window}s)",
            )
        if age < -window:
            return AuthorizationDecision.deny(
                DenialReason.FUTURE_TIMESTAMP,
                f"Command is dated {int(-age)}s in the future (limit {window}s)",
            )

        # 4. Signature
        secret = self.config.security.hmac_secret
        if secret:
            if not self.crypto.verify(command.canonical_payload(), secret, command.signature):
                return AuthorizationDecision.deny(
                    DenialReason.INVALID_SIGNATURE,
                    "Invalid command signature",
                )

        # 5. Per-kind refinement
        for policy in self._kind_policies.get(command.kind, ()):
            denial = policy(command)
            if denial:
                return AuthorizationDecision.deny(DenialReason.KIND_POLICY, denial)

        return AuthorizationDecision.allow()
