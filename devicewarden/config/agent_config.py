"""
DeviceWarden - Agent Configuration

Persistent YAML configuration with environment overrides. All remote
capabilities are off until the operator consents.

Config directory (default ~/.config/devicewarden, override with
DEVICEWARDEN_CONFIG_DIR):
  config.yaml         - this configuration
  EMERGENCY_DISABLE   - kill-switch marker; while present every command is denied
  storage/            - encrypted audit log and vault values

Environment Variables:
  DEVICEWARDEN_CONFIG_DIR        - config directory
  DEVICEWARDEN_HMAC_SECRET       - shared secret for command signatures (keep secret!)
  DEVICEWARDEN_WEBHOOK_URL       - notification webhook
  DEVICEWARDEN_ALLOWED_USERS     - comma separated issuer allow-list
  DEVICEWARDEN_REMOTE_COMMANDS   - "true" to accept remote commands
  DEVICEWARDEN_ENCRYPTION_KEY    - base64 32-byte key for the encrypted store
"""

import base64
import binascii
import hashlib
import os
import platform
import uuid
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union, get_args, get_origin
import logging

import yaml

from ..core.errors import ConfigError

logger = logging.getLogger("devicewarden.config")

CONFIG_FILE_NAME = "config.yaml"
EMERGENCY_MARKER = "EMERGENCY_DISABLE"
STORAGE_DIR_NAME = "storage"


def default_config_dir() -> Path:
    env_dir = os.getenv("DEVICEWARDEN_CONFIG_DIR")
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".config" / "devicewarden"


def generate_device_id() -> str:
    """Stable machine-specific identifier. Not a secret."""
    components = [
        platform.node(),
        platform.machine(),
        str(uuid.getnode()),  # MAC address
    ]
    return hashlib.sha256(":".join(components).encode()).hexdigest()[:24]


def _env_bool(name: str) -> Optional[bool]:
    value = os.getenv(name)
    if value is None:
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class UserConsent:
    """What the operator has agreed to. Everything defaults to off."""

    telemetry_enabled: bool = False
    remote_commands_enabled: bool = False
    notifications_enabled: bool = False


@dataclass
class RemoteConfig:
    """Notification target and command issuers."""

    webhook_url: Optional[str] = None
    allowed_users: List[str] = field(default_factory=list)


@dataclass
class FeatureConfig:
    heartbeat_enabled: bool = True
    heartbeat_interval_seconds: int = 300
    audit_logging_enabled: bool = True


@dataclass
class SecurityConfig:
    """Command authentication and limits."""

    hmac_secret: Optional[str] = None
    encryption_key: Optional[str] = None  # base64, 32 bytes
    command_timeout_seconds: int = 30
    max_commands_per_minute: int = 10
    rate_window_seconds: int = 60
    freshness_window_seconds: int = 300

    def encryption_key_bytes(self) -> Optional[bytes]:
        """Decode encryption_key, or None when not provisioned."""
        if not self.encryption_key:
            return None
        try:
            key = base64.b64decode(self.encryption_key, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ConfigError(f"encryption_key is not valid base64: {e}") from e
        if len(key) != 32:
            raise ConfigError(
                f"encryption_key must decode to 32 bytes, got {len(key)}"
            )
        return key


@dataclass
class DeviceConfig:
    device_id: str = field(default_factory=generate_device_id)
    device_name: str = field(default_factory=platform.node)


def _check_field(section: str, name: str, value: Any, expected: Any) -> None:
    """Raise ConfigError unless value matches the field's declared type."""
    if get_origin(expected) is Union:
        if value is None:
            return
        expected = next(a for a in get_args(expected) if a is not type(None))

    if get_origin(expected) is list:
        (item,) = get_args(expected)
        if not isinstance(value, list) or not all(isinstance(v, item) for v in value):
            raise ConfigError(f"{section}.{name} must be a list of {item.__name__}")
        return

    # bool is an int subclass; `rate_window_seconds: true` is still a mistake
    if (expected is int and isinstance(value, bool)) or not isinstance(value, expected):
        raise ConfigError(
            f"{section}.{name} must be {expected.__name__}, got {type(value).__name__}"
        )


def _section(cls, data: Any):
    """Build a section dataclass, ignoring unknown keys and checking types."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"Section {cls.__name__} must be a mapping")
    known = {f.name: f.type for f in fields(cls)}
    unknown = set(data) - set(known)
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")
    values = {k: v for k, v in data.items() if k in known}
    for name, value in values.items():
        _check_field(cls.__name__, name, value, known[name])
    return cls(**values)


@dataclass
class AgentConfig:
    """Complete agent configuration."""

    consent: UserConsent = field(default_factory=UserConsent)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    features: FeatureConfig = field(default_factory=FeatureConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    device: DeviceConfig = field(default_factory=DeviceConfig)
    config_dir: Path = field(default_factory=default_config_dir)

    # === Paths ===

    @property
    def config_path(self) -> Path:
        return self.config_dir / CONFIG_FILE_NAME

    @property
    def storage_dir(self) -> Path:
        return self.config_dir / STORAGE_DIR_NAME

    @property
    def emergency_marker_path(self) -> Path:
        return self.config_dir / EMERGENCY_MARKER

    # === Serialization ===

    def to_dict(self) -> Dict[str, Any]:
        return {
            "consent": asdict(self.consent),
            "remote": asdict(self.remote),
            "features": asdict(self.features),
            "security": asdict(self.security),
            "device": asdict(self.device),
        }

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], config_dir: Optional[Path] = None
    ) -> "AgentConfig":
        if not isinstance(data, dict):
            raise ConfigError("Configuration root must be a mapping")
        try:
            return cls(
                consent=_section(UserConsent, data.get("consent")),
                remote=_section(RemoteConfig, data.get("remote")),
                features=_section(FeatureConfig, data.get("features")),
                security=_section(SecurityConfig, data.get("security")),
                device=_section(DeviceConfig, data.get("device")),
                config_dir=Path(config_dir) if config_dir else default_config_dir(),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    @classmethod
    def load(cls, config_dir: Optional[Path] = None) -> "AgentConfig":
        """
        Load config.yaml (or defaults when absent), then apply env overrides.

        Raises:
            ConfigError: file unreadable or not a valid configuration
        """
        config_dir = Path(config_dir) if config_dir else default_config_dir()
        path = config_dir / CONFIG_FILE_NAME

        if path.exists():
            try:
                data = yaml.safe_load(path.read_text()) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigError(f"Cannot read {path}: {e}") from e
            config = cls.from_dict(data, config_dir=config_dir)
            logger.info(f"Loaded configuration from {path}")
        else:
            config = cls(config_dir=config_dir)
            logger.info(f"No configuration at {path}, using defaults")

        config.apply_env()
        return config

    @classmethod
    def from_env(cls) -> "AgentConfig":
        """Defaults plus environment overrides, no file."""
        config = cls()
        config.apply_env()
        return config

    def apply_env(self) -> None:
        secret = os.getenv("DEVICEWARDEN_HMAC_SECRET")
        if secret:
            self.security.hmac_secret = secret

        webhook = os.getenv("DEVICEWARDEN_WEBHOOK_URL")
        if webhook:
            self.remote.webhook_url = webhook

        users = os.getenv("DEVICEWARDEN_ALLOWED_USERS")
        if users is not None:
            self.remote.allowed_users = [u.strip() for u in users.split(",") if u.strip()]

        remote = _env_bool("DEVICEWARDEN_REMOTE_COMMANDS")
        if remote is not None:
            self.consent.remote_commands_enabled = remote

        key = os.getenv("DEVICEWARDEN_ENCRYPTION_KEY")
        if key:
            self.security.encryption_key = key

    def save(self) -> Path:
        """Write config.yaml (owner-only permissions)."""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            self.config_path.write_text(
                yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False)
            )
            os.chmod(self.config_path, 0o600)
        except OSError as e:
            raise ConfigError(f"Cannot write {self.config_path}: {e}") from e

        logger.info(f"Configuration saved to {self.config_path}")
        return self.config_path

    # === Emergency kill switch ===

    def is_emergency_disabled(self) -> bool:
        return self.emergency_marker_path.exists()

    def emergency_disable(self) -> None:
        """Turn off every remote capability and drop the kill-switch marker."""
        self.consent.remote_commands_enabled = False
        self.consent.notifications_enabled = False
        self.consent.telemetry_enabled = False
        self.features.heartbeat_enabled = False

        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.emergency_marker_path.write_text(
            "Emergency disable activated. Remove this file to re-enable.\n"
        )
        self.save()
        logger.warning("EMERGENCY DISABLE activated - all remote features disabled")

    def emergency_enable(self) -> bool:
        """
        Remove the kill-switch marker. Consent flags stay off until set again.

        Returns:
            True if a marker was removed
        """
        if not self.is_emergency_disabled():
            return False
        self.emergency_marker_path.unlink()
        logger.info("Emergency disable cleared")
        return True

    # === Derived ===

    @property
    def signature_check_enabled(self) -> bool:
        return bool(self.security.hmac_secret)
