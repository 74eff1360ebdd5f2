"""Agent configuration."""

from .agent_config import (
    AgentConfig,
    DeviceConfig,
    FeatureConfig,
    RemoteConfig,
    SecurityConfig,
    UserConsent,
    default_config_dir,
    generate_device_id,
)

__all__ = [
    "AgentConfig",
    "DeviceConfig",
    "FeatureConfig",
    "RemoteConfig",
    "SecurityConfig",
    "UserConsent",
    "default_config_dir",
    "generate_device_id",
]
