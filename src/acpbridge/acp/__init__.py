"""ACP agent facade and configuration helpers."""

from acpbridge.acp.core import (  # noqa: F401
    BridgeAgentCore,
    BridgeConfig,
    SlashCommands,
    default_capabilities,
)
from acpbridge.acp.defaults import apply_overrides, build_bridge_config  # noqa: F401

__all__ = [
    "BridgeAgentCore",
    "BridgeConfig",
    "SlashCommands",
    "apply_overrides",
    "build_bridge_config",
    "default_capabilities",
]
