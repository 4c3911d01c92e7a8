"""acpbridge default ACP configuration helpers."""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from acp.schema import AgentCapabilities

from acpbridge.acp.core import BridgeAgentCore, BridgeConfig, SlashCommands, default_capabilities
from acpbridge.acp.slash import available_slash_commands, handle_slash_command
from acpbridge.agent.controller import Controller
from acpbridge.agent.models import ModelCatalog, load_model_catalog
from acpbridge.agent.pydantic_controller import PydanticAIController
from acpbridge.agent.session_store import FileSessionStore
from acpbridge.bridge.tool_policy import policy_from_env
from acpbridge.paths import sessions_dir

DEFAULT_AGENT_VERSION = "0.1.0"


def build_bridge_capabilities() -> AgentCapabilities:
    """Return the default ACP capabilities for acpbridge."""
    return default_capabilities()


def build_default_controller(catalog: ModelCatalog) -> Controller:
    return PydanticAIController(catalog)


def build_bridge_config(
    *,
    agent_name: str = "acpbridge",
    agent_title: str = "ACP Session Bridge",
    agent_version: str = DEFAULT_AGENT_VERSION,
    controller: Controller | None = None,
    model_catalog: ModelCatalog | None = None,
) -> BridgeConfig:
    """Build the default BridgeConfig: pydantic-ai controller, file store, env driven policy."""
    catalog = model_catalog or load_model_catalog()

    def _controller_factory(_agent: BridgeAgentCore) -> Controller:
        return build_default_controller(catalog)

    return BridgeConfig(
        agent_name=agent_name,
        agent_title=agent_title,
        agent_version=agent_version,
        controller=controller,
        controller_factory=None if controller is not None else _controller_factory,
        tool_policy=policy_from_env(),
        session_store=FileSessionStore(sessions_dir()),
        model_catalog=catalog,
        default_model_id=catalog.default_model_id,
        slash_commands=SlashCommands(
            available_commands=available_slash_commands,
            handle_command=handle_slash_command,
        ),
        capabilities_builder=build_bridge_capabilities,
    )


def apply_overrides(config: BridgeConfig, **overrides: Any) -> BridgeConfig:
    """Return a copy of the config with selected fields overridden."""
    return replace(config, **overrides)


__all__ = ["apply_overrides", "build_bridge_capabilities", "build_bridge_config", "build_default_controller"]
