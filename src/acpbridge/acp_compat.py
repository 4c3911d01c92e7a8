"""ACP SDK compatibility helpers for protocol features missing in wrappers.

The ACP schema includes `session/set_config_option`, but the Python SDK's agent
router does not route it yet. acpbridge patches the router so
`BridgeAgentCore.set_session_config_option` is reachable over the wire.
"""

from __future__ import annotations

from typing import Any

_PATCHED = False


def enable_session_config_options_api() -> None:
    """Route `session/set_config_option` requests to the agent."""
    global _PATCHED
    if _PATCHED:
        return

    from acp.agent import connection as agent_connection_module
    from acp.agent import router as agent_router_module
    from acp.meta import AGENT_METHODS
    from acp.schema import SetSessionConfigOptionRequest
    from acp.utils import normalize_result

    original_build_router = agent_router_module.build_agent_router

    if not getattr(original_build_router, "_acpbridge_config_option_patch", False):

        def _patched_build_agent_router(agent: Any, use_unstable_protocol: bool = False):
            router = original_build_router(agent, use_unstable_protocol=use_unstable_protocol)
            router.route_request(
                AGENT_METHODS["session_set_config_option"],
                SetSessionConfigOptionRequest,
                agent,
                "set_session_config_option",
                adapt_result=normalize_result,
            )
            return router

        setattr(_patched_build_agent_router, "_acpbridge_config_option_patch", True)
        agent_router_module.build_agent_router = _patched_build_agent_router
        agent_connection_module.build_agent_router = _patched_build_agent_router

    _PATCHED = True
