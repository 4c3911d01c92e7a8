"""Process entrypoint: serve the session bridge over ACP stdio."""

from __future__ import annotations

import asyncio
import logging

from acpbridge.acp.core import BridgeAgentCore
from acpbridge.acp.defaults import build_bridge_config
from acpbridge.acp_compat import enable_session_config_options_api
from acpbridge.log_utils import build_log_config, configure_logging, log_event

logger = logging.getLogger(__name__)

__all__ = ["main", "main_entry", "run_acp_agent"]


async def run_acp_agent() -> None:
    """Run the ACP server."""
    from acp.core import run_agent  # Imported lazily so the router patch lands first

    enable_session_config_options_api()
    agent = BridgeAgentCore(build_bridge_config())
    log_event(logger, "bridge.start", transport="stdio")
    try:
        await run_agent(agent)
    finally:
        await agent.shutdown()
        log_event(logger, "bridge.stop")


async def main(argv: list[str] | None = None):
    """Default entrypoint launches the ACP server on stdio."""
    configure_logging(build_log_config())
    return await run_acp_agent()


def main_entry():
    try:
        return asyncio.run(main())
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    main_entry()
