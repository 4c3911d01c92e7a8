"""Build pydantic-ai MCP toolsets from a session's ACP `mcpServers` list.

Servers are attached over stdio, streamable HTTP or SSE. A descriptor that
cannot be turned into a toolset is skipped with a warning so one bad entry does
not prevent the session from starting.
"""

from __future__ import annotations

import logging
from typing import Any, List

from pydantic_ai import mcp as mcp_client  # type: ignore

from acpbridge.log_utils import log_event

logger = logging.getLogger(__name__)


def _field(server: Any, name: str) -> Any:
    if isinstance(server, dict):
        return server.get(name)
    return getattr(server, name, None)


def _pairs(items: Any) -> dict[str, str]:
    """Collapse ACP `[{name, value}]` lists (env vars, headers) into a dict."""
    result: dict[str, str] = {}
    for item in items or []:
        name = _field(item, "name")
        if name:
            result[str(name)] = str(_field(item, "value") or "")
    return result


def server_type(server: Any) -> str | None:
    stype = _field(server, "type")
    if stype:
        return str(stype)
    # Stdio descriptors carry no discriminator in the ACP schema.
    if _field(server, "command"):
        return "stdio"
    return None


def build_mcp_toolset(server: Any) -> Any | None:
    stype = server_type(server)
    name = _field(server, "name") or None
    prefix = name.replace(" ", "_") if name else None

    if stype == "stdio":
        command = _field(server, "command")
        if not command:
            return None
        env = _pairs(_field(server, "env"))
        return mcp_client.MCPServerStdio(
            command,
            list(_field(server, "args") or []),
            env=env or None,
            tool_prefix=prefix,
            id=name,
        )

    url = _field(server, "url")
    if not url:
        return None
    headers = _pairs(_field(server, "headers"))
    if stype == "http":
        return mcp_client.MCPServerStreamableHTTP(url, headers=headers or None, tool_prefix=prefix, id=name)
    if stype == "sse":
        return mcp_client.MCPServerSSE(url, headers=headers or None, tool_prefix=prefix, id=name)
    return None


def build_mcp_toolsets(servers: list[Any] | tuple[Any, ...] | None) -> List[Any]:
    """Construct pydantic-ai MCP toolsets in the client's order."""
    toolsets: list[Any] = []
    for server in servers or []:
        try:
            toolset = build_mcp_toolset(server)
        except (TypeError, ValueError) as exc:
            log_event(
                logger,
                "mcp.server.invalid",
                level=logging.WARNING,
                name=_field(server, "name"),
                error=str(exc),
            )
            continue
        if toolset is None:
            log_event(logger, "mcp.server.skipped", level=logging.WARNING, name=_field(server, "name"))
            continue
        toolsets.append(toolset)
    return toolsets


__all__ = ["build_mcp_toolset", "build_mcp_toolsets", "server_type"]
