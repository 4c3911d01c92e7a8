from __future__ import annotations

from pydantic_ai import mcp as mcp_client  # type: ignore

from acpbridge.agent.mcp_support import build_mcp_toolsets, server_type


def test_builds_toolsets_in_client_order_and_skips_bad_entries() -> None:
    servers = [
        {"type": "http", "name": "web", "url": "http://localhost:9000/mcp", "headers": [{"name": "X-Key", "value": "k"}]},
        {"name": "no transport"},
        {"name": "files server", "command": "mcp-files", "args": ["--root", "/tmp"], "env": [{"name": "A", "value": "1"}]},
        {"type": "sse", "name": "events", "url": "http://localhost:9001/sse", "headers": []},
    ]

    toolsets = build_mcp_toolsets(servers)

    assert [type(toolset) for toolset in toolsets] == [
        mcp_client.MCPServerStreamableHTTP,
        mcp_client.MCPServerStdio,
        mcp_client.MCPServerSSE,
    ]
    assert toolsets[1].tool_prefix == "files_server"


def test_server_type_infers_stdio() -> None:
    assert server_type({"command": "run"}) == "stdio"
    assert server_type({"type": "http"}) == "http"
    assert server_type({}) is None
    assert build_mcp_toolsets(None) == []
