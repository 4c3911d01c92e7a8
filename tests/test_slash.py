from __future__ import annotations

import logging
from pathlib import Path

import pytest

from acpbridge.acp.slash import available_slash_commands, handle_slash_command
from tests.utils import ScriptedController, make_bridge


@pytest.mark.asyncio
async def test_non_commands_fall_through(workspace: Path) -> None:
    agent, _conn = make_bridge(ScriptedController())
    session = await agent.new_session(cwd=str(workspace), mcp_servers=[])

    assert await handle_slash_command(agent, session.session_id, "list the files") is None
    assert await handle_slash_command(agent, session.session_id, "/unknown thing") is None


@pytest.mark.asyncio
async def test_model_commands(workspace: Path) -> None:
    agent, _conn = make_bridge(ScriptedController())
    session = await agent.new_session(cwd=str(workspace), mcp_servers=[])

    listing = await handle_slash_command(agent, session.session_id, "/models")
    switched = await handle_slash_command(agent, session.session_id, "/model openai/o3")
    rejected = await handle_slash_command(agent, session.session_id, "/model o3")

    assert listing.content.text.startswith("Current model: test/test")
    assert switched.content.text == "Model set to openai/o3."
    assert rejected.content.text.startswith("Failed to set model:")
    assert agent.sessions[session.session_id].model_for() == "openai/o3"


@pytest.mark.asyncio
async def test_mode_command_reports_and_validates(workspace: Path) -> None:
    agent, _conn = make_bridge(ScriptedController())
    session = await agent.new_session(cwd=str(workspace), mcp_servers=[])

    current = await handle_slash_command(agent, session.session_id, "/mode")
    bad = await handle_slash_command(agent, session.session_id, "/mode yolo")

    assert current.content.text == "Current mode: act. Available modes: plan, act."
    assert bad.content.text.startswith("Failed to set mode:")


@pytest.mark.asyncio
async def test_log_command_sets_root_level(workspace: Path) -> None:
    agent, _conn = make_bridge(ScriptedController())
    session = await agent.new_session(cwd=str(workspace), mcp_servers=[])
    root = logging.getLogger()
    previous = root.level
    try:
        reply = await handle_slash_command(agent, session.session_id, "/log debug")
        assert reply.content.text == "Logging level set to DEBUG."
        assert root.level == logging.DEBUG
        usage = await handle_slash_command(agent, session.session_id, "/log loud")
        assert usage.content.text.startswith("Unsupported log level 'loud'.")
    finally:
        root.setLevel(previous)
        logging.getLogger("acpbridge").setLevel(logging.NOTSET)
        logging.getLogger("pydantic_ai").setLevel(logging.NOTSET)


def test_available_commands_have_hints() -> None:
    commands = {command.name: command for command in available_slash_commands()}

    assert set(commands) >= {"mode", "model", "models", "log"}
    assert commands["model"].input.root.hint == "/model <provider/model>"
