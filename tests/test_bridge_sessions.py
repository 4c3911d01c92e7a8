from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from acp import PROTOCOL_VERSION, RequestError
from acp.helpers import text_block
from acp.schema import AgentMessageChunk, AvailableCommandsUpdate, CurrentModeUpdate, UserMessageChunk

from acpbridge.acp.core import SlashCommands
from acpbridge.acp.slash import available_slash_commands, handle_slash_command
from acpbridge.agent.models import ModelCatalog
from acpbridge.agent.session_store import FileSessionStore
from acpbridge.bridge.messages import AgentText, TurnComplete
from acpbridge.errors import DuplicateSessionError, SessionNotFoundError
from tests.utils import Gate, ScriptedController, make_bridge, sent_updates


@pytest.mark.asyncio
async def test_initialize_advertises_capabilities() -> None:
    agent, _conn = make_bridge(ScriptedController())

    response = await agent.initialize(protocol_version=PROTOCOL_VERSION)

    assert response.protocol_version == PROTOCOL_VERSION
    caps = response.agent_capabilities
    assert caps.load_session is True
    assert caps.prompt_capabilities.image is True
    assert caps.prompt_capabilities.audio is False
    assert caps.prompt_capabilities.embedded_context is True
    assert caps.mcp_capabilities.http is True
    assert caps.mcp_capabilities.sse is True
    assert response.agent_info.name == "acpbridge"
    assert response.agent_info.version == "0.1.0-test"


@pytest.mark.asyncio
async def test_authenticate_delegates_to_authenticator() -> None:
    async def _only_token(method_id: str) -> bool:
        return method_id == "token"

    agent, _conn = make_bridge(ScriptedController(), authenticator=_only_token)

    assert await agent.authenticate(method_id="token") is not None
    with pytest.raises(RequestError):
        await agent.authenticate(method_id="password")


@pytest.mark.asyncio
async def test_new_session_requires_absolute_cwd() -> None:
    agent, _conn = make_bridge(ScriptedController())

    with pytest.raises(RequestError):
        await agent.new_session(cwd="relative/path", mcp_servers=[])


@pytest.mark.asyncio
async def test_new_session_returns_modes_models_and_commands(workspace: Path) -> None:
    slash = SlashCommands(available_commands=available_slash_commands, handle_command=handle_slash_command)
    agent, conn = make_bridge(ScriptedController(), slash_commands=slash)

    response = await agent.new_session(cwd=str(workspace), mcp_servers=[])
    await agent._writer.flush(response.session_id)  # type: ignore[attr-defined]

    assert response.modes.current_mode_id == "act"
    assert {mode.id for mode in response.modes.available_modes} == {"plan", "act"}
    assert response.models.current_model_id == "test/test"
    updates = sent_updates(conn, response.session_id)
    assert isinstance(updates[0], AvailableCommandsUpdate)
    assert {command.name for command in updates[0].available_commands} >= {"mode", "model", "models", "log"}
    assert agent.sessions[response.session_id].cwd == workspace


@pytest.mark.asyncio
async def test_set_session_mode_emits_update_and_validates(workspace: Path) -> None:
    agent, conn = make_bridge(ScriptedController())
    session = await agent.new_session(cwd=str(workspace), mcp_servers=[])

    await agent.set_session_mode(mode_id="plan", session_id=session.session_id)
    await agent._writer.flush(session.session_id)  # type: ignore[attr-defined]

    assert agent.sessions[session.session_id].mode == "plan"
    updates = sent_updates(conn, session.session_id)
    assert isinstance(updates[-1], CurrentModeUpdate)
    assert updates[-1].current_mode_id == "plan"
    with pytest.raises(RequestError):
        await agent.set_session_mode(mode_id="yolo", session_id=session.session_id)
    with pytest.raises(SessionNotFoundError):
        await agent.set_session_mode(mode_id="plan", session_id="missing")


@pytest.mark.asyncio
async def test_set_session_model_validates_format(workspace: Path) -> None:
    agent, _conn = make_bridge(ScriptedController())
    session = await agent.new_session(cwd=str(workspace), mcp_servers=[])

    await agent.set_session_model(model_id="anthropic/claude-sonnet-4-5", session_id=session.session_id)

    assert agent.sessions[session.session_id].model_overrides == {"act": "anthropic/claude-sonnet-4-5"}
    with pytest.raises(RequestError):
        await agent.set_session_model(model_id="no-provider", session_id=session.session_id)
    with pytest.raises(SessionNotFoundError):
        await agent.set_session_model(model_id="test/test", session_id="missing")


@pytest.mark.asyncio
async def test_set_session_config_option_reports_all_options(workspace: Path) -> None:
    catalog = ModelCatalog(models={"test/test": {"name": "Test"}, "openai/o3": {"name": "o3"}})
    agent, _conn = make_bridge(ScriptedController(), model_catalog=catalog)
    session = await agent.new_session(cwd=str(workspace), mcp_servers=[])

    response = await agent.set_session_config_option(
        config_id="act_model", session_id=session.session_id, value="openai/o3"
    )

    options = {option.root.id: option.root for option in response.config_options}
    assert set(options) == {"mode", "model", "plan_model", "act_model"}
    assert options["act_model"].current_value == "openai/o3"
    assert options["model"].current_value == "openai/o3"
    assert options["plan_model"].current_value == "test/test"

    await agent.set_session_config_option(config_id="mode", session_id=session.session_id, value="plan")
    assert agent.sessions[session.session_id].mode == "plan"
    with pytest.raises(RequestError):
        await agent.set_session_config_option(config_id="temperature", session_id=session.session_id, value="1")


@pytest.mark.asyncio
async def test_load_session_replays_history_and_restores_state(workspace: Path, tmp_path: Path) -> None:
    store = FileSessionStore(tmp_path / "sessions")
    controller = ScriptedController(AgentText("hello back"), TurnComplete())
    first, _first_conn = make_bridge(controller, session_store=store)
    session = await first.new_session(cwd=str(workspace), mcp_servers=[])
    await first.set_session_mode(mode_id="plan", session_id=session.session_id)
    await first.set_session_model(model_id="openai/o3", session_id=session.session_id)
    await first.prompt(prompt=[text_block("hello")], session_id=session.session_id)

    second, conn = make_bridge(ScriptedController(), session_store=store)
    response = await second.load_session(cwd=str(workspace), mcp_servers=[], session_id=session.session_id)

    assert response.modes.current_mode_id == "plan"
    assert response.models.current_model_id == "openai/o3"
    replayed = sent_updates(conn, session.session_id)
    assert isinstance(replayed[0], CurrentModeUpdate)
    assert any(isinstance(u, UserMessageChunk) and u.content.text == "hello" for u in replayed)
    assert any(isinstance(u, AgentMessageChunk) and u.content.text == "hello back" for u in replayed)
    loaded = second.sessions[session.session_id]
    assert loaded.is_loaded_from_history
    assert loaded.model_overrides == {"plan": "openai/o3"}

    with pytest.raises(DuplicateSessionError):
        await second.load_session(cwd=str(workspace), mcp_servers=[], session_id=session.session_id)


@pytest.mark.asyncio
async def test_load_unknown_session_raises(workspace: Path, tmp_path: Path) -> None:
    agent, _conn = make_bridge(ScriptedController(), session_store=FileSessionStore(tmp_path / "sessions"))

    with pytest.raises(SessionNotFoundError):
        await agent.load_session(cwd=str(workspace), mcp_servers=[], session_id="nope")


@pytest.mark.asyncio
async def test_load_rejects_ids_escaping_the_store(workspace: Path, tmp_path: Path) -> None:
    victim = tmp_path / "victim"
    victim.mkdir()
    (victim / "meta.json").write_text('{"cwd": "/", "mode": "plan"}', encoding="utf-8")
    agent, conn = make_bridge(ScriptedController(), session_store=FileSessionStore(tmp_path / "sessions"))

    for session_id in ("../victim", "..", ""):
        with pytest.raises(SessionNotFoundError):
            await agent.load_session(cwd=str(workspace), mcp_servers=[], session_id=session_id)

    assert len(agent.sessions) == 0
    assert sent_updates(conn) == []


class _ReadOnlyStore(FileSessionStore):
    def persist_meta(self, *_args, **_kwargs) -> None:
        raise OSError("read-only file system")


@pytest.mark.asyncio
async def test_failed_load_does_not_leave_session_registered(workspace: Path, tmp_path: Path) -> None:
    root = tmp_path / "sessions"
    first, _first_conn = make_bridge(ScriptedController(), session_store=FileSessionStore(root))
    session = await first.new_session(cwd=str(workspace), mcp_servers=[])
    await first.set_session_mode(mode_id="plan", session_id=session.session_id)

    second, _conn = make_bridge(ScriptedController(), session_store=_ReadOnlyStore(root))
    with pytest.raises(OSError):
        await second.load_session(cwd=str(workspace), mcp_servers=[], session_id=session.session_id)

    assert session.session_id not in second.sessions
    assert len(second.registry) == 0


@pytest.mark.asyncio
async def test_slash_command_is_answered_without_controller(workspace: Path) -> None:
    slash = SlashCommands(available_commands=available_slash_commands, handle_command=handle_slash_command)
    controller = ScriptedController(TurnComplete())
    agent, conn = make_bridge(controller, slash_commands=slash)
    session = await agent.new_session(cwd=str(workspace), mcp_servers=[])

    response = await agent.prompt(prompt=[text_block("/mode plan")], session_id=session.session_id)

    assert response.stop_reason == "end_turn"
    assert controller.turns == []
    assert agent.sessions[session.session_id].mode == "plan"
    texts = [u.content.text for u in sent_updates(conn) if isinstance(u, AgentMessageChunk)]
    assert texts == ["Mode set to plan."]


@pytest.mark.asyncio
async def test_shutdown_cancels_turns_and_destroys_sessions(workspace: Path) -> None:
    gate = Gate()
    controller = ScriptedController(AgentText("working"), gate, TurnComplete())
    agent, _conn = make_bridge(controller, shutdown_grace_s=1.0)
    session = await agent.new_session(cwd=str(workspace), mcp_servers=[])

    task = asyncio.create_task(agent.prompt(prompt=[text_block("go")], session_id=session.session_id))
    await asyncio.wait_for(gate.reached.wait(), 2)
    await agent.shutdown()

    assert (await task).stop_reason == "cancelled"
    assert len(agent.sessions) == 0
    assert controller.closed_sessions == [session.session_id]
    assert controller.shut_down


@pytest.mark.asyncio
async def test_subscribers_see_updates_in_emission_order(workspace: Path) -> None:
    controller = ScriptedController(AgentText("a"), AgentText("b"), AgentText("c"), TurnComplete())
    agent, conn = make_bridge(controller)
    session = await agent.new_session(cwd=str(workspace), mcp_servers=[])
    seen: list[str] = []
    token = agent.subscribe(session.session_id, lambda event: seen.append(event.update.content.text))

    await agent.prompt(prompt=[text_block("go")], session_id=session.session_id)
    assert agent.unsubscribe(token) is True

    assert seen == ["a", "b", "c"]
    assert [u.content.text for u in sent_updates(conn)] == ["a", "b", "c"]
