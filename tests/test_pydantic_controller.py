from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from pydantic_ai.models.test import TestModel  # type: ignore
from pydantic_ai.tools import ToolDefinition  # type: ignore

from acpbridge.agent.controller import Turn
from acpbridge.agent.models import ModelCatalog
from acpbridge.agent.pydantic_controller import PydanticAIController
from acpbridge.agent.tools import build_workspace_toolset, prepare_tools_for_mode
from acpbridge.bridge.messages import AgentText, ToolProgress, ToolRequest, TurnComplete


def _turn(cwd: Path, *, mode: str = "act", text: str = "hello") -> Turn:
    return Turn(
        session_id="s1",
        cwd=cwd,
        mode=mode,
        model_id="test/test",
        prompt=[],
        prompt_text=text,
    )


def _controller(model: TestModel) -> PydanticAIController:
    return PydanticAIController(ModelCatalog(), model_builder=lambda _model_id, _entry: model)


async def _drive(controller: PydanticAIController, turn: Turn, *, approve: bool = True) -> list:
    messages = []
    async for message in controller.run_turn(turn):
        messages.append(message)
        if isinstance(message, ToolRequest):
            turn.set_decision(message.tool_call_id, approve)
    return messages


@pytest.mark.asyncio
async def test_text_streams_as_agent_text_and_history_is_kept(tmp_path: Path) -> None:
    controller = _controller(TestModel(call_tools=[], custom_output_text="hello there"))

    messages = await _drive(controller, _turn(tmp_path))

    text = "".join(message.text for message in messages if isinstance(message, AgentText))
    assert text == "hello there"
    assert isinstance(messages[-1], TurnComplete)
    assert controller.history("s1")

    controller.close_session("s1")
    assert controller.history("s1") == []


@pytest.mark.asyncio
async def test_approved_tool_call_reports_progress(tmp_path: Path) -> None:
    (tmp_path / "a").write_text("content", encoding="utf-8")
    controller = _controller(TestModel(call_tools=["read_file"]))

    messages = await _drive(controller, _turn(tmp_path))

    request = next(message for message in messages if isinstance(message, ToolRequest))
    assert request.tool_name == "read_file"
    statuses = [m.status for m in messages if isinstance(m, ToolProgress) and m.tool_call_id == request.tool_call_id]
    assert statuses[0] == "in_progress"
    assert statuses[-1] == "completed"
    assert isinstance(messages[-1], TurnComplete)


@pytest.mark.asyncio
async def test_denied_tool_call_never_runs(tmp_path: Path) -> None:
    controller = _controller(TestModel(call_tools=["write_file"]))

    messages = await _drive(controller, _turn(tmp_path), approve=False)

    request = next(message for message in messages if isinstance(message, ToolRequest))
    assert not [m for m in messages if isinstance(m, ToolProgress) and m.tool_call_id == request.tool_call_id]
    assert list(tmp_path.iterdir()) == []
    assert isinstance(messages[-1], TurnComplete)


@pytest.mark.asyncio
async def test_cancelled_turn_rejects_pending_decisions(tmp_path: Path) -> None:
    turn = _turn(tmp_path)
    turn.cancel_event.set()

    assert await turn.wait_for_decision("t1") is False


@pytest.mark.asyncio
async def test_wait_for_decision_unblocks_on_cancel(tmp_path: Path) -> None:
    turn = _turn(tmp_path)
    waiter = asyncio.create_task(turn.wait_for_decision("t1"))
    await asyncio.sleep(0)

    turn.cancel_event.set()

    assert await asyncio.wait_for(waiter, 1) is False
    turn.set_decision("t1", True)
    assert await turn.wait_for_decision("t1") is False


@pytest.mark.asyncio
async def test_provider_error_becomes_fatal_controller_error(tmp_path: Path) -> None:
    def _broken(_model_id, _entry):
        raise RuntimeError("missing key")

    controller = PydanticAIController(ModelCatalog(), model_builder=_broken)

    with pytest.raises(RuntimeError):
        await _drive(controller, _turn(tmp_path))


@pytest.mark.asyncio
async def test_plan_mode_offers_only_read_only_tools() -> None:
    defs = [ToolDefinition(name=name) for name in ("read_file", "write_file", "ls", "plan")]

    plan_tools = await prepare_tools_for_mode("plan")(None, defs)  # type: ignore[arg-type]
    act_tools = await prepare_tools_for_mode("act")(None, defs)  # type: ignore[arg-type]

    assert [tool.name for tool in plan_tools] == ["read_file", "plan"]
    assert len(act_tools) == 4


@pytest.mark.asyncio
async def test_workspace_tools_operate_under_cwd(workspace: Path) -> None:
    tools = build_workspace_toolset(workspace).tools

    listing = await tools["ls"].function(".", recursive=True)
    written = await tools["write_file"].function("notes/todo.txt", "ship it")
    read_back = await tools["read_file"].function("notes/todo.txt")
    missing = await tools["read_file"].function("nope.txt")

    assert "a.py" in listing["content"].splitlines()
    assert "pkg/b.py" in listing["content"].splitlines()
    assert written["error"] is None
    assert read_back["content"] == "ship it"
    assert missing["error"]


@pytest.mark.asyncio
async def test_workspace_tools_refuse_paths_outside_cwd(tmp_path: Path) -> None:
    workspace = tmp_path / "ws"
    workspace.mkdir()
    secret = tmp_path / "secret.txt"
    secret.write_text("s3cret", encoding="utf-8")
    tools = build_workspace_toolset(workspace).tools

    escaped_write = await tools["write_file"].function("../outside.txt", "hello")
    absolute_read = await tools["read_file"].function(str(secret))
    dotted_read = await tools["read_file"].function("../secret.txt")
    parent_listing = await tools["ls"].function("..")
    inside = await tools["read_file"].function(str(workspace / "missing.txt"))

    outside_error = "Path is outside allowed working directory"
    assert escaped_write == {"content": None, "error": outside_error}
    assert not (tmp_path / "outside.txt").exists()
    assert absolute_read == {"content": None, "error": outside_error}
    assert dotted_read["error"] == outside_error
    assert parent_listing["error"] == outside_error
    assert inside["error"] == "File '" + str(workspace / "missing.txt") + "' does not exist."
