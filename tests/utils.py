from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock

from acp.agent.connection import AgentSideConnection

from acpbridge.acp.core import BridgeAgentCore, BridgeConfig
from acpbridge.agent.controller import Turn
from acpbridge.bridge.messages import ToolRequest
from acpbridge.bridge.permissions import selected_response


class Gate:
    """Script step that parks the controller until released or the turn is cancelled."""

    def __init__(self) -> None:
        self.reached = asyncio.Event()
        self.release = asyncio.Event()

    async def wait(self, turn: Turn) -> None:
        self.reached.set()
        release = asyncio.ensure_future(self.release.wait())
        cancelled = asyncio.ensure_future(turn.cancel_event.wait())
        try:
            await asyncio.wait({release, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            release.cancel()
            cancelled.cancel()


class ScriptedController:
    """Deterministic controller yielding a fixed message script per turn.

    After each `ToolRequest` it waits for the bridge's decision, as a real
    controller must, and records it in `decisions`.
    """

    def __init__(self, *script: Any) -> None:
        self.script = list(script)
        self.turns: list[Turn] = []
        self.decisions: dict[str, bool] = {}
        self.closed_sessions: list[str] = []
        self.shut_down = False

    async def run_turn(self, turn: Turn):
        self.turns.append(turn)
        for step in self.script:
            if isinstance(step, Gate):
                await step.wait(turn)
                continue
            if isinstance(step, BaseException):
                raise step
            yield step
            if isinstance(step, ToolRequest):
                self.decisions[step.tool_call_id] = await turn.wait_for_decision(step.tool_call_id)

    def close_session(self, session_id: str) -> None:
        self.closed_sessions.append(session_id)

    def shutdown(self) -> None:
        self.shut_down = True


def make_conn(option_id: str | None = "allow") -> AsyncMock:
    """AsyncMock connection that records updates and answers permission prompts."""

    conn = AsyncMock(spec=AgentSideConnection)
    conn.session_update = AsyncMock()
    if option_id is not None:
        conn.request_permission = AsyncMock(return_value=selected_response(option_id))
    else:
        conn.request_permission = AsyncMock()
    return conn


def make_bridge(controller: Any, conn: AsyncMock | None = None, **overrides: Any) -> tuple[BridgeAgentCore, AsyncMock]:
    conn = conn if conn is not None else make_conn()
    config = BridgeConfig(
        agent_name="acpbridge",
        agent_title="ACP Session Bridge",
        agent_version="0.1.0-test",
        controller=controller,
        **overrides,
    )
    agent = BridgeAgentCore(config)
    agent.on_connect(conn)
    return agent, conn


def sent_updates(conn: AsyncMock, session_id: str | None = None) -> list[Any]:
    updates = []
    for call in conn.session_update.call_args_list:
        if session_id is None or call.kwargs.get("session_id") == session_id:
            updates.append(call.kwargs["update"])
    return updates


def update_kinds(updates: list[Any]) -> list[str]:
    return [getattr(update, "session_update", "") for update in updates]


def tool_statuses(updates: list[Any], tool_call_id: str) -> list[str]:
    return [
        update.status
        for update in updates
        if getattr(update, "tool_call_id", None) == tool_call_id and getattr(update, "status", None) is not None
    ]
