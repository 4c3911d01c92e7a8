"""Interface between the session bridge and the reasoning engine."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Protocol, runtime_checkable

from acpbridge.bridge.messages import ControllerMessage


@dataclass
class Turn:
    """Everything a controller needs to run one prompt turn.

    The bridge approves or rejects each requested tool call through
    `set_decision`; the controller must wait on `wait_for_decision` before running
    the tool. A cancelled turn rejects every undecided call.
    """

    session_id: str
    cwd: Path
    mode: str
    model_id: str
    prompt: list[Any]
    prompt_text: str
    mcp_servers: tuple[Any, ...] = ()
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    _decisions: dict[str, asyncio.Future[bool]] = field(default_factory=dict, repr=False)

    def _decision(self, tool_call_id: str) -> asyncio.Future[bool]:
        future = self._decisions.get(tool_call_id)
        if future is None:
            future = asyncio.get_running_loop().create_future()
            self._decisions[tool_call_id] = future
        return future

    def set_decision(self, tool_call_id: str, approved: bool) -> None:
        future = self._decision(tool_call_id)
        if not future.done():
            future.set_result(approved)

    async def wait_for_decision(self, tool_call_id: str) -> bool:
        future = self._decision(tool_call_id)
        if self.cancel_event.is_set():
            self.set_decision(tool_call_id, False)
            return future.result()
        cancel_wait = asyncio.ensure_future(self.cancel_event.wait())
        try:
            await asyncio.wait({future, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_wait.cancel()
        if not future.done():
            future.set_result(False)
        return future.result()

    def reject_undecided(self) -> None:
        for future in self._decisions.values():
            if not future.done():
                future.set_result(False)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


@runtime_checkable
class Controller(Protocol):
    def run_turn(self, turn: Turn) -> AsyncIterator[ControllerMessage]: ...


async def close_controller_session(controller: Any, session_id: str) -> None:
    hook = getattr(controller, "close_session", None)
    if hook is None:
        return
    result = hook(session_id)
    if asyncio.iscoroutine(result):
        await result


async def shutdown_controller(controller: Any) -> None:
    hook = getattr(controller, "shutdown", None)
    if hook is None:
        return
    result = hook()
    if asyncio.iscoroutine(result):
        await result


__all__ = ["Controller", "Turn", "close_controller_session", "shutdown_controller"]
