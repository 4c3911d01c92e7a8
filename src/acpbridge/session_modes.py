"""Session mode helpers mapped to ACP session-mode endpoints.

See: https://agentclientprotocol.com/protocol/session-modes
"""

from __future__ import annotations

from typing import Literal

from acp.schema import SessionMode, SessionModeState

SessionModeId = Literal["plan", "act"]

DEFAULT_MODE: SessionModeId = "act"


def available_modes() -> list[dict[str, str]]:
    return [
        {"id": "plan", "name": "Plan", "description": "Gather context and propose a plan without changing anything"},
        {"id": "act", "name": "Act", "description": "Carry out the task, asking before side-effecting tools"},
    ]


def mode_ids() -> set[str]:
    return {mode["id"] for mode in available_modes()}


def is_valid_mode(mode_id: str) -> bool:
    return mode_id in mode_ids()


def build_mode_state(current_mode: str) -> SessionModeState:
    return SessionModeState(
        available_modes=[
            SessionMode(id=m["id"], name=m["name"], description=m["description"]) for m in available_modes()
        ],
        current_mode_id=current_mode,
    )
