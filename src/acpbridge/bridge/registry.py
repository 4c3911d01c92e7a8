"""Live session table and the per-session turn state machine."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping

from acp.schema import SessionNotification, ToolCallStart

from acpbridge.bridge.emitter import EmitterHub, SessionEmitter
from acpbridge.bridge.permissions import PermissionArbiter
from acpbridge.errors import AlreadyProcessingError, DuplicateSessionError, SessionNotFoundError
from acpbridge.log_utils import log_event
from acpbridge.session_modes import DEFAULT_MODE

logger = logging.getLogger(__name__)


class TurnPhase(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    CANCELLING = "cancelling"


@dataclass
class Session:
    session_id: str
    cwd: Path
    mode: str = DEFAULT_MODE
    mcp_servers: tuple[Any, ...] = ()
    created_at: float = field(default_factory=time.time)
    last_activity_at: float = 0.0
    model_overrides: dict[str, str] = field(default_factory=dict)
    is_loaded_from_history: bool = False
    replayed_events: int = 0

    def __post_init__(self) -> None:
        self.last_activity_at = max(self.last_activity_at, self.created_at)

    def touch(self, now: float | None = None) -> None:
        self.last_activity_at = max(self.last_activity_at, now if now is not None else time.time())

    def model_for(self, mode: str | None = None) -> str | None:
        return self.model_overrides.get(mode or self.mode)


@dataclass
class SessionState:
    """Turn bookkeeping for one session.

    `begin_turn` is a synchronous check-and-set, so two prompts racing on the
    same event loop cannot both enter PROCESSING.
    """

    session_id: str
    phase: TurnPhase = TurnPhase.IDLE
    cancelled: bool = False
    current_tool_call_id: str | None = None
    pending_tool_calls: dict[str, ToolCallStart] = field(default_factory=dict)
    tool_statuses: dict[str, str] = field(default_factory=dict)
    always_allowed: set[str] = field(default_factory=set)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    turn_count: int = 0

    @property
    def is_processing(self) -> bool:
        return self.phase is not TurnPhase.IDLE

    def begin_turn(self) -> None:
        if self.phase is not TurnPhase.IDLE:
            raise AlreadyProcessingError(self.session_id)
        self.phase = TurnPhase.PROCESSING
        self.cancelled = False
        self.current_tool_call_id = None
        self.pending_tool_calls.clear()
        self.tool_statuses.clear()
        self.cancel_event = asyncio.Event()
        self.turn_count += 1

    def request_cancel(self) -> bool:
        """Move a running turn to CANCELLING; returns False when there was nothing to cancel."""

        if self.phase is not TurnPhase.PROCESSING:
            return False
        self.phase = TurnPhase.CANCELLING
        self.cancelled = True
        self.cancel_event.set()
        return True

    def end_turn(self) -> None:
        self.phase = TurnPhase.IDLE
        self.cancelled = False
        self.current_tool_call_id = None
        self.pending_tool_calls.clear()

    def record_tool_status(self, tool_call_id: str, status: str) -> None:
        self.tool_statuses[tool_call_id] = status
        if status in {"completed", "failed"}:
            self.pending_tool_calls.pop(tool_call_id, None)
            if self.current_tool_call_id == tool_call_id:
                self.current_tool_call_id = None
        else:
            self.current_tool_call_id = tool_call_id

    def open_tool_calls(self) -> list[str]:
        return [tcid for tcid, status in self.tool_statuses.items() if status not in {"completed", "failed"}]


class SessionRegistry:
    """Single owner of every live session, its state and its emitter."""

    def __init__(self, arbiter: PermissionArbiter | None = None, emitters: EmitterHub | None = None) -> None:
        self.emitters = emitters or EmitterHub()
        self.arbiter = arbiter or PermissionArbiter(self.emitters)
        self._sessions: dict[str, Session] = {}
        self._states: dict[str, SessionState] = {}

    def create(
        self,
        cwd: Path,
        mcp_servers: Iterable[Any] = (),
        mode: str = DEFAULT_MODE,
        session_id: str | None = None,
        *,
        model_overrides: Mapping[str, str] | None = None,
    ) -> Session:
        session_id = session_id or str(uuid.uuid4())
        if session_id in self._sessions:
            raise DuplicateSessionError(session_id, operation="create")
        session = Session(
            session_id=session_id,
            cwd=Path(cwd),
            mode=mode,
            mcp_servers=tuple(mcp_servers or ()),
            model_overrides=dict(model_overrides or {}),
        )
        self._sessions[session_id] = session
        self._states[session_id] = SessionState(session_id)
        self.emitters.open(session_id)
        log_event(logger, "session.created", session_id=session_id, cwd=str(cwd), mode=mode)
        return session

    def load_from_history(
        self,
        session_id: str,
        cwd: Path,
        mcp_servers: Iterable[Any],
        events: Iterable[SessionNotification | Any],
        *,
        mode: str = DEFAULT_MODE,
        model_overrides: Mapping[str, str] | None = None,
    ) -> Session:
        if session_id in self._sessions:
            raise DuplicateSessionError(session_id, operation="load")
        replayed = 0
        for event in events:
            update = getattr(event, "update", event)
            if getattr(update, "session_update", None) == "current_mode_update":
                mode = getattr(update, "current_mode_id", mode)
            replayed += 1
        session = self.create(cwd, mcp_servers, mode=mode, session_id=session_id, model_overrides=model_overrides)
        session.is_loaded_from_history = True
        session.replayed_events = replayed
        log_event(logger, "session.loaded", session_id=session_id, events=replayed, mode=mode)
        return session

    def get(self, session_id: str, *, operation: str | None = None) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id, operation=operation)
        return session

    def state(self, session_id: str, *, operation: str | None = None) -> SessionState:
        state = self._states.get(session_id)
        if state is None:
            raise SessionNotFoundError(session_id, operation=operation)
        return state

    def emitter(self, session_id: str, *, operation: str | None = None) -> SessionEmitter:
        emitter = self.emitters.get(session_id)
        if emitter is None:
            raise SessionNotFoundError(session_id, operation=operation)
        return emitter

    def remove(self, session_id: str) -> Session:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id, operation="remove")
        state = self._states.pop(session_id)
        released = self.arbiter.cancel_session(session_id)
        state.cancelled = True
        state.cancel_event.set()
        self.emitters.close(session_id)
        log_event(logger, "session.removed", session_id=session_id, released_permissions=released)
        return session

    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def clear(self) -> None:
        for session_id in list(self._sessions):
            self.remove(session_id)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))


__all__ = ["Session", "SessionRegistry", "SessionState", "TurnPhase"]
