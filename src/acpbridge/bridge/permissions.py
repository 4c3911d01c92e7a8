"""Correlation table for tool-call permission requests awaiting a client decision."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from acp import RequestPermissionResponse
from acp.schema import AllowedOutcome, DeniedOutcome, PermissionOption, ToolCallUpdate

from acpbridge.bridge.emitter import EmitterHub
from acpbridge.errors import DuplicateRequestError, StaleResolutionError
from acpbridge.log_utils import log_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PermissionPrompt:
    """What the client is asked: the tool call and the options it may pick."""

    tool_call: ToolCallUpdate
    options: list[PermissionOption]
    tool_name: str = ""


@dataclass
class PendingPermission:
    session_id: str
    tool_call_id: str
    options: list[PermissionOption]
    future: asyncio.Future[RequestPermissionResponse] = field(repr=False)


def cancelled_response() -> RequestPermissionResponse:
    return RequestPermissionResponse(outcome=DeniedOutcome(outcome="cancelled"))


def selected_response(option_id: str) -> RequestPermissionResponse:
    return RequestPermissionResponse(outcome=AllowedOutcome(option_id=option_id, outcome="selected"))


def is_approval(response: RequestPermissionResponse, options: list[PermissionOption]) -> tuple[bool, bool]:
    """Return `(approved, always)` for a client response against the offered options."""

    outcome = response.outcome
    if not isinstance(outcome, AllowedOutcome):
        return False, False
    kinds = {option.option_id: option.kind for option in options}
    kind = kinds.get(outcome.option_id)
    if kind is None:
        log_event(logger, "permission.unknown_option", level=logging.WARNING, option_id=outcome.option_id)
        return False, False
    return kind in {"allow_once", "allow_always"}, kind == "allow_always"


class PermissionArbiter:
    """Pairs each outstanding permission request with exactly one resolution.

    Entries are keyed by `(session_id, tool_call_id)`. Resolution pops the entry
    before fulfilling its future, so a second resolution finds nothing and is
    reported as stale. There is no timeout; requests wait until resolved,
    cancelled, or released.
    """

    def __init__(self, emitters: EmitterHub | None = None) -> None:
        self._pending: dict[tuple[str, str], PendingPermission] = {}
        self._emitters = emitters

    def request(
        self, session_id: str, tool_call_id: str, options: list[PermissionOption]
    ) -> asyncio.Future[RequestPermissionResponse]:
        key = (session_id, tool_call_id)
        if key in self._pending:
            raise DuplicateRequestError(session_id, tool_call_id)
        future: asyncio.Future[RequestPermissionResponse] = asyncio.get_running_loop().create_future()
        self._pending[key] = PendingPermission(session_id, tool_call_id, list(options), future)
        log_event(logger, "permission.requested", session_id=session_id, tool_call_id=tool_call_id)
        return future

    def resolve(self, session_id: str, tool_call_id: str, response: RequestPermissionResponse) -> None:
        entry = self._pending.pop((session_id, tool_call_id), None)
        if entry is None or entry.future.done():
            raise StaleResolutionError(session_id, tool_call_id)
        entry.future.set_result(response)
        log_event(
            logger,
            "permission.resolved",
            session_id=session_id,
            tool_call_id=tool_call_id,
            outcome=getattr(response.outcome, "outcome", None),
        )

    def resolver(self, session_id: str, tool_call_id: str) -> PermissionResolver:
        return PermissionResolver(self, session_id, tool_call_id)

    def options_for(self, session_id: str, tool_call_id: str) -> list[PermissionOption]:
        entry = self._pending.get((session_id, tool_call_id))
        return list(entry.options) if entry else []

    def pending(self, session_id: str) -> list[str]:
        return [tool_call_id for (sid, tool_call_id) in self._pending if sid == session_id]

    def has_pending(self, session_id: str, tool_call_id: str) -> bool:
        return (session_id, tool_call_id) in self._pending

    def cancel_session(self, session_id: str) -> int:
        """Reject every outstanding request of a session; returns how many were released."""

        return self._release(lambda sid: sid == session_id)

    def release_all(self) -> int:
        return self._release(lambda _sid: True)

    def report_stale(self, error: StaleResolutionError) -> None:
        log_event(
            logger,
            "permission.stale_resolution",
            level=logging.WARNING,
            session_id=error.session_id,
            tool_call_id=error.details.get("toolCallId"),
        )
        if self._emitters is None or error.session_id is None:
            return
        emitter = self._emitters.get(error.session_id)
        if emitter is not None:
            emitter.emit_error(error)

    def _release(self, match: Callable[[str], bool]) -> int:
        keys = [key for key in self._pending if match(key[0])]
        for key in keys:
            entry = self._pending.pop(key)
            if not entry.future.done():
                entry.future.set_result(cancelled_response())
            log_event(logger, "permission.released", session_id=key[0], tool_call_id=key[1])
        return len(keys)


@dataclass(frozen=True)
class PermissionResolver:
    """Handle given to permission handlers to answer one request.

    Calling it a second time (or after the turn was cancelled) is logged and
    reported on the session's emitter instead of raising into the handler.
    """

    arbiter: PermissionArbiter
    session_id: str
    tool_call_id: str

    def __call__(self, response: RequestPermissionResponse) -> bool:
        try:
            self.arbiter.resolve(self.session_id, self.tool_call_id, response)
        except StaleResolutionError as exc:
            self.arbiter.report_stale(exc)
            return False
        return True

    def select(self, option_id: str) -> bool:
        return self(selected_response(option_id))

    def reject(self) -> bool:
        return self(cancelled_response())


PermissionHandler = Callable[[PermissionPrompt, PermissionResolver], Any]


__all__ = [
    "PendingPermission",
    "PermissionArbiter",
    "PermissionHandler",
    "PermissionPrompt",
    "PermissionResolver",
    "cancelled_response",
    "is_approval",
    "selected_response",
]
