"""Translate controller messages into ACP session updates."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from acp.helpers import (
    start_tool_call,
    text_block,
    tool_content,
    update_agent_message,
    update_agent_thought,
    update_plan,
    update_tool_call,
)
from acp.schema import PlanEntry, ToolCallUpdate

from acpbridge.bridge.messages import (
    AgentReasoning,
    AgentText,
    ControllerError,
    PlanProgress,
    ToolProgress,
    ToolRequest,
    TurnComplete,
)
from acpbridge.bridge.permissions import PermissionPrompt
from acpbridge.bridge.plan_schema import PlanSteps
from acpbridge.bridge.registry import SessionState
from acpbridge.bridge.tool_policy import ToolPolicy, permission_options, tool_kind
from acpbridge.log_utils import log_context, log_event

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"completed", "failed"})
_STATUS_RANK = {"pending": 0, "in_progress": 1, "completed": 2, "failed": 2}


class ControllerFailure(RuntimeError):
    """Error surfaced by the controller through a `ControllerError` message."""

    def __init__(self, message: str, *, recoverable: bool = True) -> None:
        super().__init__(message)
        self.recoverable = recoverable


@dataclass
class TranslatedMessage:
    updates: list[Any] = field(default_factory=list)
    requires_permission: bool = False
    permission_request: PermissionPrompt | None = None
    tool_call_id: str | None = None
    tool_status: str | None = None
    error: Exception | None = None
    stop_reason: str | None = None


def status_allowed(current: str | None, new: str) -> bool:
    """Tool call status only moves forward; terminal statuses are final."""

    if current is None:
        return new == "pending"
    if current in TERMINAL_STATUSES:
        return False
    return _STATUS_RANK[new] >= _STATUS_RANK[current]


def _tool_title(message: ToolRequest) -> str:
    if message.title:
        return message.title
    command = message.raw_input.get("command") or message.raw_input.get("path")
    if isinstance(command, str) and command.strip():
        return f"{message.tool_name}: {command.strip()}"
    return message.tool_name


def _translate_tool_request(
    message: ToolRequest, state: SessionState, *, mode: str, policy: ToolPolicy
) -> TranslatedMessage:
    if message.tool_call_id in state.tool_statuses:
        log_event(
            logger,
            "translator.tool_call.duplicate",
            level=logging.WARNING,
            tool_call_id=message.tool_call_id,
            tool_name=message.tool_name,
        )
        return TranslatedMessage(tool_call_id=message.tool_call_id)

    kind = tool_kind(message.tool_name)
    title = _tool_title(message)
    raw_input = {"tool": message.tool_name, **message.raw_input}
    start = start_tool_call(message.tool_call_id, title, kind=kind, status="pending", raw_input=raw_input)

    needs_consent = message.tool_name not in state.always_allowed and policy.requires_permission(
        message.tool_name, message.raw_input, mode
    )
    prompt: PermissionPrompt | None = None
    if needs_consent:
        prompt = PermissionPrompt(
            tool_call=ToolCallUpdate(
                tool_call_id=message.tool_call_id,
                title=title,
                kind=kind,
                status="pending",
                raw_input=raw_input,
            ),
            options=permission_options(),
            tool_name=message.tool_name,
        )
    return TranslatedMessage(
        updates=[start],
        requires_permission=needs_consent,
        permission_request=prompt,
        tool_call_id=message.tool_call_id,
        tool_status="pending",
    )


def _translate_tool_progress(message: ToolProgress, state: SessionState) -> TranslatedMessage:
    current = state.tool_statuses.get(message.tool_call_id)
    if current is None:
        log_event(
            logger,
            "translator.tool_call.unknown",
            level=logging.WARNING,
            tool_call_id=message.tool_call_id,
            status=message.status,
        )
        return TranslatedMessage(tool_call_id=message.tool_call_id)
    if not status_allowed(current, message.status):
        log_event(
            logger,
            "translator.tool_call.regression",
            level=logging.WARNING,
            tool_call_id=message.tool_call_id,
            current=current,
            status=message.status,
        )
        return TranslatedMessage(tool_call_id=message.tool_call_id)

    content = [tool_content(text_block(message.output))] if message.output else None
    progress = update_tool_call(
        message.tool_call_id,
        status=message.status,
        content=content,
        raw_output=message.raw_output,
    )
    return TranslatedMessage(updates=[progress], tool_call_id=message.tool_call_id, tool_status=message.status)


def _plan_entries(steps: PlanSteps, *, active_index: int | None, status_all: str | None) -> list[PlanEntry]:
    entries: list[PlanEntry] = []
    for idx, step in enumerate(steps.entries):
        content = step.content.strip()
        if not content:
            continue
        if status_all is not None:
            status = status_all
        elif active_index is None or idx > active_index:
            status = "pending"
        elif idx < active_index:
            status = "completed"
        else:
            status = "in_progress"
        entry = PlanEntry(content=content, priority=step.priority, status=status)
        step_id = step.id or f"step_{idx + 1}_{uuid4().hex[:6]}"
        entries.append(entry.model_copy(update={"field_meta": {"id": step_id}}))
    return entries


def build_plan_update(steps: PlanSteps, *, active_index: int | None = None, status_all: str | None = None) -> Any | None:
    entries = _plan_entries(steps, active_index=active_index, status_all=status_all)
    if not entries:
        return None
    return update_plan(entries)


def translate_message(message: Any, state: SessionState, *, mode: str, policy: ToolPolicy) -> TranslatedMessage:
    """Map one controller message to the updates it produces.

    Pure with respect to `state`: the caller records `tool_status` once the
    updates have been emitted.
    """

    with log_context(session_id=state.session_id):
        if isinstance(message, AgentText):
            return TranslatedMessage(updates=[update_agent_message(text_block(message.text))])
        if isinstance(message, AgentReasoning):
            return TranslatedMessage(updates=[update_agent_thought(text_block(message.text))])
        if isinstance(message, ToolRequest):
            return _translate_tool_request(message, state, mode=mode, policy=policy)
        if isinstance(message, ToolProgress):
            return _translate_tool_progress(message, state)
        if isinstance(message, PlanProgress):
            update = build_plan_update(message.steps, active_index=message.active_index, status_all=message.status_all)
            return TranslatedMessage(updates=[update] if update is not None else [])
        if isinstance(message, ControllerError):
            log_event(logger, "translator.controller_error", level=logging.WARNING, error=message.message)
            return TranslatedMessage(
                updates=[update_agent_message(text_block(f"Error: {message.message}"))],
                error=ControllerFailure(message.message, recoverable=message.recoverable),
                stop_reason=None if message.recoverable else "refusal",
            )
        if isinstance(message, TurnComplete):
            return TranslatedMessage(stop_reason=message.stop_reason)
        log_event(logger, "translator.unknown_message", level=logging.WARNING, message_type=type(message).__name__)
        return TranslatedMessage()


__all__ = [
    "ControllerFailure",
    "TERMINAL_STATUSES",
    "TranslatedMessage",
    "build_plan_update",
    "status_allowed",
    "translate_message",
]
