"""Messages a controller yields while it works through one prompt turn.

The bridge never looks inside the controller; it only consumes this stream and
translates each message into ACP session updates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union

from acpbridge.bridge.plan_schema import PlanSteps

ToolProgressStatus = Literal["in_progress", "completed", "failed"]
TurnStopReason = Literal["end_turn", "max_tokens", "max_turn_requests", "refusal", "cancelled"]


@dataclass(frozen=True)
class AgentText:
    """A fragment of assistant output text."""

    text: str


@dataclass(frozen=True)
class AgentReasoning:
    """A fragment of model reasoning."""

    text: str


@dataclass(frozen=True)
class ToolRequest:
    """The controller wants to invoke a tool.

    The controller must not run the tool until `Turn.wait_for_decision` returns
    True for `tool_call_id`.
    """

    tool_call_id: str
    tool_name: str
    raw_input: dict[str, Any] = field(default_factory=dict)
    title: str | None = None


@dataclass(frozen=True)
class ToolProgress:
    """A status change (and optional output) for a previously requested tool."""

    tool_call_id: str
    status: ToolProgressStatus
    output: str | None = None
    raw_output: dict[str, Any] | None = None


@dataclass(frozen=True)
class PlanProgress:
    steps: PlanSteps
    active_index: int | None = None
    status_all: Literal["pending", "in_progress", "completed"] | None = None


@dataclass(frozen=True)
class ControllerError:
    """A problem the controller reports without aborting the turn."""

    message: str
    recoverable: bool = True


@dataclass(frozen=True)
class TurnComplete:
    stop_reason: TurnStopReason = "end_turn"


ControllerMessage = Union[AgentText, AgentReasoning, ToolRequest, ToolProgress, PlanProgress, ControllerError, TurnComplete]

__all__ = [
    "AgentReasoning",
    "AgentText",
    "ControllerError",
    "ControllerMessage",
    "PlanProgress",
    "ToolProgress",
    "ToolProgressStatus",
    "ToolRequest",
    "TurnComplete",
    "TurnStopReason",
]
