"""Session bridge: registry, translation, permission arbitration and event fan-out."""

from acpbridge.bridge.emitter import EmitterHub, SessionEmitter, SessionEvent, SubscriptionToken, UpdateWriter  # noqa: F401
from acpbridge.bridge.messages import (  # noqa: F401
    AgentReasoning,
    AgentText,
    ControllerError,
    ControllerMessage,
    PlanProgress,
    ToolProgress,
    ToolRequest,
    TurnComplete,
)
from acpbridge.bridge.permissions import PermissionArbiter, PermissionPrompt, PermissionResolver  # noqa: F401
from acpbridge.bridge.registry import Session, SessionRegistry, SessionState, TurnPhase  # noqa: F401
from acpbridge.bridge.tool_policy import ToolPolicy, read_only_policy  # noqa: F401
from acpbridge.bridge.translator import TranslatedMessage, translate_message  # noqa: F401

__all__ = [
    "AgentReasoning",
    "AgentText",
    "ControllerError",
    "ControllerMessage",
    "EmitterHub",
    "PermissionArbiter",
    "PermissionPrompt",
    "PermissionResolver",
    "PlanProgress",
    "Session",
    "SessionEmitter",
    "SessionEvent",
    "SessionRegistry",
    "SessionState",
    "SubscriptionToken",
    "ToolPolicy",
    "ToolProgress",
    "ToolRequest",
    "TranslatedMessage",
    "TurnComplete",
    "TurnPhase",
    "UpdateWriter",
    "read_only_policy",
    "translate_message",
]
