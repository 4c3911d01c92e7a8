"""Bridge error taxonomy.

Every error derives from `acp.RequestError`, so an error raised inside a protocol
handler reaches the client as a JSON-RPC error while library callers can still
catch the specific subclass.
"""

from __future__ import annotations

from typing import Any

from acp import RequestError

INVALID_REQUEST = -32600
RESOURCE_NOT_FOUND = -32002


class BridgeError(RequestError):
    """Base class for errors raised by the session bridge."""

    error_code = INVALID_REQUEST

    def __init__(
        self,
        message: str,
        *,
        session_id: str | None = None,
        operation: str | None = None,
        **details: Any,
    ) -> None:
        data: dict[str, Any] = {"sessionId": session_id, "operation": operation, **details}
        data = {key: value for key, value in data.items() if value is not None}
        super().__init__(self.error_code, message, data or None)
        self._message = message
        self.session_id = session_id
        self.operation = operation
        self.details = details

    def __str__(self) -> str:
        return self._message


class SessionNotFoundError(BridgeError):
    error_code = RESOURCE_NOT_FOUND

    def __init__(self, session_id: str, *, operation: str | None = None) -> None:
        super().__init__(f"Session not found: {session_id}", session_id=session_id, operation=operation)


class DuplicateSessionError(BridgeError):
    def __init__(self, session_id: str, *, operation: str | None = None) -> None:
        super().__init__(f"Session already exists: {session_id}", session_id=session_id, operation=operation)


class AlreadyProcessingError(BridgeError):
    def __init__(self, session_id: str, *, operation: str | None = "prompt") -> None:
        super().__init__(
            f"Session {session_id} is already processing a prompt",
            session_id=session_id,
            operation=operation,
        )


class DuplicateRequestError(BridgeError):
    def __init__(self, session_id: str, tool_call_id: str) -> None:
        super().__init__(
            f"Permission request already outstanding for tool call {tool_call_id}",
            session_id=session_id,
            operation="request_permission",
            toolCallId=tool_call_id,
        )


class StaleResolutionError(BridgeError):
    def __init__(self, session_id: str, tool_call_id: str) -> None:
        super().__init__(
            f"No outstanding permission request for tool call {tool_call_id}",
            session_id=session_id,
            operation="resolve_permission",
            toolCallId=tool_call_id,
        )


__all__ = [
    "AlreadyProcessingError",
    "BridgeError",
    "DuplicateRequestError",
    "DuplicateSessionError",
    "SessionNotFoundError",
    "StaleResolutionError",
]
