"""Tool classification and the auto-approval policy for tool calls."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from acp.schema import PermissionOption

AutoApprovePredicate = Callable[[str, dict[str, Any], str], bool]

READ_ONLY_KINDS = frozenset({"read", "search", "think"})

_KIND_BY_NAME = {
    "read_file": "read",
    "list_files": "read",
    "list_directory": "read",
    "file_summary": "read",
    "write_file": "edit",
    "edit_file": "edit",
    "replace_in_file": "edit",
    "apply_patch": "edit",
    "delete_file": "delete",
    "move_file": "move",
    "search_files": "search",
    "code_search": "search",
    "ls": "execute",
    "run_command": "execute",
    "execute_command": "execute",
    "fetch_url": "fetch",
    "web_fetch": "fetch",
    "plan": "think",
}


def tool_kind(tool_name: str) -> str:
    """Return the ACP tool kind label for a tool name."""

    name = tool_name.lower().strip()
    if name in _KIND_BY_NAME:
        return _KIND_BY_NAME[name]
    if name.startswith(("read", "list", "get")):
        return "read"
    if name.startswith(("search", "find", "grep")):
        return "search"
    return "other"


def permission_options() -> list[PermissionOption]:
    """Options offered to the client for a tool that needs consent."""

    return [
        PermissionOption(option_id="allow", name="Allow", kind="allow_once"),
        PermissionOption(option_id="allow_always", name="Always allow this tool", kind="allow_always"),
        PermissionOption(option_id="reject", name="Reject", kind="reject_once"),
    ]


@dataclass(frozen=True)
class ToolPolicy:
    """Decides which tool calls skip the permission handshake.

    `auto_approve(tool_name, raw_input, mode)` returns True for tools that may run
    without asking the client.
    """

    auto_approve: AutoApprovePredicate

    def requires_permission(self, tool_name: str, raw_input: dict[str, Any], mode: str) -> bool:
        return not self.auto_approve(tool_name, raw_input, mode)


@dataclass(frozen=True)
class KindPolicy:
    """Auto-approve tools by kind or by explicit name."""

    kinds: frozenset[str] = READ_ONLY_KINDS
    names: frozenset[str] = field(default_factory=frozenset)

    def __call__(self, tool_name: str, raw_input: dict[str, Any], mode: str) -> bool:
        _ = raw_input, mode
        return tool_name in self.names or tool_kind(tool_name) in self.kinds


def ask_every_time() -> ToolPolicy:
    return ToolPolicy(auto_approve=lambda *_: False)


def read_only_policy(extra: Iterable[str] = ()) -> ToolPolicy:
    """Auto-approve read/search/think tools plus any names or kinds in `extra`."""

    extra = {item.strip() for item in extra if item and item.strip()}
    known_kinds = set(_KIND_BY_NAME.values()) | {"other"}
    kinds = READ_ONLY_KINDS | {item for item in extra if item in known_kinds}
    names = {item for item in extra if item not in known_kinds}
    return ToolPolicy(auto_approve=KindPolicy(kinds=frozenset(kinds), names=frozenset(names)))


def policy_from_env() -> ToolPolicy:
    """Read-only policy extended by the comma separated `ACPBRIDGE_AUTO_APPROVE` list."""

    raw = os.getenv("ACPBRIDGE_AUTO_APPROVE", "")
    return read_only_policy(raw.split(","))


__all__ = [
    "AutoApprovePredicate",
    "KindPolicy",
    "ToolPolicy",
    "ask_every_time",
    "permission_options",
    "policy_from_env",
    "read_only_policy",
    "tool_kind",
]
