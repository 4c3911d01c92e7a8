"""Workspace tools exposed to the default pydantic-ai controller.

Every tool resolves paths against the session's working directory, refuses paths
that escape it, and returns a `{"content": ..., "error": ...}` dict, the shape the
controller reports back as tool output.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Awaitable, Callable

from pydantic_ai import FunctionToolset, RunContext  # type: ignore
from pydantic_ai.tools import ToolDefinition  # type: ignore

from acpbridge.bridge.plan_schema import PlanStep
from acpbridge.bridge.tool_policy import READ_ONLY_KINDS, tool_kind

PLAN_TOOL = "plan"
MAX_LIST_ENTRIES = 500
OUTSIDE_CWD = {"content": None, "error": "Path is outside allowed working directory"}


def _resolve(cwd: Path, path: str) -> Path | None:
    base = cwd.resolve()
    candidate = Path(path).expanduser()
    resolved = (candidate if candidate.is_absolute() else base / candidate).resolve()
    try:
        resolved.relative_to(base)
    except ValueError:
        return None
    return resolved


def build_workspace_toolset(cwd: Path) -> FunctionToolset[Any]:
    async def ls(path: str = ".", recursive: bool = False) -> dict[str, Any]:
        """List files and directories under `path`."""
        target = _resolve(cwd, path)
        if target is None:
            return dict(OUTSIDE_CWD)
        if not target.exists():
            return {"content": None, "error": f"Directory '{path}' does not exist."}
        if not target.is_dir():
            return {"content": None, "error": f"'{path}' is not a directory."}
        items = target.rglob("*") if recursive else target.iterdir()
        lines = sorted(f"{item.relative_to(target)}{'/' if item.is_dir() else ''}" for item in items)
        truncated = len(lines) > MAX_LIST_ENTRIES
        return {"content": "\n".join(lines[:MAX_LIST_ENTRIES]), "error": None, "truncated": truncated}

    async def read_file(path: str, start_line: int | None = None, num_lines: int | None = None) -> dict[str, Any]:
        """Read a text file, optionally a 1-based line range."""
        target = _resolve(cwd, path)
        if target is None:
            return dict(OUTSIDE_CWD)
        if not target.is_file():
            return {"content": None, "error": f"File '{path}' does not exist."}
        try:
            lines = target.read_text(encoding="utf-8").splitlines(keepends=True)
        except (OSError, UnicodeDecodeError) as exc:
            return {"content": None, "error": f"Error reading file: {exc}"}
        start = max((start_line or 1) - 1, 0)
        end = start + num_lines if num_lines is not None else None
        return {"content": "".join(lines[start:end]), "error": None}

    async def write_file(path: str, content: str) -> dict[str, Any]:
        """Create or overwrite a text file."""
        target = _resolve(cwd, path)
        if target is None:
            return dict(OUTSIDE_CWD)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as exc:
            return {"content": None, "error": f"Error writing file: {exc}"}
        return {"content": f"Wrote {len(content)} characters to {path}", "error": None}

    async def plan(entries: list[PlanStep]) -> dict[str, Any]:
        """Record a short ordered plan for the current task."""
        return {"content": "\n".join(f"- {step.content}" for step in entries), "error": None}

    return FunctionToolset([ls, read_file, write_file, plan])


def prepare_tools_for_mode(
    mode: str,
) -> Callable[[RunContext[Any], list[ToolDefinition]], Awaitable[list[ToolDefinition]]]:
    """Plan mode only offers read-only tools; act mode offers everything."""

    async def _prepare(_ctx: RunContext[Any], tool_defs: list[ToolDefinition]) -> list[ToolDefinition]:
        if mode != "plan":
            return tool_defs
        return [tool_def for tool_def in tool_defs if tool_kind(tool_def.name) in READ_ONLY_KINDS]

    return _prepare


__all__ = ["PLAN_TOOL", "build_workspace_toolset", "prepare_tools_for_mode"]
