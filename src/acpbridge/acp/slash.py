"""Slash command helpers mapped to ACP slash-commands.

See: https://agentclientprotocol.com/protocol/slash-commands
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from acp import RequestError
from acp.helpers import text_block, update_agent_message
from acp.schema import AgentMessageChunk, AvailableCommand, AvailableCommandInput, UnstructuredCommandInput

from acpbridge.session_modes import available_modes

SLASH_HANDLERS: dict[str, "SlashCommandDef"] = {}

SlashHandler = Callable[[Any, str, str, str], Awaitable[AgentMessageChunk | None] | AgentMessageChunk | None]


@dataclass
class SlashCommandDef:
    description: str
    hint: str
    handler: SlashHandler


def register_slash_command(name: str, description: str, hint: str) -> Callable[[SlashHandler], SlashHandler]:
    """Decorator to register a slash command handler."""

    def _decorator(func: SlashHandler) -> SlashHandler:
        SLASH_HANDLERS[name] = SlashCommandDef(description=description, hint=hint, handler=func)
        return func

    return _decorator


def _reply(text: str) -> AgentMessageChunk:
    return update_agent_message(text_block(text))


def _error_message(exc: RequestError) -> str:
    data = getattr(exc, "data", None)
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return str(exc)


@register_slash_command(
    "/mode",
    description="Show or switch the session mode (plan, act).",
    hint="/mode <plan|act>",
)
async def _handle_mode(agent: Any, session_id: str, _command: str, argument: str) -> AgentMessageChunk:
    session = agent.sessions[session_id]
    if not argument:
        names = ", ".join(mode["id"] for mode in available_modes())
        return _reply(f"Current mode: {session.mode}. Available modes: {names}.")
    try:
        await agent.set_session_mode(argument, session_id)
    except RequestError as exc:
        return _reply(f"Failed to set mode: {_error_message(exc)}")
    return _reply(f"Mode set to {argument}.")


@register_slash_command(
    "/model",
    description="Switch the model used in the current mode.",
    hint="/model <provider/model>",
)
async def _handle_model(agent: Any, session_id: str, _command: str, argument: str) -> AgentMessageChunk:
    if not argument:
        return _list_models(agent, session_id)
    try:
        await agent.set_session_model(argument, session_id)
    except RequestError as exc:
        return _reply(f"Failed to set model: {_error_message(exc)}")
    return _reply(f"Model set to {argument}.")


@register_slash_command(
    "/models",
    description="List available models.",
    hint="/models",
)
def _handle_models(agent: Any, session_id: str, _command: str, _argument: str) -> AgentMessageChunk:
    return _list_models(agent, session_id)


def _list_models(agent: Any, session_id: str) -> AgentMessageChunk:
    state = agent.model_state(session_id)
    lines = [f"Current model: {state.current_model_id}", "Available models:"]
    for info in state.available_models:
        line = f"- {info.model_id}"
        if info.description:
            line = f"{line} - {info.description}"
        lines.append(line)
    return _reply("\n".join(lines))


@register_slash_command(
    "/log",
    description="Set agent log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).",
    hint="/log <level>",
)
def _handle_log(_agent: Any, _session_id: str, _command: str, argument: str) -> AgentMessageChunk:
    return _reply(_set_log_level(argument))


async def handle_slash_command(agent: Any, session_id: str, prompt: str) -> AgentMessageChunk | None:
    """Answer a registered slash command; `None` lets the prompt reach the controller."""
    trimmed = prompt.strip()
    if not trimmed.startswith("/"):
        return None

    parts = trimmed.split(maxsplit=1)
    command = parts[0] if parts else ""
    argument = parts[1].strip() if len(parts) > 1 else ""

    entry = SLASH_HANDLERS.get(command)
    if entry is None:
        return None

    result = entry.handler(agent, session_id, command, argument)
    if asyncio.iscoroutine(result):
        return await result
    return result


def available_slash_commands() -> list[AvailableCommand]:
    """Build ACP AvailableCommand entries from registered slash commands."""
    return [
        AvailableCommand(
            name=name.lstrip("/"),
            description=entry.description,
            input=AvailableCommandInput(root=UnstructuredCommandInput(hint=entry.hint)),
        )
        for name, entry in SLASH_HANDLERS.items()
    ]


def _set_log_level(level: str) -> str:
    level_name = (level or "").strip().upper()
    valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    current_name = logging.getLevelName(logging.getLogger().getEffectiveLevel())
    usage = f"Usage: /log <level>. Valid levels: {', '.join(sorted(valid_levels))}. Current: {current_name}."

    if not level_name:
        return usage
    if level_name not in valid_levels:
        return f"Unsupported log level '{level}'. {usage}"

    target_level = getattr(logging, level_name)
    logging.getLogger().setLevel(target_level)
    for name in ("acpbridge", "pydantic_ai"):
        logging.getLogger(name).setLevel(target_level)
    return f"Logging level set to {level_name}."


__all__ = ["SLASH_HANDLERS", "available_slash_commands", "handle_slash_command", "register_slash_command"]
