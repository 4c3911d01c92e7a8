"""Default controller: a pydantic-ai agent streamed through `run_stream_events`."""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable

from pydantic_ai import Agent as PydanticAgent  # type: ignore
from pydantic_ai import RunContext  # type: ignore
from pydantic_ai.messages import (  # type: ignore
    FunctionToolCallEvent,
    FunctionToolResultEvent,
    PartDeltaEvent,
    PartStartEvent,
    RetryPromptPart,
    TextPart,
    TextPartDelta,
    ThinkingPart,
    ThinkingPartDelta,
)
from pydantic_ai.run import AgentRunResultEvent  # type: ignore
from pydantic_ai.toolsets import ToolsetTool  # type: ignore
from pydantic_ai.toolsets.wrapper import WrapperToolset  # type: ignore

from acpbridge.agent.controller import Turn
from acpbridge.agent.mcp_support import build_mcp_toolsets
from acpbridge.agent.models import ModelCatalog, build_model
from acpbridge.agent.tools import PLAN_TOOL, build_workspace_toolset, prepare_tools_for_mode
from acpbridge.bridge.messages import (
    AgentReasoning,
    AgentText,
    ControllerError,
    ControllerMessage,
    PlanProgress,
    ToolProgress,
    ToolRequest,
    TurnComplete,
)
from acpbridge.bridge.plan_schema import PlanSteps
from acpbridge.log_utils import log_context, log_event

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """
You are a careful coding agent helping a developer inside their project.

- Prefer short, actionable answers; prefer code over prose.
- Inspect files with the available tools before changing them; cite key paths.
- For multi-step work, call the `plan` tool first with a few ordered steps.
- In plan mode, gather context and propose a plan; do not modify anything.
- Some tools need the user's approval. If a tool call is denied, do not retry it; explain what you needed instead.
"""

TOOL_OUTPUT_LIMIT = 20_000
DENIED_RESULT = {"content": None, "error": "permission denied"}


@dataclass
class ApprovalGatedToolset(WrapperToolset[Any]):
    """Runs a wrapped tool only once the bridge approved its tool call id."""

    turn: Turn

    async def call_tool(
        self,
        name: str,
        tool_args: dict[str, Any],
        ctx: RunContext[Any],
        tool: ToolsetTool[Any],
    ) -> Any:
        tool_call_id = ctx.tool_call_id
        if not tool_call_id or not await self.turn.wait_for_decision(tool_call_id):
            with log_context(session_id=self.turn.session_id, tool_call_id=tool_call_id):
                log_event(logger, "controller.tool.denied", tool_name=name)
            return dict(DENIED_RESULT)
        return await self.wrapped.call_tool(name, tool_args, ctx, tool)


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    suffix = "\n[truncated]"
    return f"{text[: max(0, limit - len(suffix))]}{suffix}"


def _tool_args(part: Any) -> dict[str, Any]:
    try:
        args = part.args_as_dict()
    except ValueError:
        return {"raw": str(getattr(part, "args", ""))}
    return args if isinstance(args, dict) else {"value": args}


class PydanticAIController:
    """Drives one pydantic-ai agent run per prompt turn, keeping history per session."""

    def __init__(
        self,
        catalog: ModelCatalog | None = None,
        *,
        model_builder: Callable[[str, dict[str, Any] | None], Any] = build_model,
        system_prompt: str = SYSTEM_PROMPT,
        tool_output_limit: int = TOOL_OUTPUT_LIMIT,
    ) -> None:
        self._catalog = catalog or ModelCatalog()
        self._model_builder = model_builder
        self._system_prompt = system_prompt
        self._tool_output_limit = tool_output_limit
        self._histories: dict[str, list[Any]] = {}

    def history(self, session_id: str) -> list[Any]:
        return list(self._histories.get(session_id, []))

    def close_session(self, session_id: str) -> None:
        self._histories.pop(session_id, None)

    def shutdown(self) -> None:
        self._histories.clear()

    def build_agent(self, turn: Turn) -> Any:
        model = self._model_builder(turn.model_id, self._catalog.models.get(turn.model_id))
        toolsets = [build_workspace_toolset(turn.cwd), *build_mcp_toolsets(list(turn.mcp_servers))]
        return PydanticAgent(
            model,
            toolsets=[ApprovalGatedToolset(toolset, turn=turn) for toolset in toolsets],
            system_prompt=self._system_prompt,
            prepare_tools=prepare_tools_for_mode(turn.mode),
        )

    async def run_turn(self, turn: Turn) -> AsyncIterator[ControllerMessage]:
        with log_context(session_id=turn.session_id):
            log_event(logger, "controller.turn.start", model_id=turn.model_id, mode=turn.mode)
        agent = self.build_agent(turn)
        history = self._histories.get(turn.session_id)
        denied: set[str] = set()
        events = agent.run_stream_events(turn.prompt_text, message_history=history)
        try:
            async for event in events:
                if turn.cancelled:
                    return
                if isinstance(event, PartStartEvent):
                    if isinstance(event.part, TextPart) and event.part.content:
                        yield AgentText(event.part.content)
                    elif isinstance(event.part, ThinkingPart) and event.part.content:
                        yield AgentReasoning(event.part.content)
                elif isinstance(event, PartDeltaEvent):
                    if isinstance(event.delta, TextPartDelta) and event.delta.content_delta:
                        yield AgentText(event.delta.content_delta)
                    elif isinstance(event.delta, ThinkingPartDelta) and event.delta.content_delta:
                        yield AgentReasoning(event.delta.content_delta)
                elif isinstance(event, FunctionToolCallEvent):
                    async for message in self._on_tool_call(turn, event, denied):
                        yield message
                elif isinstance(event, FunctionToolResultEvent):
                    message = self._on_tool_result(event, denied)
                    if message is not None:
                        yield message
                elif isinstance(event, AgentRunResultEvent):
                    self._histories[turn.session_id] = list(event.result.all_messages())
                    yield TurnComplete("end_turn")
                    return
        except Exception as exc:
            with log_context(session_id=turn.session_id):
                log_event(logger, "controller.turn.error", level=logging.WARNING, error=str(exc))
            yield ControllerError(f"Provider error: {exc}", recoverable=False)
        finally:
            closer = getattr(events, "aclose", None)
            if callable(closer):
                with contextlib.suppress(RuntimeError):
                    await closer()

    async def _on_tool_call(
        self, turn: Turn, event: FunctionToolCallEvent, denied: set[str]
    ) -> AsyncIterator[ControllerMessage]:
        part = event.part
        tool_call_id = part.tool_call_id
        args = _tool_args(part)
        yield ToolRequest(tool_call_id=tool_call_id, tool_name=part.tool_name, raw_input=args)
        # The bridge has recorded a decision by the time this generator resumes.
        if not await turn.wait_for_decision(tool_call_id):
            denied.add(tool_call_id)
            return
        yield ToolProgress(tool_call_id, "in_progress")
        if part.tool_name == PLAN_TOOL:
            try:
                steps = PlanSteps.model_validate(args)
            except ValueError as exc:
                log_event(logger, "controller.plan.invalid", level=logging.WARNING, error=str(exc))
            else:
                yield PlanProgress(steps, active_index=0)

    def _on_tool_result(self, event: FunctionToolResultEvent, denied: set[str]) -> ToolProgress | None:
        tool_call_id = event.tool_call_id
        if tool_call_id in denied:
            return None
        result = event.result
        if isinstance(result, RetryPromptPart):
            return ToolProgress(tool_call_id, "failed", output=str(result.model_response()))
        content = getattr(result, "content", None)
        raw_output = content if isinstance(content, dict) else {"content": content}
        failed = isinstance(content, dict) and bool(content.get("error"))
        summary = str((content.get("error") if failed else content.get("content")) if isinstance(content, dict) else content)
        return ToolProgress(
            tool_call_id,
            "failed" if failed else "completed",
            output=_truncate(summary, self._tool_output_limit),
            raw_output=raw_output,
        )


__all__ = ["ApprovalGatedToolset", "PydanticAIController", "SYSTEM_PROMPT"]
