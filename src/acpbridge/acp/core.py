"""ACP agent facade wiring sessions, translation, permissions and the controller together."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Mapping

from acp import (
    PROTOCOL_VERSION,
    Agent,
    AuthenticateResponse,
    InitializeResponse,
    LoadSessionResponse,
    NewSessionResponse,
    PromptResponse,
    RequestError,
    SetSessionModeResponse,
    SetSessionModelResponse,
)
from acp.agent.connection import AgentSideConnection
from acp.helpers import ContentBlock, text_block, tool_content, update_agent_message, update_tool_call
from acp.schema import (
    AgentCapabilities,
    AvailableCommand,
    AvailableCommandsUpdate,
    CurrentModeUpdate,
    Implementation,
    McpCapabilities,
    PromptCapabilities,
    SessionConfigOption,
    SessionConfigOptionSelect,
    SessionConfigSelectOption,
    SessionNotification,
    SetSessionConfigOptionResponse,
)

from acpbridge.agent.controller import Controller, Turn, close_controller_session, shutdown_controller
from acpbridge.agent.models import ModelCatalog, is_valid_model_id
from acpbridge.agent.prompt_utils import extract_prompt_text, user_message_chunks
from acpbridge.agent.session_store import NullSessionStore, SessionStoreProtocol, is_storable_session_id
from acpbridge.bridge.emitter import SessionEmitter, SessionEvent, SessionEventHandler, SubscriptionToken, UpdateWriter
from acpbridge.bridge.permissions import PermissionHandler, PermissionPrompt, PermissionResolver, is_approval
from acpbridge.bridge.registry import Session, SessionRegistry, SessionState
from acpbridge.bridge.tool_policy import ToolPolicy, read_only_policy
from acpbridge.bridge.translator import ControllerFailure, TranslatedMessage, translate_message
from acpbridge.errors import DuplicateSessionError, SessionNotFoundError
from acpbridge.log_utils import log_context, log_event
from acpbridge.session_modes import DEFAULT_MODE, build_mode_state, is_valid_mode

logger = logging.getLogger(__name__)

DEFAULT_SHUTDOWN_GRACE_S = 5.0
MODEL_CONFIG_IDS = {"plan_model": "plan", "act_model": "act"}


@dataclass
class SlashCommands:
    available_commands: Callable[[], list[AvailableCommand]]
    handle_command: Callable[[Any, str, str], Awaitable[Any | None] | Any | None]


@dataclass
class BridgeConfig:
    agent_name: str
    agent_title: str
    agent_version: str
    controller: Controller | None = None
    controller_factory: Callable[["BridgeAgentCore"], Controller] | None = None
    tool_policy: ToolPolicy = field(default_factory=read_only_policy)
    session_store: SessionStoreProtocol | None = None
    model_catalog: ModelCatalog = field(default_factory=ModelCatalog)
    default_model_id: str | None = None
    slash_commands: SlashCommands | None = None
    authenticator: Callable[[str], Awaitable[bool] | bool] | None = None
    capabilities_builder: Callable[[], AgentCapabilities] | None = None
    shutdown_grace_s: float = DEFAULT_SHUTDOWN_GRACE_S


def default_capabilities() -> AgentCapabilities:
    return AgentCapabilities(
        load_session=True,
        prompt_capabilities=PromptCapabilities(image=True, audio=False, embedded_context=True),
        mcp_capabilities=McpCapabilities(http=True, sse=True),
    )


class BridgeAgentCore(Agent):
    """ACP agent that exposes a `Controller` through sessions, updates and permissions.

    One prompt turn runs at a time per session. Controller messages are translated
    into session updates and fanned out through the session's emitter; the
    transport writer and the history recorder are ordinary subscribers.
    """

    def __init__(self, config: BridgeConfig, conn: AgentSideConnection | None = None) -> None:
        self._config = config
        self._conn: AgentSideConnection | None = conn
        self._registry = SessionRegistry()
        self._store: SessionStoreProtocol = config.session_store or NullSessionStore()
        self._writer = UpdateWriter(self._deliver_update)
        self._registry.emitters.on_open(self._writer)
        self._registry.emitters.on_open(self._record_event)
        self._permission_handler: PermissionHandler | None = None
        self._turn_tasks: dict[str, asyncio.Task[Any]] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._client_capabilities: Any | None = None
        self._client_info: Any | None = None
        self._controller = self._build_controller()

    def on_connect(self, conn: AgentSideConnection) -> None:  # type: ignore[override]
        """Capture connection when wiring via run_agent/connect_to_agent."""
        self._conn = conn

    def _build_controller(self) -> Controller:
        if self._config.controller is not None:
            return self._config.controller
        if self._config.controller_factory is not None:
            return self._config.controller_factory(self)
        raise RuntimeError("controller or controller_factory required")

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def sessions(self) -> Mapping[str, Session]:
        return MappingProxyType({session.session_id: session for session in self._registry.sessions()})

    def set_permission_handler(self, handler: PermissionHandler | None) -> None:
        """Answer permission prompts locally instead of asking the connected client."""
        self._permission_handler = handler

    def emitter_for_session(self, session_id: str) -> SessionEmitter:
        return self._registry.emitter(session_id, operation="subscribe")

    def subscribe(
        self, session_id: str, handler: SessionEventHandler, kinds: Iterable[str] | None = None
    ) -> SubscriptionToken:
        return self.emitter_for_session(session_id).subscribe(handler, kinds)

    def unsubscribe(self, token: SubscriptionToken) -> bool:
        return self._registry.emitters.unsubscribe(token)

    async def initialize(
        self,
        protocol_version: int,
        client_capabilities: Any | None = None,
        client_info: Any | None = None,
        **_: Any,
    ) -> InitializeResponse:
        log_event(logger, "acp.initialize", protocol_version=protocol_version)
        if protocol_version != PROTOCOL_VERSION:
            logger.warning(
                "Protocol version mismatch requested=%s supported=%s",
                protocol_version,
                PROTOCOL_VERSION,
            )
        self._client_capabilities = client_capabilities
        self._client_info = client_info
        builder = self._config.capabilities_builder or default_capabilities
        return InitializeResponse(
            protocol_version=PROTOCOL_VERSION,
            agent_capabilities=builder(),
            agent_info=Implementation(
                name=self._config.agent_name,
                title=self._config.agent_title,
                version=self._config.agent_version,
            ),
        )

    async def authenticate(self, method_id: str, **_: Any) -> AuthenticateResponse | None:
        log_event(logger, "acp.authenticate", method_id=method_id)
        authenticator = self._config.authenticator
        if authenticator is None:
            return AuthenticateResponse()
        accepted = authenticator(method_id)
        if inspect.isawaitable(accepted):
            accepted = await accepted
        if not accepted:
            raise RequestError.auth_required({"methodId": method_id})
        return AuthenticateResponse()

    async def new_session(self, cwd: str, mcp_servers: list[Any] | None = None, **_: Any) -> NewSessionResponse:
        cwd_path = self._require_absolute_cwd(cwd)
        session = self._registry.create(cwd_path, mcp_servers or [], mode=DEFAULT_MODE)
        self._persist_meta(session)
        self._send_available_commands(session.session_id)
        return NewSessionResponse(
            session_id=session.session_id,
            modes=build_mode_state(session.mode),
            models=self._config.model_catalog.model_state(self._model_id(session)),
        )

    async def load_session(
        self,
        cwd: str,
        mcp_servers: list[Any] | None = None,
        session_id: str = "",
        **_: Any,
    ) -> LoadSessionResponse | None:
        cwd_path = self._require_absolute_cwd(cwd)
        if session_id in self._registry:
            raise DuplicateSessionError(session_id, operation="load")
        if not is_storable_session_id(session_id):
            raise SessionNotFoundError(session_id, operation="load")
        meta = self._store.load_meta(session_id)
        history = self._store.load_history(session_id)
        if not meta and not history:
            raise SessionNotFoundError(session_id, operation="load")

        mode = meta.get("mode") if is_valid_mode(meta.get("mode") or "") else DEFAULT_MODE
        overrides = {
            key: value
            for key, value in (meta.get("modelOverrides") or {}).items()
            if is_valid_mode(key) and is_valid_model_id(value)
        }
        session = self._registry.load_from_history(
            session_id,
            cwd_path,
            mcp_servers or [],
            history,
            mode=mode,
            model_overrides=overrides,
        )
        try:
            # Replayed notes go straight to the transport so they are not recorded twice.
            for note in history:
                self._writer.enqueue(session_id, note.update)
            await self._writer.flush(session_id)
            self._persist_meta(session)
            self._send_available_commands(session_id)
        except BaseException:
            log_event(logger, "session.load.failed", level=logging.WARNING, session_id=session_id)
            self._registry.remove(session_id)
            await self._writer.close(session_id)
            raise
        return LoadSessionResponse(
            modes=build_mode_state(session.mode),
            models=self._config.model_catalog.model_state(self._model_id(session)),
        )

    async def set_session_mode(self, mode_id: str, session_id: str, **_: Any) -> SetSessionModeResponse | None:
        session = self._registry.get(session_id, operation="set_mode")
        if not is_valid_mode(mode_id):
            raise RequestError.invalid_params({"modeId": mode_id, "message": f"Unknown mode: {mode_id}"})
        session.mode = mode_id
        session.touch()
        log_event(logger, "session.mode", session_id=session_id, mode=mode_id)
        self._registry.emitter(session_id).emit(
            CurrentModeUpdate(session_update="current_mode_update", current_mode_id=mode_id)
        )
        self._persist_meta(session)
        return SetSessionModeResponse()

    async def set_session_model(self, model_id: str, session_id: str, **_: Any) -> SetSessionModelResponse | None:
        session = self._registry.get(session_id, operation="set_model")
        self._set_model_override(session, session.mode, model_id)
        return SetSessionModelResponse()

    async def set_session_config_option(self, config_id: str, session_id: str, value: str, **_: Any) -> Any:
        session = self._registry.get(session_id, operation="set_config_option")
        if config_id == "mode":
            await self.set_session_mode(value, session_id)
        elif config_id == "model":
            self._set_model_override(session, session.mode, value)
        elif config_id in MODEL_CONFIG_IDS:
            self._set_model_override(session, MODEL_CONFIG_IDS[config_id], value)
        else:
            raise RequestError.invalid_params({"configId": config_id, "message": f"Unknown config option: {config_id}"})
        return SetSessionConfigOptionResponse(config_options=self._config_options(session))

    async def prompt(self, prompt: list[ContentBlock], session_id: str, **_: Any) -> PromptResponse:
        session = self._registry.get(session_id, operation="prompt")
        state = self._registry.state(session_id, operation="prompt")
        state.begin_turn()
        session.touch()
        task = asyncio.current_task()
        if task is not None:
            self._turn_tasks[session_id] = task
        try:
            with log_context(session_id=session_id):
                stop_reason = await self._run_turn(session, state, prompt)
        finally:
            self._turn_tasks.pop(session_id, None)
            state.end_turn()
            session.touch()
            await self._writer.flush(session_id)
        with log_context(session_id=session_id):
            log_event(logger, "prompt.end", stop_reason=stop_reason)
        return PromptResponse(stop_reason=stop_reason)

    async def cancel(self, session_id: str, **_: Any) -> None:
        """Cancel the running turn; a no-op for unknown or idle sessions."""
        if session_id not in self._registry:
            log_event(logger, "prompt.cancel.unknown_session", level=logging.DEBUG, session_id=session_id)
            return
        state = self._registry.state(session_id)
        if not state.request_cancel():
            log_event(logger, "prompt.cancel.idle", level=logging.DEBUG, session_id=session_id)
            return
        released = self._registry.arbiter.cancel_session(session_id)
        log_event(logger, "prompt.cancel", session_id=session_id, released_permissions=released)

    async def close_session(self, session_id: str) -> None:
        """Destroy a session, rejecting its outstanding permission requests."""
        state = self._registry.state(session_id, operation="close")
        state.request_cancel()
        self._registry.remove(session_id)
        await self._writer.close(session_id)
        await close_controller_session(self._controller, session_id)

    async def shutdown(self) -> None:
        log_event(logger, "bridge.shutdown", sessions=len(self._registry))
        for session_id in list(self._registry):
            self._registry.state(session_id).request_cancel()
        self._registry.arbiter.release_all()

        current = asyncio.current_task()
        running = [task for task in self._turn_tasks.values() if task is not current and not task.done()]
        if running:
            _done, pending = await asyncio.wait(running, timeout=self._config.shutdown_grace_s)
            for task in pending:
                log_event(logger, "bridge.shutdown.turn_timeout", level=logging.WARNING, task=task.get_name())
                task.cancel()

        for session_id in list(self._registry):
            self._registry.remove(session_id)
            await close_controller_session(self._controller, session_id)
        for task in list(self._background):
            task.cancel()
        await self._writer.close_all()
        await shutdown_controller(self._controller)

    async def _run_turn(self, session: Session, state: SessionState, prompt: list[ContentBlock]) -> str:
        session_id = session.session_id
        emitter = self._registry.emitter(session_id)
        prompt_text = extract_prompt_text(prompt)
        self._store_user_prompt(session_id, prompt)

        if self._config.slash_commands is not None:
            reply = self._config.slash_commands.handle_command(self, session_id, prompt_text)
            if inspect.isawaitable(reply):
                reply = await reply
            if reply is not None:
                emitter.emit(reply)
                return "end_turn"

        mode = session.mode
        model_id = self._model_id(session)
        turn = Turn(
            session_id=session_id,
            cwd=session.cwd,
            mode=mode,
            model_id=model_id,
            prompt=list(prompt),
            prompt_text=prompt_text,
            mcp_servers=session.mcp_servers,
            cancel_event=state.cancel_event,
        )
        log_event(logger, "prompt.start", mode=mode, model_id=model_id, turn=state.turn_count)

        stop_reason = "end_turn"
        messages: AsyncIterator[Any] = self._controller.run_turn(turn)
        try:
            async for message in messages:
                if state.cancelled:
                    break
                translated = translate_message(message, state, mode=mode, policy=self._config.tool_policy)
                await self._apply(translated, session, state, turn, emitter)
                if translated.stop_reason is not None:
                    stop_reason = translated.stop_reason
                    break
                if state.cancelled:
                    break
        except Exception as exc:  # noqa: BLE001 - controller failures end the turn, not the session
            logger.exception("Controller failed session=%s", session_id)
            emitter.emit_error(ControllerFailure(str(exc), recoverable=False))
            emitter.emit(update_agent_message(text_block(f"Error: {exc}")))
            stop_reason = "refusal"
        finally:
            turn.reject_undecided()
            await self._close_messages(messages)

        if state.cancelled:
            self._fail_open_tool_calls(state, emitter, "cancelled")
            return "cancelled"
        if stop_reason == "refusal":
            self._fail_open_tool_calls(state, emitter, "turn failed")
        return stop_reason

    async def _apply(
        self,
        translated: TranslatedMessage,
        session: Session,
        state: SessionState,
        turn: Turn,
        emitter: SessionEmitter,
    ) -> None:
        for update in translated.updates:
            emitter.emit(update)
        if translated.error is not None:
            emitter.emit_error(translated.error)
        tool_call_id = translated.tool_call_id
        if tool_call_id is None or translated.tool_status is None:
            return
        state.record_tool_status(tool_call_id, translated.tool_status)
        if translated.tool_status != "pending":
            return

        state.pending_tool_calls[tool_call_id] = translated.updates[0]
        approved = True
        if translated.requires_permission and translated.permission_request is not None:
            approved = await self._arbitrate(session, state, tool_call_id, translated.permission_request)
        turn.set_decision(tool_call_id, approved)
        if not approved and not state.cancelled:
            emitter.emit(
                update_tool_call(
                    tool_call_id,
                    status="failed",
                    content=[tool_content(text_block("Permission denied"))],
                    raw_output={"error": "permission denied"},
                )
            )
            state.record_tool_status(tool_call_id, "failed")

    async def _arbitrate(
        self, session: Session, state: SessionState, tool_call_id: str, prompt: PermissionPrompt
    ) -> bool:
        session_id = session.session_id
        arbiter = self._registry.arbiter
        future = arbiter.request(session_id, tool_call_id, prompt.options)
        resolver = arbiter.resolver(session_id, tool_call_id)
        state.current_tool_call_id = tool_call_id

        handler = self._permission_handler
        if handler is not None:
            result = handler(prompt, resolver)
            if inspect.isawaitable(result):
                self._spawn(result, name=f"acpbridge-permission-{tool_call_id}")
        else:
            self._spawn(self._ask_client(session_id, prompt, resolver), name=f"acpbridge-permission-{tool_call_id}")

        response = await future
        approved, always = is_approval(response, prompt.options)
        if always and prompt.tool_name:
            state.always_allowed.add(prompt.tool_name)
        with log_context(tool_call_id=tool_call_id):
            log_event(
                logger,
                "permission.decision",
                approved=approved,
                always=always,
                option_id=getattr(response.outcome, "option_id", None),
            )
        return approved

    async def _ask_client(self, session_id: str, prompt: PermissionPrompt, resolver: PermissionResolver) -> None:
        try:
            if self._conn is None:
                raise RuntimeError("Connection not established")
            response = await self._conn.request_permission(
                options=prompt.options,
                session_id=session_id,
                tool_call=prompt.tool_call,
            )
        except Exception as exc:  # noqa: BLE001 - a failed request is treated as a rejection
            log_event(
                logger,
                "permission.client_error",
                level=logging.WARNING,
                session_id=session_id,
                tool_call_id=resolver.tool_call_id,
                error=str(exc),
            )
            if self._registry.arbiter.has_pending(session_id, resolver.tool_call_id):
                resolver.reject()
            return
        if response is None:
            resolver.reject()
        else:
            resolver(response)

    def _spawn(self, awaitable: Awaitable[Any], *, name: str) -> None:
        task = asyncio.ensure_future(awaitable)
        task.set_name(name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @staticmethod
    async def _close_messages(messages: Any) -> None:
        closer = getattr(messages, "aclose", None)
        if closer is None:
            return
        try:
            await closer()
        except Exception:  # noqa: BLE001 - the turn result is already decided
            logger.exception("Closing controller stream failed")

    def _fail_open_tool_calls(self, state: SessionState, emitter: SessionEmitter, reason: str) -> None:
        for tool_call_id in state.open_tool_calls():
            emitter.emit(
                update_tool_call(
                    tool_call_id,
                    status="failed",
                    content=[tool_content(text_block(reason.capitalize()))],
                    raw_output={"error": reason},
                )
            )
            state.record_tool_status(tool_call_id, "failed")

    def _set_model_override(self, session: Session, mode: str, model_id: str) -> None:
        if not is_valid_model_id(model_id):
            raise RequestError.invalid_params(
                {"modelId": model_id, "message": "Model id must look like '<provider>/<modelId>'"}
            )
        if model_id not in self._config.model_catalog:
            log_event(logger, "session.model.uncatalogued", level=logging.DEBUG, model_id=model_id)
        session.model_overrides[mode] = model_id
        session.touch()
        log_event(logger, "session.model", session_id=session.session_id, mode=mode, model_id=model_id)
        self._persist_meta(session)

    def model_state(self, session_id: str) -> Any:
        """Catalog models plus the model the session's current mode resolves to."""
        session = self._registry.get(session_id, operation="models")
        return self._config.model_catalog.model_state(self._model_id(session))

    def _model_id(self, session: Session) -> str:
        return (
            session.model_for(session.mode)
            or self._config.default_model_id
            or self._config.model_catalog.default_model_id
        )

    def _config_options(self, session: Session) -> list[Any]:
        catalog = self._config.model_catalog
        mode_choices = [
            SessionConfigSelectOption(name=mode.name, value=mode.id)
            for mode in build_mode_state(session.mode).available_modes
        ]
        options = [
            SessionConfigOption(
                root=SessionConfigOptionSelect(
                    id="mode",
                    name="Mode",
                    type="select",
                    current_value=session.mode,
                    options=mode_choices,
                )
            )
        ]
        selects = [("model", "Model", session.mode)]
        selects += [(config_id, f"{mode.capitalize()} model", mode) for config_id, mode in MODEL_CONFIG_IDS.items()]
        for config_id, name, mode in selects:
            current = session.model_for(mode) or self._config.default_model_id or catalog.default_model_id
            state = catalog.model_state(current)
            options.append(
                SessionConfigOption(
                    root=SessionConfigOptionSelect(
                        id=config_id,
                        name=name,
                        type="select",
                        current_value=current,
                        options=[
                            SessionConfigSelectOption(name=info.name, value=info.model_id)
                            for info in state.available_models
                        ],
                    )
                )
            )
        return options

    def _send_available_commands(self, session_id: str) -> None:
        if self._config.slash_commands is None:
            return
        commands = self._config.slash_commands.available_commands()
        if not commands:
            return
        self._registry.emitter(session_id).emit(
            AvailableCommandsUpdate(session_update="available_commands_update", available_commands=commands)
        )

    async def _deliver_update(self, session_id: str, update: Any) -> None:
        if self._conn is None:
            raise RuntimeError("Connection not established")
        await self._conn.session_update(session_id=session_id, update=update)

    def _record_event(self, event: SessionEvent) -> None:
        """Persist emitted updates for `session/load` replay."""
        if event.update is None or event.kind == "available_commands_update":
            return
        self._store.persist_update(event.session_id, SessionNotification(session_id=event.session_id, update=event.update))

    def _store_user_prompt(self, session_id: str, prompt: list[Any]) -> None:
        for chunk in user_message_chunks(prompt):
            self._store.persist_update(session_id, SessionNotification(session_id=session_id, update=chunk))

    def _persist_meta(self, session: Session) -> None:
        self._store.persist_meta(
            session.session_id,
            session.cwd,
            list(session.mcp_servers),
            current_mode=session.mode,
            model_overrides=dict(session.model_overrides),
        )

    @staticmethod
    def _require_absolute_cwd(cwd: str) -> Path:
        path = Path(cwd or "").expanduser()
        if not path.is_absolute():
            raise RequestError.invalid_request({"message": "cwd must be an absolute path", "cwd": cwd})
        return path


__all__ = ["BridgeAgentCore", "BridgeConfig", "DEFAULT_SHUTDOWN_GRACE_S", "SlashCommands", "default_capabilities"]
