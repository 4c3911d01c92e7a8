"""Per-session publish/subscribe channel for translated session updates."""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

from acpbridge.log_utils import log_event

logger = logging.getLogger(__name__)

ERROR_KIND = "error"

UPDATE_KINDS = frozenset(
    {
        "agent_message_chunk",
        "agent_thought_chunk",
        "user_message_chunk",
        "tool_call",
        "tool_call_update",
        "plan",
        "available_commands_update",
        "current_mode_update",
    }
)


@dataclass(frozen=True)
class SessionEvent:
    """One delivery to subscribers: either a protocol update or an error."""

    session_id: str
    kind: str
    update: Any | None = None
    error: Exception | None = None


SessionEventHandler = Callable[[SessionEvent], None]


@dataclass(frozen=True)
class SubscriptionToken:
    session_id: str
    subscription_id: int


@dataclass
class _Subscription:
    token: SubscriptionToken
    handler: SessionEventHandler
    kinds: frozenset[str] | None


def update_kind(update: Any) -> str:
    """Return the `session_update` discriminator of an ACP update."""

    kind = getattr(update, "session_update", None)
    if not isinstance(kind, str):
        raise TypeError(f"Not a session update: {type(update).__name__}")
    return kind


class SessionEmitter:
    """Synchronous fan-out of one session's updates, in subscription order.

    Subscribing mid-turn only misses earlier events; nothing is buffered.
    """

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self._subscriptions: list[_Subscription] = []
        self._ids = itertools.count(1)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, handler: SessionEventHandler, kinds: Iterable[str] | None = None) -> SubscriptionToken:
        token = SubscriptionToken(self.session_id, next(self._ids))
        kind_set = frozenset(kinds) if kinds is not None else None
        if kind_set is not None:
            unknown = kind_set - UPDATE_KINDS - {ERROR_KIND}
            if unknown:
                raise ValueError(f"Unknown session update kinds: {sorted(unknown)}")
        self._subscriptions.append(_Subscription(token, handler, kind_set))
        return token

    def unsubscribe(self, token: SubscriptionToken) -> bool:
        for idx, sub in enumerate(self._subscriptions):
            if sub.token == token:
                del self._subscriptions[idx]
                return True
        return False

    def on(self, kind: str, handler: SessionEventHandler) -> SubscriptionToken:
        return self.subscribe(handler, kinds=[kind])

    def once(self, kind: str, handler: SessionEventHandler) -> SubscriptionToken:
        token: SubscriptionToken | None = None

        def _once(event: SessionEvent) -> None:
            if token is not None:
                self.unsubscribe(token)
            handler(event)

        token = self.subscribe(_once, kinds=[kind])
        return token

    def emit(self, update: Any) -> None:
        self._dispatch(SessionEvent(self.session_id, update_kind(update), update=update))

    def emit_error(self, error: Exception) -> None:
        self._dispatch(SessionEvent(self.session_id, ERROR_KIND, error=error))

    def close(self) -> None:
        self._subscriptions.clear()
        self._closed = True

    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _dispatch(self, event: SessionEvent) -> None:
        if self._closed:
            log_event(logger, "emitter.closed.drop", level=logging.DEBUG, session_id=self.session_id, kind=event.kind)
            return
        for sub in list(self._subscriptions):
            if sub.kinds is not None and event.kind not in sub.kinds:
                continue
            try:
                sub.handler(event)
            except Exception:  # noqa: BLE001 - one bad observer must not starve the rest
                logger.exception("Session event handler failed session=%s kind=%s", self.session_id, event.kind)


class EmitterHub:
    """Owns one `SessionEmitter` per live session.

    Subscribers registered through `on_open` are attached to every emitter the
    hub opens afterwards (the transport writer, the history recorder).
    """

    def __init__(self) -> None:
        self._emitters: dict[str, SessionEmitter] = {}
        self._on_open: list[tuple[SessionEventHandler, frozenset[str] | None]] = []

    def on_open(self, handler: SessionEventHandler, kinds: Iterable[str] | None = None) -> None:
        self._on_open.append((handler, frozenset(kinds) if kinds is not None else None))

    def open(self, session_id: str) -> SessionEmitter:
        emitter = SessionEmitter(session_id)
        for handler, kinds in self._on_open:
            emitter.subscribe(handler, kinds)
        self._emitters[session_id] = emitter
        return emitter

    def get(self, session_id: str) -> SessionEmitter | None:
        return self._emitters.get(session_id)

    def close(self, session_id: str) -> None:
        emitter = self._emitters.pop(session_id, None)
        if emitter is not None:
            emitter.close()

    def subscribe(
        self, session_id: str, handler: SessionEventHandler, kinds: Iterable[str] | None = None
    ) -> SubscriptionToken:
        emitter = self._emitters.get(session_id)
        if emitter is None:
            raise KeyError(session_id)
        return emitter.subscribe(handler, kinds)

    def unsubscribe(self, token: SubscriptionToken) -> bool:
        emitter = self._emitters.get(token.session_id)
        return emitter.unsubscribe(token) if emitter is not None else False


class UpdateWriter:
    """Transport subscriber: forwards updates to the client without blocking emit.

    Each session gets a FIFO queue drained by a single writer task, so updates
    reach the transport in emission order.
    """

    def __init__(self, send: Callable[[str, Any], Awaitable[None]]) -> None:
        self._send = send
        self._queues: dict[str, asyncio.Queue[Any]] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def __call__(self, event: SessionEvent) -> None:
        if event.update is None:
            return
        self.enqueue(event.session_id, event.update)

    def enqueue(self, session_id: str, update: Any) -> None:
        queue = self._queues.get(session_id)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[session_id] = queue
            self._tasks[session_id] = asyncio.get_running_loop().create_task(
                self._drain(session_id, queue), name=f"acpbridge-writer-{session_id}"
            )
        queue.put_nowait(update)

    async def flush(self, session_id: str) -> None:
        queue = self._queues.get(session_id)
        if queue is not None:
            await queue.join()

    async def close(self, session_id: str) -> None:
        await self.flush(session_id)
        self._queues.pop(session_id, None)
        task = self._tasks.pop(session_id, None)
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def close_all(self) -> None:
        for session_id in list(self._queues):
            await self.close(session_id)

    async def _drain(self, session_id: str, queue: asyncio.Queue[Any]) -> None:
        while True:
            update = await queue.get()
            try:
                await self._send(session_id, update)
            except Exception as exc:  # noqa: BLE001 - transport failures are reported, the queue keeps draining
                log_event(
                    logger,
                    "transport.session_update.failed",
                    level=logging.WARNING,
                    session_id=session_id,
                    error=str(exc),
                )
            finally:
                queue.task_done()


__all__ = [
    "ERROR_KIND",
    "EmitterHub",
    "SessionEmitter",
    "SessionEvent",
    "SessionEventHandler",
    "SubscriptionToken",
    "UPDATE_KINDS",
    "UpdateWriter",
    "update_kind",
]
