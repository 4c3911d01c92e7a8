"""Session persistence for `session/load`.

Stores session metadata and the stream of session/update notifications on disk
so a later `session/load` can replay the conversation to the client.
"""

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Protocol

from acp.schema import SessionNotification
from pydantic import BaseModel, ValidationError

from acpbridge.log_utils import log_event

logger = logging.getLogger(__name__)


def is_storable_session_id(session_id: str) -> bool:
    """True when `session_id` names a single directory entry under the store root."""
    return bool(session_id) and "/" not in session_id and "\\" not in session_id and session_id not in {".", ".."}


class SessionStoreProtocol(Protocol):
    def persist_meta(
        self,
        session_id: str,
        cwd: Path,
        mcp_servers: Iterable[Any],
        *,
        current_mode: str,
        model_overrides: dict[str, str] | None = None,
    ) -> None: ...

    def load_meta(self, session_id: str) -> dict[str, Any]: ...

    def persist_update(self, session_id: str, note: SessionNotification) -> None: ...

    def load_history(self, session_id: str) -> List[SessionNotification]: ...


class NullSessionStore:
    """No-op store used when persistence is disabled."""

    def persist_meta(self, *_: Any, **__: Any) -> None:
        return None

    def load_meta(self, session_id: str) -> dict[str, Any]:
        return {}

    def persist_update(self, session_id: str, note: SessionNotification) -> None:
        return None

    def load_history(self, session_id: str) -> List[SessionNotification]:
        return []


@dataclass
class FileSessionStore:
    """`meta.json` plus `history.jsonl` per session, bounded to the newest `max_sessions`."""

    root: Path
    max_sessions: int = 50

    def __post_init__(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self.cleanup()

    def session_path(self, session_id: str) -> Path:
        if not is_storable_session_id(session_id):
            raise ValueError(f"Invalid session id for storage: {session_id!r}")
        return self.root / session_id

    def session_dir(self, session_id: str) -> Path:
        path = self.session_path(session_id)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def persist_meta(
        self,
        session_id: str,
        cwd: Path,
        mcp_servers: Iterable[Any],
        *,
        current_mode: str,
        model_overrides: dict[str, str] | None = None,
    ) -> None:
        meta = {
            "cwd": str(cwd),
            "mcpServers": [self._dump_model(server) for server in (mcp_servers or [])],
            "mode": current_mode,
            "modelOverrides": dict(model_overrides or {}),
        }
        meta_path = self.session_dir(session_id) / "meta.json"
        meta_path.write_text(json.dumps(meta, indent=2), encoding="utf-8")

    def load_meta(self, session_id: str) -> dict[str, Any]:
        meta_path = self.session_path(session_id) / "meta.json"
        if not meta_path.exists():
            return {}
        try:
            return json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            log_event(logger, "session_store.meta.unreadable", level=logging.WARNING, session_id=session_id, error=str(exc))
            return {}

    def persist_update(self, session_id: str, note: SessionNotification) -> None:
        history_path = self.session_dir(session_id) / "history.jsonl"
        payload = note.model_dump(mode="json", by_alias=True, exclude_none=True)
        with history_path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(payload) + "\n")

    def load_history(self, session_id: str) -> List[SessionNotification]:
        history_path = self.session_path(session_id) / "history.jsonl"
        if not history_path.exists():
            return []
        notes: list[SessionNotification] = []
        for lineno, line in enumerate(history_path.read_text(encoding="utf-8").splitlines(), start=1):
            if not line.strip():
                continue
            try:
                notes.append(SessionNotification.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as exc:
                log_event(
                    logger,
                    "session_store.history.bad_line",
                    level=logging.WARNING,
                    session_id=session_id,
                    line=lineno,
                    error=str(exc),
                )
        return notes

    def cleanup(self) -> None:
        """Prune on-disk sessions beyond the newest `max_sessions` (by directory mtime)."""
        if not self.root.is_dir():
            return
        histories = sorted(
            self.root.glob("*/history.jsonl"),
            key=lambda path: path.parent.stat().st_mtime,
            reverse=True,
        )
        for stale in histories[self.max_sessions :]:
            log_event(logger, "session_store.pruned", session_id=stale.parent.name)
            shutil.rmtree(stale.parent, ignore_errors=True)

    @staticmethod
    def _dump_model(obj: Any) -> dict[str, Any]:
        if isinstance(obj, BaseModel):
            return obj.model_dump(mode="json", by_alias=True, exclude_none=True)
        if isinstance(obj, dict):
            return dict(obj)
        return {key: value for key, value in vars(obj).items() if not key.startswith("_")}


__all__ = ["FileSessionStore", "NullSessionStore", "SessionStoreProtocol", "is_storable_session_id"]
