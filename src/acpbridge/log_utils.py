"""Logging configuration and structured context helpers."""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import os
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator

from acpbridge.paths import log_dir

ENV_PREFIX = "ACPBRIDGE_LOG_"
DEFAULT_LOG_FILE = "acpbridge.log"
DEFAULT_LOG_MAX_BYTES = 5_000_000
DEFAULT_LOG_BACKUPS = 3

_LOG_CONTEXT: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar("acpbridge_log_context", default={})


@dataclass(frozen=True)
class LogConfig:
    """Settings for the bridge's root logger.

    The agent speaks ACP over stdio, so logs go to a rotating file by default and
    only reach stderr when explicitly requested.
    """

    log_file: Path
    level: int = logging.INFO
    stderr: bool = False
    json: bool = False
    max_bytes: int = DEFAULT_LOG_MAX_BYTES
    backup_count: int = DEFAULT_LOG_BACKUPS
    logger_levels: Dict[str, int] = field(default_factory=dict)


def _env(name: str) -> str | None:
    return os.getenv(f"{ENV_PREFIX}{name}")


def _env_level(name: str, default: int) -> int:
    value = _env(name)
    if not value:
        return default
    if value.isdigit():
        return int(value)
    return logging.getLevelNamesMapping().get(value.upper(), default)


def _env_flag(name: str) -> bool:
    value = _env(name)
    return value is not None and value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = _env(name)
    if value is None or not value.strip().isdigit():
        return default
    return int(value)


def build_log_config(*, log_file_name: str = DEFAULT_LOG_FILE, default_level: int = logging.INFO) -> LogConfig:
    """Build log configuration from `ACPBRIDGE_LOG_*` environment variables."""

    directory = Path(_env("DIR") or log_dir())
    directory.mkdir(parents=True, exist_ok=True)

    return LogConfig(
        log_file=directory / log_file_name,
        level=_env_level("LEVEL", default_level),
        stderr=_env_flag("STDERR"),
        json=_env_flag("JSON"),
        max_bytes=_env_int("MAX_BYTES", DEFAULT_LOG_MAX_BYTES),
        backup_count=_env_int("BACKUPS", DEFAULT_LOG_BACKUPS),
    )


def configure_logging(config: LogConfig) -> None:
    """Install the bridge's handlers on the root logger, replacing any existing ones."""

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(config.level)

    formatter: logging.Formatter = (
        JsonFormatter() if config.json else ContextFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    )
    handlers: list[logging.Handler] = [
        RotatingFileHandler(
            config.log_file,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
    ]
    if config.stderr:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(ContextFilter())
        root.addHandler(handler)

    for name, level in config.logger_levels.items():
        logging.getLogger(name).setLevel(level)


@contextlib.contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind fields such as `session_id` or `tool_call_id` to every record logged in the block.

    `None` values are dropped so callers can pass optional ids unconditionally.
    """

    bound = {**_LOG_CONTEXT.get(), **{key: value for key, value in fields.items() if value is not None}}
    token = _LOG_CONTEXT.set(bound)
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Log a dotted event name (`turn.start`, `permission.resolved`) with key/value fields."""

    logger.log(level, event, extra={"event_fields": fields})


def _render(value: Any) -> str:
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=True, separators=(",", ":"), default=str)
    text = str(value)
    if text == "" or any(ch.isspace() or ch in '="' for ch in text):
        return json.dumps(text)
    return text


def _pairs(*groups: Dict[str, Any]) -> str:
    return " ".join(
        f"{key}={_render(group[key])}" for group in groups for key in sorted(group) if group[key] is not None
    )


class ContextFilter(logging.Filter):
    """Snapshot the bound log context onto the record."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.context_fields = dict(_LOG_CONTEXT.get())
        if not hasattr(record, "event_fields"):
            record.event_fields = {}
        return True


class ContextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        suffix = _pairs(getattr(record, "context_fields", {}), getattr(record, "event_fields", {}))
        return f"{line} {suffix}" if suffix else line


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with `context` and `fields` kept apart."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, attr in (("context", "context_fields"), ("fields", "event_fields")):
            value = getattr(record, attr, None)
            if value:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)
