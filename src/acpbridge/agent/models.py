"""Model catalog and pydantic-ai model construction.

Model ids use the `"<provider>/<modelId>"` form. The catalog advertised to
clients comes from built-in defaults merged with an optional `models.json` in
the config directory; credentials are read from the environment (and `.env`).
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

from acp.schema import ModelInfo, SessionModelState
from dotenv import load_dotenv
from pydantic_ai.models.anthropic import AnthropicModel  # type: ignore
from pydantic_ai.models.google import GoogleModel  # type: ignore
from pydantic_ai.models.openai import OpenAIChatModel  # type: ignore
from pydantic_ai.models.openrouter import OpenRouterModel  # type: ignore
from pydantic_ai.models.test import TestModel  # type: ignore
from pydantic_ai.providers.anthropic import AnthropicProvider  # type: ignore
from pydantic_ai.providers.google import GoogleProvider  # type: ignore
from pydantic_ai.providers.ollama import OllamaProvider  # type: ignore
from pydantic_ai.providers.openai import OpenAIProvider  # type: ignore
from pydantic_ai.providers.openrouter import OpenRouterProvider  # type: ignore

from acpbridge.log_utils import log_event
from acpbridge.paths import config_dir

logger = logging.getLogger(__name__)

OLLAMA_BASE_URL = "http://localhost:11434/v1"
DEFAULT_MODEL_ID = "test/test"

DEFAULT_MODELS: Dict[str, Dict[str, str]] = {
    "test/test": {"name": "Test", "description": "Deterministic local model for offline use and tests"},
    "openai/gpt-4o-mini": {"name": "GPT-4o mini", "description": "OpenAI GPT-4o mini"},
    "anthropic/claude-sonnet-4-5": {"name": "Claude Sonnet 4.5", "description": "Anthropic Claude Sonnet 4.5"},
    "google/gemini-2.5-pro": {"name": "Gemini 2.5 Pro", "description": "Google Gemini 2.5 Pro"},
    "openrouter/x-ai/grok-4.1-fast:free": {
        "name": "Grok 4.1 fast (OpenRouter)",
        "description": "OpenRouter proxy for x-ai/grok-4.1-fast:free",
    },
    "ollama/qwen2.5-coder:7b": {"name": "Qwen2.5 Coder 7B", "description": "Ollama qwen2.5-coder:7b (local)"},
}


def parse_model_id(model_id: str) -> tuple[str, str]:
    """Split `"<provider>/<modelId>"`; the model part may itself contain slashes."""

    provider, sep, name = (model_id or "").strip().partition("/")
    if not sep or not provider or not name:
        raise ValueError(f"Model id must look like '<provider>/<modelId>': {model_id!r}")
    return provider.lower(), name


def is_valid_model_id(model_id: str) -> bool:
    try:
        parse_model_id(model_id)
    except ValueError:
        return False
    return True


def models_file() -> Path:
    return config_dir() / "models.json"


@dataclass
class ModelCatalog:
    models: Dict[str, Dict[str, Any]] = field(default_factory=lambda: dict(DEFAULT_MODELS))
    default_model_id: str = DEFAULT_MODEL_ID

    def __contains__(self, model_id: object) -> bool:
        return model_id in self.models

    def ids(self) -> list[str]:
        return list(self.models)

    def info(self, model_id: str) -> ModelInfo:
        entry = self.models.get(model_id, {})
        return ModelInfo(
            model_id=model_id,
            name=entry.get("name") or model_id,
            description=entry.get("description"),
        )

    def model_state(self, current_model_id: str | None = None) -> SessionModelState:
        current = current_model_id or self.default_model_id
        ids = self.ids()
        if current not in self.models:
            ids.append(current)
        return SessionModelState(available_models=[self.info(mid) for mid in ids], current_model_id=current)


def load_model_catalog(path: Path | None = None) -> ModelCatalog:
    """Merge built-in models with `models.json` (`{"current": id, "models": {id: {...}}}`)."""

    models: Dict[str, Dict[str, Any]] = dict(DEFAULT_MODELS)
    current: str | None = None
    path = path or models_file()
    if path.exists():
        try:
            config = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            log_event(logger, "models.config.unreadable", level=logging.WARNING, path=str(path), error=str(exc))
            config = {}
        for model_id, entry in (config.get("models") or {}).items():
            if not is_valid_model_id(model_id):
                log_event(logger, "models.config.invalid_id", level=logging.WARNING, model_id=model_id)
                continue
            models[model_id] = dict(entry or {})
        current = config.get("current")

    default = os.getenv("ACPBRIDGE_MODEL") or current or DEFAULT_MODEL_ID
    if not is_valid_model_id(default):
        log_event(logger, "models.default.invalid", level=logging.WARNING, model_id=default)
        default = DEFAULT_MODEL_ID
    return ModelCatalog(models=models, default_model_id=default)


def _require_key(explicit: str | None, env_var: str, provider: str) -> str:
    key = explicit or os.getenv(env_var)
    if not key:
        raise RuntimeError(f"{env_var} is required for {provider} models")
    return key


def build_model(model_id: str, entry: Dict[str, Any] | None = None) -> Any:
    """Build the pydantic-ai model object for a `"<provider>/<modelId>"` id."""

    load_dotenv()
    provider, name = parse_model_id(model_id)
    entry = entry or {}
    api_key = entry.get("api_key")

    if provider == "test":
        return TestModel(call_tools=[])

    if provider == "openai":
        return OpenAIChatModel(name, provider=OpenAIProvider(api_key=_require_key(api_key, "OPENAI_API_KEY", provider)))

    if provider == "anthropic":
        key = _require_key(api_key, "ANTHROPIC_API_KEY", provider)
        return AnthropicModel(name, provider=AnthropicProvider(api_key=key))

    if provider == "google":
        return GoogleModel(name, provider=GoogleProvider(api_key=_require_key(api_key, "GOOGLE_API_KEY", provider)))

    if provider == "openrouter":
        key = _require_key(api_key, "OPENROUTER_API_KEY", provider)
        return OpenRouterModel(name, provider=OpenRouterProvider(api_key=key))

    if provider == "ollama":
        base_url = entry.get("base_url") or os.getenv("OLLAMA_BASE_URL") or OLLAMA_BASE_URL
        return OpenAIChatModel(name, provider=OllamaProvider(base_url=base_url))

    # Let pydantic-ai resolve any other known provider prefix itself.
    return f"{provider}:{name}"


__all__ = [
    "DEFAULT_MODEL_ID",
    "ModelCatalog",
    "build_model",
    "is_valid_model_id",
    "load_model_catalog",
    "models_file",
    "parse_model_id",
]
