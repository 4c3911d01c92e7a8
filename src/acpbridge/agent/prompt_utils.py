"""Helpers for ACP prompt content blocks."""

from __future__ import annotations

from typing import Any

from acp.helpers import text_block
from acp.schema import ResourceContentBlock, UserMessageChunk


def block_text(block: Any) -> str | None:
    """Best-effort text for one prompt block; `None` when it carries no text."""

    if block is None:
        return None
    if isinstance(block, str):
        return block
    if isinstance(block, dict):
        text = block.get("text")
        return text if isinstance(text, str) else None
    text = getattr(block, "text", None)
    if isinstance(text, str) and text:
        return text
    resource = getattr(block, "resource", None)
    if resource is not None:
        text = getattr(resource, "text", None)
        if isinstance(text, str) and text:
            return text
        uri = getattr(resource, "uri", None)
        return f"[resource:{uri}]" if uri else None
    if isinstance(block, ResourceContentBlock) or getattr(block, "uri", None):
        return f"[resource:{getattr(block, 'uri', '')}]"
    block_type = getattr(block, "type", None)
    if block_type in {"image", "audio"}:
        return f"[{block_type}:{getattr(block, 'mime_type', '')}]"
    return None


def extract_prompt_text(blocks: list[Any]) -> str:
    return "\n".join(text for text in (block_text(block) for block in blocks) if text).strip()


def user_message_chunks(blocks: list[Any]) -> list[UserMessageChunk]:
    """User prompt blocks as `user_message_chunk` updates for history replay."""

    chunks: list[UserMessageChunk] = []
    for block in blocks:
        text = block_text(block)
        if text is None:
            continue
        chunks.append(UserMessageChunk(session_update="user_message_chunk", content=text_block(text)))
    return chunks


__all__ = ["block_text", "extract_prompt_text", "user_message_chunks"]
