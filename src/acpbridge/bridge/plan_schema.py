"""Plan schemas carried by controller plan messages."""

from __future__ import annotations

import re
from typing import Any, List, Literal

from pydantic import BaseModel, model_validator

PlanPriority = Literal["high", "medium", "low"]

_CHECKLIST_PREFIX = re.compile(r"^(?:[-*]\s*)?(?:\[[ xX]?\]\s*)?(?:\d+[.)]\s*)?")


class PlanStep(BaseModel):
    content: str
    priority: PlanPriority = "medium"
    id: str | None = None


def _step_from_item(item: Any) -> Any | None:
    if isinstance(item, PlanStep):
        return item.model_dump()
    if isinstance(item, str):
        return {"content": item.strip()} if item.strip() else None
    if isinstance(item, dict):
        if "content" not in item and "step" in item:
            return {**item, "content": item["step"]}
        return item
    return None


def _steps_from_text(text: str) -> list[dict[str, str]]:
    steps = []
    for line in text.splitlines():
        content = _CHECKLIST_PREFIX.sub("", line.strip(), count=1).strip()
        if content:
            steps.append({"content": content})
    return steps


class PlanSteps(BaseModel):
    entries: List[PlanStep]

    @model_validator(mode="before")
    @classmethod
    def _coerce_loose_formats(cls, value: Any) -> Any:
        """Accept a bare list, a `steps` key, or a markdown checklist string."""
        raw = value
        if isinstance(value, dict):
            if "entries" not in value and "steps" not in value:
                return value
            raw = value.get("entries", value.get("steps"))

        if isinstance(raw, list):
            return {"entries": [step for step in map(_step_from_item, raw) if step is not None]}
        if isinstance(raw, str):
            return {"entries": _steps_from_text(raw)}
        return value


__all__ = ["PlanPriority", "PlanStep", "PlanSteps"]
