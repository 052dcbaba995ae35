from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, Field, ValidationError


Category = Literal["functional", "non-functional", "security", "performance"]
Priority = Literal["high", "medium", "low"]

CATEGORY_ALIASES: dict[str, str] = {
    "functional": "functional",
    "business": "functional",
    "data": "functional",
    "ui": "non-functional",
    "usability": "non-functional",
    "non-functional": "non-functional",
    "nonfunctional": "non-functional",
    "non functional": "non-functional",
    "technical": "non-functional",
    "security": "security",
    "compliance": "security",
    "performance": "performance",
    "scalability": "performance",
}
PRIORITY_ALIASES: dict[str, str] = {
    "high": "high",
    "critical": "high",
    "medium": "medium",
    "normal": "medium",
    "low": "low",
}
_TITLE_MAX_CHARS = 80


class RequirementDraft(BaseModel):
    title: str = ""
    description: str = ""
    category: Category = "functional"
    priority: Priority = "medium"
    perspective: str | None = None
    chunk_index: int | None = Field(default=None, ge=0)


def _clean(value: object) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split())


def _title_from_text(text: str) -> str:
    first_sentence = re.split(r"(?<=[.!?])\s", text, maxsplit=1)[0]
    if len(first_sentence) <= _TITLE_MAX_CHARS:
        return first_sentence.rstrip(".")
    clipped = first_sentence[:_TITLE_MAX_CHARS].rsplit(" ", 1)[0]
    return f"{clipped}..."


def repair_draft_item(item: dict[str, object]) -> dict[str, object]:
    """Coerce one model-produced requirement object into draft fields.

    Older prompts asked for a single ``text`` field; it becomes the description
    and seeds a title when none was given. Unknown categories fall back to
    functional and unknown priorities to medium.
    """
    repaired: dict[str, object] = {}
    description = _clean(item.get("description")) or _clean(item.get("text"))
    title = _clean(item.get("title")) or _clean(item.get("name"))
    if not title and description:
        title = _title_from_text(description)
    repaired["title"] = title
    repaired["description"] = description

    category = _clean(item.get("category")).lower().replace("_", "-")
    repaired["category"] = CATEGORY_ALIASES.get(category, "functional")
    priority = _clean(item.get("priority")).lower()
    repaired["priority"] = PRIORITY_ALIASES.get(priority, "medium")
    return repaired


def normalize_drafts(
    items: list[object],
    *,
    perspective: str | None = None,
    chunk_index: int | None = None,
    limit: int | None = None,
) -> list[RequirementDraft]:
    drafts: list[RequirementDraft] = []
    for item in items:
        if limit is not None and len(drafts) >= limit:
            break
        if not isinstance(item, dict):
            continue
        try:
            draft = RequirementDraft.model_validate(
                {**repair_draft_item(item), "perspective": perspective, "chunk_index": chunk_index}
            )
        except ValidationError:
            continue
        drafts.append(draft)
    return drafts
