from __future__ import annotations

from typing import Iterable

from reqsift.drafts import RequirementDraft


DEFAULT_TITLE_THRESHOLD = 0.7
DEFAULT_DESCRIPTION_THRESHOLD = 0.5


def _bigrams(text: str) -> set[str]:
    return {text[index : index + 2] for index in range(len(text) - 1)}


def similarity(a: str, b: str) -> float:
    """Dice coefficient over lowercase character bigram sets."""
    if not a or not b:
        return 0.0
    left = a.lower()
    right = b.lower()
    if left == right:
        return 1.0

    left_bigrams = _bigrams(left)
    right_bigrams = _bigrams(right)
    total = len(left_bigrams) + len(right_bigrams)
    if total == 0:
        return 0.0
    return 2 * len(left_bigrams & right_bigrams) / total


def is_duplicate(
    candidate: RequirementDraft,
    kept: RequirementDraft,
    *,
    title_threshold: float = DEFAULT_TITLE_THRESHOLD,
    description_threshold: float = DEFAULT_DESCRIPTION_THRESHOLD,
) -> bool:
    if similarity(candidate.title, kept.title) <= title_threshold:
        return False
    return similarity(candidate.description, kept.description) > description_threshold


def dedupe_drafts(
    drafts: Iterable[RequirementDraft],
    *,
    title_threshold: float = DEFAULT_TITLE_THRESHOLD,
    description_threshold: float = DEFAULT_DESCRIPTION_THRESHOLD,
) -> list[RequirementDraft]:
    kept: list[RequirementDraft] = []
    for draft in drafts:
        if not draft.title.strip() or not draft.description.strip():
            continue
        if any(
            is_duplicate(
                draft,
                existing,
                title_threshold=title_threshold,
                description_threshold=description_threshold,
            )
            for existing in kept
        ):
            continue
        kept.append(draft)
    return kept
