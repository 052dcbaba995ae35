from __future__ import annotations

from reqsift.dedupe import dedupe_drafts, similarity
from reqsift.drafts import RequirementDraft


def _draft(title: str, description: str, **extra: object) -> RequirementDraft:
    return RequirementDraft(title=title, description=description, **extra)


def test_similarity_identity_and_empty() -> None:
    assert similarity("Case routing", "Case routing") == 1.0
    assert similarity("Case routing", "CASE ROUTING") == 1.0
    assert similarity("", "anything") == 0.0
    assert similarity("anything", "") == 0.0


def test_similarity_is_dice_over_bigram_sets() -> None:
    assert similarity("night", "nacht") == 0.25
    assert similarity("a", "b") == 0.0


def test_identical_drafts_collapse_to_one() -> None:
    drafts = [
        _draft("Escalate overdue cases", "Cases open longer than the SLA must escalate to a supervisor."),
        _draft("Escalate overdue cases", "Cases open longer than the SLA must escalate to a supervisor."),
    ]
    assert len(dedupe_drafts(drafts)) == 1


def test_only_one_threshold_met_keeps_both() -> None:
    first = _draft("User login with password", "abcdefghijklmnop")
    second = _draft("User login with passwords", "qrstuvwxyz")
    assert similarity(first.title, second.title) > 0.7
    assert similarity(first.description, second.description) < 0.5

    assert dedupe_drafts([first, second]) == [first, second]


def test_first_seen_wins() -> None:
    first = _draft("Export case history", "Agents export the full case history as PDF.", perspective="Functional")
    second = _draft("Export case history", "Agents export the full case history as PDF.", perspective="Data")
    kept = dedupe_drafts([first, second])
    assert kept == [first]
    assert kept[0].perspective == "Functional"


def test_drafts_without_title_or_description_are_dropped() -> None:
    drafts = [
        _draft("", "Description without a title."),
        _draft("Title without description", "   "),
        _draft("Audit trail", "Every status change is recorded with actor and timestamp."),
    ]
    kept = dedupe_drafts(drafts)
    assert [draft.title for draft in kept] == ["Audit trail"]


def test_thresholds_are_configurable() -> None:
    first = _draft("Case assignment rules", "Route new cases to the least busy agent in the queue.")
    second = _draft("Case assignment rule", "Route new cases to the least busy agent of the queue.")
    assert len(dedupe_drafts([first, second])) == 1
    assert len(dedupe_drafts([first, second], title_threshold=0.99, description_threshold=0.99)) == 2
