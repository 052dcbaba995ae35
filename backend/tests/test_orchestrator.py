from __future__ import annotations

import asyncio
import json
import re

from reqsift.dedupe import similarity
from reqsift.orchestrator import ExtractionContext, ExtractionOrchestrator

CATALOG = [
    {
        "title": "Case routing",
        "description": "New cases are assigned to the agent queue that matches the product line.",
        "category": "functional",
        "priority": "high",
    },
    {
        "title": "Knowledge base search",
        "description": "Agents query published articles by keyword while working a ticket.",
        "category": "functional",
        "priority": "medium",
    },
    {
        "title": "Survey after closure",
        "description": "Customers receive a satisfaction questionnaire once their issue is resolved.",
        "category": "non-functional",
        "priority": "low",
    },
    {
        "title": "Encrypted attachments",
        "description": "Uploaded files are stored encrypted at rest with keys rotated yearly.",
        "category": "security",
        "priority": "high",
    },
    {
        "title": "Dashboard latency",
        "description": "Supervisor dashboards refresh within two seconds for one hundred concurrent users.",
        "category": "performance",
        "priority": "medium",
    },
]

_COUNT = re.compile(r"exactly (\d+) requirement objects")
_PERSPECTIVE = re.compile(r"Analysis perspective: (.+?) \(focusing")
_SECTION = re.compile(r"Section: (\d+) of (\d+)")


def _requested_count(prompt: str) -> int:
    match = _COUNT.search(prompt)
    assert match is not None
    return int(match.group(1))


class CatalogGenerator:
    """Answers every prompt with the first N catalog entries wrapped in prose."""

    def __init__(self, extra_items: int = 0) -> None:
        self.prompts: list[str] = []
        self._extra_items = extra_items

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        count = _requested_count(prompt) + self._extra_items
        items = [CATALOG[index % len(CATALOG)] for index in range(count)]
        return f"Sure, here you go:\n{json.dumps(items)}\nDone."


class SectionAwareGenerator:
    """Produces distinct drafts per perspective and section."""

    def __init__(self) -> None:
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        perspective = _PERSPECTIVE.search(prompt).group(1)
        section = _SECTION.search(prompt).group(1)
        count = _requested_count(prompt)
        items = [
            {
                "title": f"{perspective} item {index} of section {section}",
                "description": f"Section {section} states that {CATALOG[index % len(CATALOG)]['description']}",
            }
            for index in range(count)
        ]
        return json.dumps(items)


class FlakyGenerator:
    async def generate(self, prompt: str) -> str:
        perspective = _PERSPECTIVE.search(prompt).group(1)
        if perspective.startswith("Data"):
            raise RuntimeError("throttled")
        if perspective.startswith("Integration"):
            return "I am unable to produce requirements for this content."
        return json.dumps(CATALOG[:2])


def _context(**overrides: object) -> ExtractionContext:
    values: dict[str, object] = {
        "project_name": "Zendesk migration",
        "file_name": "support_workflows.txt",
        "content_type": "workflow",
        "num_analyses": 2,
        "req_per_analysis": 3,
    }
    values.update(overrides)
    return ExtractionContext(**values)


def test_single_pass_dedupes_across_perspectives() -> None:
    generator = CatalogGenerator()
    orchestrator = ExtractionOrchestrator(generator, pause_seconds=0)

    result = asyncio.run(orchestrator.run("Agents handle tickets by email and phone.", _context()))

    assert len(generator.prompts) == 2
    assert [draft.title for draft in result.requirements] == [item["title"] for item in CATALOG[:3]]
    assert all(draft.perspective == "Functional Requirements" for draft in result.requirements)
    assert result.diagnostics["mode"] == "single_pass"
    assert result.diagnostics["domain"] == "zendesk"
    assert result.diagnostics["raw_candidates"] == 6
    assert result.diagnostics["deduped_candidates"] == 3
    assert result.diagnostics["dropped_candidates"] == 3
    assert result.diagnostics["calls_failed"] == 0


def test_each_call_keeps_at_most_the_requested_count() -> None:
    generator = CatalogGenerator(extra_items=2)
    orchestrator = ExtractionOrchestrator(generator, pause_seconds=0)

    result = asyncio.run(orchestrator.run("Short text.", _context(num_analyses=1, req_per_analysis=2)))

    assert result.diagnostics["raw_candidates"] == 2
    assert len(result.requirements) == 2


def test_failed_calls_are_counted_not_fatal() -> None:
    orchestrator = ExtractionOrchestrator(FlakyGenerator(), pause_seconds=0)
    progress: list[tuple[int, int, int]] = []

    result = asyncio.run(
        orchestrator.run(
            "Short text.",
            _context(num_analyses=3),
            on_progress=lambda completed, failed, total: progress.append((completed, failed, total)),
        )
    )

    assert [draft.title for draft in result.requirements] == ["Case routing", "Knowledge base search"]
    assert result.diagnostics["calls_total"] == 3
    assert result.diagnostics["calls_failed"] == 2
    failures = result.diagnostics["failures"]
    assert {failure["perspective"] for failure in failures} == {
        "Data Requirements",
        "Integration Requirements",
    }
    assert progress[-1] == (3, 2, 3)


def test_all_calls_failing_yields_empty_result() -> None:
    class BrokenGenerator:
        async def generate(self, prompt: str) -> str:
            raise RuntimeError("endpoint down")

    result = asyncio.run(ExtractionOrchestrator(BrokenGenerator(), pause_seconds=0).run("Some text.", _context()))

    assert result.requirements == []
    assert result.diagnostics["calls_failed"] == 2


def test_blank_text_makes_no_calls() -> None:
    generator = CatalogGenerator()
    result = asyncio.run(ExtractionOrchestrator(generator, pause_seconds=0).run(" \n\n ", _context()))

    assert generator.prompts == []
    assert result.requirements == []
    assert result.diagnostics["calls_total"] == 0


def test_twelve_thousand_character_document_end_to_end() -> None:
    sentence = "Agents triage inbound tickets and escalate overdue cases to supervisors. "
    text = (sentence * (12_000 // len(sentence) + 1))[:12_000]
    generator = SectionAwareGenerator()
    orchestrator = ExtractionOrchestrator(generator, pause_seconds=0)

    result = asyncio.run(orchestrator.run(text, _context(num_analyses=2, req_per_analysis=5)))

    chunks_selected = result.diagnostics["chunks_selected"]
    assert result.diagnostics["mode"] == "chunked"
    assert result.diagnostics["chunk_size"] == 6000
    assert result.diagnostics["chunk_overlap"] == 600
    assert 1 <= chunks_selected <= 3
    assert len(generator.prompts) == 2 * chunks_selected
    assert all(f"of {chunks_selected}" in prompt for prompt in generator.prompts)
    assert result.diagnostics["raw_candidates"] <= 2 * chunks_selected * 5

    drafts = result.requirements
    for left in range(len(drafts)):
        for right in range(left + 1, len(drafts)):
            assert not (
                similarity(drafts[left].title, drafts[right].title) > 0.7
                and similarity(drafts[left].description, drafts[right].description) > 0.5
            )


def test_from_settings_uses_configured_thresholds() -> None:
    from reqsift.config import Settings

    configured = Settings(perspective_pause_seconds=0, dedupe_title_threshold=0.99, dedupe_description_threshold=0.99)
    generator = CatalogGenerator()
    orchestrator = ExtractionOrchestrator.from_settings(generator, configured)

    result = asyncio.run(orchestrator.run("Short text.", _context(num_analyses=1)))

    assert len(result.requirements) == 3


class FakeTime:
    def __init__(self) -> None:
        self.now = 50.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_perspective_passes_are_spaced_by_the_pause() -> None:
    fake = FakeTime()
    generator = CatalogGenerator()
    orchestrator = ExtractionOrchestrator(generator, pause_seconds=2.0, clock=fake.clock, sleep=fake.sleep)

    asyncio.run(orchestrator.run("Agents handle tickets by email and phone.", _context(num_analyses=4)))

    assert len(generator.prompts) == 4
    assert fake.sleeps == [2.0, 2.0, 2.0]


def test_single_perspective_never_waits() -> None:
    fake = FakeTime()
    orchestrator = ExtractionOrchestrator(CatalogGenerator(), pause_seconds=2.0, clock=fake.clock, sleep=fake.sleep)

    asyncio.run(orchestrator.run("Short text.", _context(num_analyses=1)))

    assert fake.sleeps == []


class InFlightGenerator:
    def __init__(self) -> None:
        self.in_flight = 0
        self.peak = 0

    async def generate(self, prompt: str) -> str:
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0.01)
        finally:
            self.in_flight -= 1
        return json.dumps(CATALOG[:1])


def test_chunk_and_perspective_calls_run_concurrently() -> None:
    sentence = "Agents triage inbound tickets and escalate overdue cases to supervisors. "
    text = (sentence * (12_000 // len(sentence) + 1))[:12_000]
    generator = InFlightGenerator()
    orchestrator = ExtractionOrchestrator(generator, pause_seconds=0)

    result = asyncio.run(orchestrator.run(text, _context(num_analyses=3)))

    assert result.diagnostics["calls_total"] > 1
    assert generator.peak == result.diagnostics["calls_total"]
    assert generator.in_flight == 0


def test_deeply_nested_response_fails_only_that_call() -> None:
    class NestedGenerator:
        async def generate(self, prompt: str) -> str:
            if _PERSPECTIVE.search(prompt).group(1).startswith("Functional"):
                return "[" * 50_000 + "]" * 50_000
            return json.dumps(CATALOG[:2])

    result = asyncio.run(ExtractionOrchestrator(NestedGenerator(), pause_seconds=0).run("Short text.", _context()))

    assert result.diagnostics["calls_failed"] == 1
    assert result.diagnostics["failures"][0]["perspective"] == "Functional Requirements"
    assert [draft.title for draft in result.requirements] == ["Case routing", "Knowledge base search"]


def test_unexpected_error_while_handling_a_response_is_a_failed_call(monkeypatch) -> None:
    def explode(*args: object, **kwargs: object) -> list[object]:
        raise ValueError("bad draft shape")

    monkeypatch.setattr("reqsift.orchestrator.normalize_drafts", explode)
    result = asyncio.run(ExtractionOrchestrator(CatalogGenerator(), pause_seconds=0).run("Short text.", _context()))

    assert result.requirements == []
    assert result.diagnostics["calls_failed"] == 2
    assert "bad draft shape" in result.diagnostics["failures"][0]["error"]
