from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Sequence

from reqsift.config import Settings
from reqsift.dedupe import DEFAULT_DESCRIPTION_THRESHOLD, DEFAULT_TITLE_THRESHOLD, dedupe_drafts
from reqsift.drafts import RequirementDraft, normalize_drafts
from reqsift.generation import Malformed, TextGenerator, parse_requirement_array
from reqsift.pacing import Clock, IntervalPacer, Sleeper
from reqsift.prompts import Perspective, build_extraction_prompt, infer_domain, select_perspectives
from reqsift.segmentation import (
    DEFAULT_TIERS,
    SINGLE_PASS_MAX_CHARS,
    Chunk,
    ChunkTier,
    build_tiers,
    plan_segments,
)

logger = logging.getLogger("reqsift.orchestrator")

ProgressCallback = Callable[[int, int, int], None]


@dataclass(frozen=True)
class ExtractionContext:
    project_name: str
    file_name: str
    content_type: str = "general"
    num_analyses: int = 2
    req_per_analysis: int = 5


@dataclass(frozen=True)
class CallOutcome:
    perspective_index: int
    perspective: str
    chunk_index: int
    drafts: list[RequirementDraft] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ExtractionResult:
    requirements: list[RequirementDraft]
    diagnostics: dict[str, object]

    def to_payload(self) -> dict[str, object]:
        return {
            "requirements": [draft.model_dump() for draft in self.requirements],
            "extraction": self.diagnostics,
        }


class _CallTracker:
    def __init__(self, total: int, on_progress: ProgressCallback | None) -> None:
        self.total = total
        self.completed = 0
        self.failed = 0
        self._on_progress = on_progress

    def record(self, outcome: CallOutcome) -> None:
        self.completed += 1
        if not outcome.ok:
            self.failed += 1
        if self._on_progress is not None:
            self._on_progress(self.completed, self.failed, self.total)


class ExtractionOrchestrator:
    def __init__(
        self,
        generator: TextGenerator,
        *,
        pause_seconds: float = 1.0,
        tiers: Sequence[ChunkTier] = DEFAULT_TIERS,
        single_pass_max_chars: int = SINGLE_PASS_MAX_CHARS,
        title_threshold: float = DEFAULT_TITLE_THRESHOLD,
        description_threshold: float = DEFAULT_DESCRIPTION_THRESHOLD,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._generator = generator
        self._pause_seconds = pause_seconds
        self._clock = clock
        self._sleep = sleep
        self._tiers = tuple(tiers)
        self._single_pass_max_chars = single_pass_max_chars
        self._title_threshold = title_threshold
        self._description_threshold = description_threshold

    @classmethod
    def from_settings(cls, generator: TextGenerator, settings: Settings) -> "ExtractionOrchestrator":
        return cls(
            generator,
            pause_seconds=settings.perspective_pause_seconds,
            tiers=build_tiers(
                settings.tier_small_max_chars,
                settings.tier_medium_max_chars,
                settings.tier_large_max_chars,
            ),
            single_pass_max_chars=settings.single_pass_max_chars,
            title_threshold=settings.dedupe_title_threshold,
            description_threshold=settings.dedupe_description_threshold,
        )

    async def run(
        self,
        text: str,
        context: ExtractionContext,
        *,
        on_progress: ProgressCallback | None = None,
    ) -> ExtractionResult:
        domain = infer_domain(context.file_name, context.project_name)
        perspectives = select_perspectives(context.num_analyses)
        plan = plan_segments(text, tiers=self._tiers, single_pass_max_chars=self._single_pass_max_chars)
        chunks = plan.chunks if plan.text.strip() else []
        per_call = self._requirements_per_call(context.req_per_analysis, len(chunks))

        logger.info(
            "extraction_started",
            extra={
                "event": "extraction_started",
                "file_name": context.file_name,
                "domain": domain,
                "perspectives": [perspective.name for perspective in perspectives],
                **plan.describe(),
            },
        )

        tracker = _CallTracker(len(perspectives) * len(chunks), on_progress)
        outcomes = await self._fan_out(
            perspectives,
            chunks,
            context=context,
            domain=domain,
            per_call=per_call,
            tracker=tracker,
        )

        successes = [outcome for outcome in outcomes if outcome.ok]
        failures = [outcome for outcome in outcomes if not outcome.ok]
        raw_drafts = [draft for outcome in successes for draft in outcome.drafts]
        requirements = dedupe_drafts(
            raw_drafts,
            title_threshold=self._title_threshold,
            description_threshold=self._description_threshold,
        )

        diagnostics: dict[str, object] = {
            **plan.describe(),
            "domain": domain,
            "perspectives": [perspective.name for perspective in perspectives],
            "requirements_per_call": per_call,
            "calls_total": len(outcomes),
            "calls_succeeded": len(successes),
            "calls_failed": len(failures),
            "failures": [
                {"perspective": outcome.perspective, "chunk_index": outcome.chunk_index, "error": outcome.error}
                for outcome in failures
            ],
            "raw_candidates": len(raw_drafts),
            "deduped_candidates": len(requirements),
            "dropped_candidates": len(raw_drafts) - len(requirements),
        }
        logger.info(
            "extraction_completed",
            extra={
                "event": "extraction_completed",
                "file_name": context.file_name,
                "calls_total": len(outcomes),
                "calls_failed": len(failures),
                "raw_candidates": len(raw_drafts),
                "deduped_candidates": len(requirements),
            },
        )
        return ExtractionResult(requirements=requirements, diagnostics=diagnostics)

    async def _fan_out(
        self,
        perspectives: list[Perspective],
        chunks: list[Chunk],
        *,
        context: ExtractionContext,
        domain: str,
        per_call: int,
        tracker: _CallTracker,
    ) -> list[CallOutcome]:
        pacer = IntervalPacer(self._pause_seconds, clock=self._clock, sleep=self._sleep)
        tasks: list[asyncio.Task[CallOutcome]] = []
        try:
            for perspective_index, perspective in enumerate(perspectives):
                await pacer.acquire()
                for position, chunk in enumerate(chunks, start=1):
                    prompt = build_extraction_prompt(
                        text=chunk.text,
                        perspective=perspective,
                        project_name=context.project_name,
                        file_name=context.file_name,
                        content_type=context.content_type,
                        domain=domain,
                        requirement_count=per_call,
                        chunk_number=position,
                        chunk_total=len(chunks),
                    )
                    tasks.append(
                        asyncio.create_task(
                            self._extract_one(
                                prompt,
                                perspective_index=perspective_index,
                                perspective=perspective,
                                chunk_index=chunk.index,
                                limit=per_call,
                                tracker=tracker,
                            )
                        )
                    )
            # Outcomes come back in (perspective, chunk) order regardless of completion timing.
            return list(await asyncio.gather(*tasks))
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

    async def _extract_one(
        self,
        prompt: str,
        *,
        perspective_index: int,
        perspective: Perspective,
        chunk_index: int,
        limit: int,
        tracker: _CallTracker,
    ) -> CallOutcome:
        failure: str | None = None
        drafts: list[RequirementDraft] = []
        try:
            raw = await self._generator.generate(prompt)
        except Exception as exc:
            failure = f"generation failed: {exc}"
        else:
            try:
                parsed = parse_requirement_array(raw)
                if isinstance(parsed, Malformed):
                    failure = f"malformed response: {parsed.reason}"
                    logger.warning(
                        "extraction_response_malformed",
                        extra={
                            "event": "extraction_response_malformed",
                            "perspective": perspective.name,
                            "chunk_index": chunk_index,
                            "raw_preview": parsed.raw_text[:200],
                        },
                    )
                else:
                    drafts = normalize_drafts(
                        parsed.items,
                        perspective=perspective.name,
                        chunk_index=chunk_index,
                        limit=limit,
                    )
            except Exception as exc:
                drafts = []
                failure = f"response handling failed: {str(exc) or type(exc).__name__}"

        if failure is not None:
            logger.warning(
                "extraction_call_failed",
                extra={
                    "event": "extraction_call_failed",
                    "perspective": perspective.name,
                    "chunk_index": chunk_index,
                    "error": failure,
                },
            )
        outcome = CallOutcome(
            perspective_index=perspective_index,
            perspective=perspective.name,
            chunk_index=chunk_index,
            drafts=drafts,
            error=failure,
        )
        tracker.record(outcome)
        return outcome

    @staticmethod
    def _requirements_per_call(requested: int, chunk_count: int) -> int:
        requested = max(1, requested)
        if chunk_count <= 1:
            return requested
        return min(requested, max(2, math.ceil(requested / chunk_count)))
