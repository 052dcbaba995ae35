from __future__ import annotations

import logging
import time
from typing import Any, Callable, Protocol

import httpx

from reqsift.config import Settings
from reqsift.dedupe import similarity

logger = logging.getLogger("reqsift.contradiction")

_CONTRADICTION_LABELS = {"yes", "contradiction"}


class ContradictionScorer(Protocol):
    async def score(self, premise: str, hypothesis: str) -> float:
        ...


def extract_contradiction_score(payload: Any) -> float:
    """Read the contradiction probability from either NLI response shape.

    Current endpoints answer ``{"contradiction", "entailment", "neutral"}``;
    older zero-shot deployments answer ``{"labels": [...], "scores": [...]}``.
    Anything else scores 0.
    """
    if isinstance(payload, list) and payload:
        payload = payload[0]
    if not isinstance(payload, dict):
        return 0.0

    direct = payload.get("contradiction")
    if isinstance(direct, (int, float)) and not isinstance(direct, bool):
        return float(direct)

    labels = payload.get("labels")
    scores = payload.get("scores")
    if isinstance(labels, list) and isinstance(scores, list):
        for label, score in zip(labels, scores):
            if str(label).strip().lower() in _CONTRADICTION_LABELS and isinstance(score, (int, float)):
                return float(score)
    return 0.0


class NliClient:
    def __init__(
        self,
        *,
        endpoint_url: str,
        api_key: str,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint_url = endpoint_url.strip()
        self._api_key = api_key.strip()
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "NliClient":
        return cls(
            endpoint_url=settings.nli_endpoint_url,
            api_key=settings.nli_api_key,
            timeout_seconds=settings.nli_timeout_seconds,
        )

    @property
    def configured(self) -> bool:
        return bool(self._endpoint_url and self._api_key)

    async def score(self, premise: str, hypothesis: str) -> float:
        if not self.configured:
            logger.warning("nli_not_configured", extra={"event": "nli_not_configured"})
            return 0.0

        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport) as client:
                response = await client.post(
                    self._endpoint_url,
                    headers={
                        "Accept": "application/json",
                        "Authorization": f"Bearer {self._api_key}",
                    },
                    json={"inputs": {"premise": premise, "hypothesis": hypothesis}},
                )
        except httpx.HTTPError as exc:
            logger.warning("nli_request_failed", extra={"event": "nli_request_failed", "error": str(exc)})
            return 0.0

        if not response.is_success:
            logger.warning(
                "nli_request_rejected",
                extra={"event": "nli_request_rejected", "status_code": response.status_code},
            )
            return 0.0

        try:
            payload = response.json()
        except ValueError:
            logger.warning("nli_response_not_json", extra={"event": "nli_response_not_json"})
            return 0.0
        return extract_contradiction_score(payload)


async def analyze_contradictions(
    requirements: list[str],
    scorer: ContradictionScorer,
    *,
    similarity_threshold: float = 0.6,
    nli_threshold: float = 0.55,
    max_requirements: int = 100,
    on_progress: Callable[[int, int], None] | None = None,
) -> dict[str, object]:
    """Compare every pair of requirements and report likely contradictions.

    Only pairs whose bigram similarity reaches ``similarity_threshold`` are sent
    to the NLI endpoint; unrelated statements cannot contradict each other.
    """
    started = time.perf_counter()
    texts = [" ".join(text.split()) for text in requirements[:max_requirements]]
    total_pairs = len(texts) * (len(texts) - 1) // 2
    contradictions: list[dict[str, object]] = []
    comparisons = 0
    nli_checks = 0

    for first in range(len(texts)):
        for second in range(first + 1, len(texts)):
            comparisons += 1
            pair_similarity = similarity(texts[first], texts[second])
            if pair_similarity >= similarity_threshold:
                nli_checks += 1
                score = await scorer.score(texts[first], texts[second])
                if score >= nli_threshold:
                    contradictions.append(
                        {
                            "requirement1": {"index": first, "text": texts[first]},
                            "requirement2": {"index": second, "text": texts[second]},
                            "similarity_score": round(pair_similarity, 4),
                            "nli_contradiction_score": round(score, 4),
                        }
                    )
            if on_progress is not None:
                on_progress(comparisons, total_pairs)

    return {
        "contradictions": contradictions,
        "requirements_analyzed": len(texts),
        "comparisons_made": comparisons,
        "nli_checks_made": nli_checks,
        "processing_time_seconds": round(time.perf_counter() - started, 3),
    }
