from __future__ import annotations

import asyncio
import json

import httpx

from reqsift.contradiction import NliClient, analyze_contradictions, extract_contradiction_score


def _client(handler) -> NliClient:
    return NliClient(
        endpoint_url="https://nli.example.test/models/deberta",
        api_key="test-key",
        transport=httpx.MockTransport(handler),
    )


def test_score_reads_current_response_shape() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"contradiction": 0.82, "entailment": 0.1, "neutral": 0.08})

    score = asyncio.run(_client(handler).score("Refunds need approval.", "Refunds never need approval."))

    assert score == 0.82
    assert seen[0].headers["Authorization"] == "Bearer test-key"
    assert json.loads(seen[0].content) == {
        "inputs": {"premise": "Refunds need approval.", "hypothesis": "Refunds never need approval."}
    }


def test_score_reads_legacy_labels_shape() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"labels": ["no", "yes"], "scores": [0.3, 0.7]}])

    assert asyncio.run(_client(handler).score("a", "b")) == 0.7


def test_errors_and_missing_fields_score_zero() -> None:
    def rejected(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "loading"})

    def unrelated(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"entailment": 0.9})

    def not_json(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>")

    def broken(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    for handler in (rejected, unrelated, not_json, broken):
        assert asyncio.run(_client(handler).score("a", "b")) == 0.0


def test_unconfigured_client_scores_zero_without_calling_out() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"contradiction": 1.0})

    client = NliClient(endpoint_url="", api_key="", transport=httpx.MockTransport(handler))
    assert client.configured is False
    assert asyncio.run(client.score("a", "b")) == 0.0
    assert calls == []


def test_extract_contradiction_score_ignores_booleans_and_garbage() -> None:
    assert extract_contradiction_score({"contradiction": True}) == 0.0
    assert extract_contradiction_score("nope") == 0.0
    assert extract_contradiction_score([]) == 0.0


class FixedScorer:
    def __init__(self, score: float) -> None:
        self.score_value = score
        self.pairs: list[tuple[str, str]] = []

    async def score(self, premise: str, hypothesis: str) -> float:
        self.pairs.append((premise, hypothesis))
        return self.score_value


def test_analyze_only_scores_similar_pairs() -> None:
    requirements = [
        "Refund requests above 500 dollars require supervisor approval.",
        "Refund requests above 500 dollars do not require supervisor approval.",
        "Dashboards refresh every two seconds.",
    ]
    scorer = FixedScorer(0.9)

    report = asyncio.run(analyze_contradictions(requirements, scorer))

    assert report["requirements_analyzed"] == 3
    assert report["comparisons_made"] == 3
    assert report["nli_checks_made"] == 1
    assert len(scorer.pairs) == 1
    contradiction = report["contradictions"][0]
    assert contradiction["requirement1"]["index"] == 0
    assert contradiction["requirement2"]["index"] == 1
    assert contradiction["nli_contradiction_score"] == 0.9


def test_analyze_respects_nli_threshold_and_cap() -> None:
    requirements = ["Agents close tickets.", "Agents close tickets!", "Agents close tickets?"]

    low = asyncio.run(analyze_contradictions(requirements, FixedScorer(0.2)))
    assert low["contradictions"] == []
    assert low["nli_checks_made"] == 3

    capped = asyncio.run(analyze_contradictions(requirements, FixedScorer(0.9), max_requirements=2))
    assert capped["requirements_analyzed"] == 2
    assert len(capped["contradictions"]) == 1
