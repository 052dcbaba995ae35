from __future__ import annotations

from typing import Callable

from fastapi import APIRouter

from reqsift.api.contracts import ContradictionScoreRequest
from reqsift.contradiction import ContradictionScorer

NliClientGetter = Callable[[], ContradictionScorer]


def build_contradictions_router(*, get_nli_client: NliClientGetter) -> APIRouter:
    router = APIRouter()

    @router.post("/contradictions/score")
    async def score_pair(body: ContradictionScoreRequest) -> dict[str, float]:
        score = await get_nli_client().score(body.premise, body.hypothesis)
        return {"contradiction_score": score}

    return router
