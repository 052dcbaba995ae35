from typing import Any

from pydantic import BaseModel, Field


class CreateJobRequest(BaseModel):
    type: str = Field(..., min_length=1, max_length=64)
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: str | None = Field(default=None, max_length=16)
    project_id: str | None = Field(default=None, max_length=160)


class ContradictionScoreRequest(BaseModel):
    premise: str = Field(..., min_length=1)
    hypothesis: str = Field(..., min_length=1)
