from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobType(str, Enum):
    PDF_PROCESSING = "PDF_PROCESSING"
    LARGE_FILE_PROCESSING = "LARGE_FILE_PROCESSING"
    CONTRADICTION_ANALYSIS = "CONTRADICTION_ANALYSIS"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
}


class JobPriority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return {"LOW": 0, "NORMAL": 1, "HIGH": 2}[self.value]


class JobProgress(BaseModel):
    percent: int = Field(default=0, ge=0, le=100)
    message: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class Job(BaseModel):
    id: str
    type: JobType
    status: JobStatus = JobStatus.PENDING
    priority: JobPriority = JobPriority.NORMAL
    payload: dict[str, Any] = Field(default_factory=dict)
    progress: JobProgress | None = None
    result: Any = None
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    user_id: str | None = None
    project_id: str | None = None


class JobStatusView(BaseModel):
    status: JobStatus
    progress: JobProgress | None = None
    error: str | None = None


class PdfProcessingPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    file_path: str = Field(..., min_length=1)
    project_name: str = Field(..., min_length=1)
    file_name: str = Field(..., min_length=1)
    content_type: str = "documentation"
    req_per_chunk: int = Field(default=5, ge=1, le=50)
    num_analyses: int = Field(default=2, ge=1, le=5)
    is_large_file: bool = False
    input_data_id: int | None = None


class LargeFileProcessingPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str = ""
    project_name: str = Field(..., min_length=1)
    file_name: str = Field(..., min_length=1)
    source_path: str | None = None
    content_type: str = "documentation"
    min_requirements: int = Field(default=5, ge=1, le=50)
    num_analyses: int = Field(default=2, ge=1, le=5)
    input_data_id: int | None = None
    # Outcome reported by the upstream extractor that produced ``text``.
    extraction_success: bool = True
    extraction_error: str | None = None

    @model_validator(mode="after")
    def require_text_when_extracted(self) -> "LargeFileProcessingPayload":
        if self.extraction_success and not self.text.strip():
            raise ValueError("text must not be empty when extraction_success is true")
        return self


class ContradictionAnalysisPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    requirements: list[str] = Field(..., min_length=2)
    similarity_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    nli_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
