from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from reqsift.api.contracts import CreateJobRequest
from reqsift.config import settings
from reqsift.jobs.models import Job, JobStatus
from reqsift.jobs.queue import (
    InvalidPayload,
    JobNotCancellable,
    JobNotFound,
    JobNotReady,
    JobQueueManager,
)


def _job_queue(request: Request) -> JobQueueManager:
    queue = getattr(request.app.state, "job_queue", None)
    if queue is None:
        raise HTTPException(status_code=503, detail="Job queue is not running")
    return queue


def _caller_id(request: Request) -> str | None:
    value = (request.headers.get(settings.user_id_header) or "").strip()
    return value or None


def _owned_job(request: Request, queue: JobQueueManager, job_id: str) -> Job:
    job = queue.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    if job.user_id is not None and _caller_id(request) != job.user_id:
        raise HTTPException(status_code=403, detail="Access denied")
    return job


def _serialize_job(job: Job) -> dict[str, object]:
    body: dict[str, object] = {
        "job_id": job.id,
        "status": job.status.value,
        "type": job.type.value,
        "priority": job.priority.value,
        "created_at": job.created_at.isoformat(),
    }
    if job.started_at is not None:
        body["started_at"] = job.started_at.isoformat()
    if job.completed_at is not None:
        body["completed_at"] = job.completed_at.isoformat()
    if job.progress is not None:
        body["progress"] = job.progress.model_dump()
    if job.status == JobStatus.FAILED:
        body["error"] = job.error
    if job.status == JobStatus.COMPLETED:
        body["result_endpoint"] = f"/jobs/{job.id}/result"
    return body


def build_jobs_router() -> APIRouter:
    # Endpoints are async so queue state is only touched from the event loop thread.
    router = APIRouter()

    @router.post("/jobs", status_code=202)
    async def create_job(body: CreateJobRequest, request: Request) -> dict[str, object]:
        queue = _job_queue(request)
        try:
            job_id = queue.create_job(
                body.type,
                body.payload,
                priority=body.priority,
                user_id=_caller_id(request),
                project_id=body.project_id,
            )
        except InvalidPayload as exc:
            raise HTTPException(
                status_code=400,
                detail={"error": "invalid_payload", "message": str(exc)},
            ) from exc
        return {
            "job_id": job_id,
            "status": JobStatus.PENDING.value,
            "status_endpoint": f"/jobs/{job_id}",
        }

    @router.get("/jobs/{job_id}")
    async def get_job(job_id: str, request: Request) -> dict[str, object]:
        queue = _job_queue(request)
        return _serialize_job(_owned_job(request, queue, job_id))

    @router.get("/jobs/{job_id}/result", response_model=None)
    async def get_job_result(job_id: str, request: Request) -> object:
        queue = _job_queue(request)
        _owned_job(request, queue, job_id)
        try:
            return queue.get_result(job_id)
        except JobNotFound as exc:
            raise HTTPException(status_code=404, detail="Job not found") from exc
        except JobNotReady as exc:
            raise HTTPException(
                status_code=400,
                detail={"error": "job_not_ready", "status": exc.status.value, "message": str(exc)},
            ) from exc

    @router.delete("/jobs/{job_id}")
    async def cancel_job(job_id: str, request: Request) -> dict[str, object]:
        queue = _job_queue(request)
        _owned_job(request, queue, job_id)
        try:
            job = queue.cancel(job_id)
        except JobNotFound as exc:
            raise HTTPException(status_code=404, detail="Job not found") from exc
        except JobNotCancellable as exc:
            raise HTTPException(
                status_code=400,
                detail={"error": "job_not_cancellable", "status": exc.status.value, "message": str(exc)},
            ) from exc
        return {"job_id": job.id, "status": job.status.value}

    return router
