from __future__ import annotations

import asyncio
import copy
import heapq
import itertools
import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Protocol
from uuid import uuid4

from reqsift.jobs.models import (
    ALLOWED_TRANSITIONS,
    Job,
    JobPriority,
    JobProgress,
    JobStatus,
    JobStatusView,
    JobType,
    utcnow,
)
from reqsift.observability import reset_job_id, set_job_id

logger = logging.getLogger("reqsift.jobs")

JobListener = Callable[[str, Job], None]


class JobQueueError(RuntimeError):
    """Base class for queue errors surfaced to callers."""


class InvalidPayload(JobQueueError):
    pass


class JobNotFound(JobQueueError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class JobNotReady(JobQueueError):
    def __init__(self, job_id: str, status: JobStatus) -> None:
        super().__init__(f"Job {job_id} is not completed yet. Current status: {status.value}")
        self.job_id = job_id
        self.status = status


class JobNotCancellable(JobQueueError):
    def __init__(self, job_id: str, status: JobStatus) -> None:
        super().__init__(f"Job {job_id} cannot be cancelled in status {status.value}")
        self.job_id = job_id
        self.status = status


class InvalidTransition(JobQueueError):
    pass


class ProgressReporter:
    """Progress sink handed to a running handler; updates go through the queue."""

    def __init__(self, queue: "JobQueueManager", job_id: str) -> None:
        self._queue = queue
        self.job_id = job_id

    def __call__(self, percent: int, message: str | None = None, **details: Any) -> None:
        self._queue._apply_progress(self.job_id, percent, message, details)


class JobHandler(Protocol):
    job_type: JobType

    def validate(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        ...

    def default_priority(self, payload: Mapping[str, Any]) -> JobPriority:
        ...

    async def run(self, payload: dict[str, Any], report: ProgressReporter) -> Any:
        ...


class JobQueueManager:
    """In-process priority job queue with a single asyncio worker.

    All job state lives here. Callers receive deep copies, handlers report
    progress through a ``ProgressReporter`` and return their result; only the
    worker writes status, result and error.
    """

    def __init__(
        self,
        handlers: Iterable[JobHandler],
        *,
        retention_seconds: float = 3600.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._handlers: dict[JobType, JobHandler] = {handler.job_type: handler for handler in handlers}
        self._retention_seconds = retention_seconds
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._pending: list[tuple[int, int, str]] = []
        self._sequence = itertools.count()
        self._listeners: list[JobListener] = []
        self._waiters: dict[str, list[asyncio.Future[Job]]] = {}
        self._wakeup: asyncio.Event | None = None
        self._worker: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def queue_depth(self) -> int:
        return sum(1 for job in self._jobs.values() if job.status == JobStatus.PENDING)

    async def start(self) -> None:
        if self.running:
            return
        self._wakeup = asyncio.Event()
        if self._pending:
            self._wakeup.set()
        self._worker = asyncio.create_task(self._run_worker(self._wakeup), name="reqsift-job-worker")
        logger.info("job_worker_started", extra={"event": "job_worker_started"})

    async def stop(self) -> None:
        worker = self._worker
        self._worker = None
        if worker is None:
            return
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass
        logger.info("job_worker_stopped", extra={"event": "job_worker_stopped"})

    def create_job(
        self,
        job_type: JobType | str,
        payload: Mapping[str, Any],
        *,
        priority: JobPriority | str | None = None,
        user_id: str | None = None,
        project_id: str | None = None,
    ) -> str:
        try:
            resolved_type = JobType(job_type)
        except ValueError as exc:
            raise InvalidPayload(f"Unsupported job type: {job_type}") from exc
        handler = self._handlers.get(resolved_type)
        if handler is None:
            raise InvalidPayload(f"Unsupported job type: {resolved_type.value}")
        if not isinstance(payload, Mapping):
            raise InvalidPayload("Job payload must be an object.")

        validated = handler.validate(payload)
        if priority is None:
            resolved_priority = handler.default_priority(validated)
        else:
            try:
                resolved_priority = JobPriority(priority)
            except ValueError as exc:
                raise InvalidPayload(f"Unsupported priority: {priority}") from exc

        job = Job(
            id=str(uuid4()),
            type=resolved_type,
            priority=resolved_priority,
            payload=validated,
            created_at=self._clock(),
            user_id=user_id,
            project_id=project_id,
        )
        self._jobs[job.id] = job
        heapq.heappush(self._pending, (-resolved_priority.rank, next(self._sequence), job.id))
        logger.info(
            "job_created",
            extra={
                "event": "job_created",
                "job_id": job.id,
                "job_type": job.type.value,
                "priority": job.priority.value,
            },
        )
        self._emit("job.created", job)
        if self._wakeup is not None:
            self._wakeup.set()
        return job.id

    def get_job(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job is not None else None

    def get_status(self, job_id: str) -> JobStatusView:
        job = self._require(job_id)
        return JobStatusView(
            status=job.status,
            progress=job.progress.model_copy(deep=True) if job.progress is not None else None,
            error=job.error,
        )

    def get_result(self, job_id: str) -> Any:
        job = self._require(job_id)
        if job.status != JobStatus.COMPLETED:
            raise JobNotReady(job_id, job.status)
        return copy.deepcopy(job.result)

    def cancel(self, job_id: str) -> Job:
        job = self._require(job_id)
        if job.status != JobStatus.PENDING:
            raise JobNotCancellable(job_id, job.status)
        self._transition(job, JobStatus.CANCELLED)
        job.completed_at = self._clock()
        logger.info("job_cancelled", extra={"event": "job_cancelled", "job_id": job_id})
        self._emit("job.cancelled", job)
        self._resolve_waiters(job)
        return job.model_copy(deep=True)

    async def wait_for(self, job_id: str, timeout: float | None = None) -> Job:
        job = self._require(job_id)
        if job.status.terminal:
            return job.model_copy(deep=True)
        future: asyncio.Future[Job] = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(job_id, []).append(future)
        return await asyncio.wait_for(future, timeout)

    def subscribe(self, listener: JobListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: JobListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.status.terminal
            and job.completed_at is not None
            and (now - job.completed_at).total_seconds() >= self._retention_seconds
        ]
        for job_id in expired:
            del self._jobs[job_id]
            self._waiters.pop(job_id, None)
        if expired:
            logger.info("jobs_purged", extra={"event": "jobs_purged", "count": len(expired)})
        return len(expired)

    async def _run_worker(self, wakeup: asyncio.Event) -> None:
        while True:
            job = self._next_pending()
            if job is None:
                wakeup.clear()
                self.purge_expired()
                await wakeup.wait()
                continue
            await self._execute(job)
            self.purge_expired()

    def _next_pending(self) -> Job | None:
        while self._pending:
            _, _, job_id = heapq.heappop(self._pending)
            job = self._jobs.get(job_id)
            # Cancelled and purged jobs stay in the heap until popped.
            if job is not None and job.status == JobStatus.PENDING:
                return job
        return None

    async def _execute(self, job: Job) -> None:
        handler = self._handlers[job.type]
        self._transition(job, JobStatus.RUNNING)
        job.started_at = self._clock()
        job.progress = JobProgress(percent=0, message="started")
        logger.info(
            "job_started",
            extra={"event": "job_started", "job_id": job.id, "job_type": job.type.value},
        )
        self._emit("job.started", job)

        token = set_job_id(job.id)
        try:
            result = await handler.run(copy.deepcopy(job.payload), ProgressReporter(self, job.id))
        except asyncio.CancelledError:
            self._finish(job, JobStatus.FAILED, error="Job interrupted because the worker stopped.")
            raise
        except Exception as exc:
            logger.exception(
                "job_failed",
                extra={"event": "job_failed", "job_id": job.id, "job_type": job.type.value},
            )
            self._finish(job, JobStatus.FAILED, error=str(exc).strip() or exc.__class__.__name__)
        else:
            self._finish(job, JobStatus.COMPLETED, result=result)
        finally:
            reset_job_id(token)

    def _finish(self, job: Job, status: JobStatus, *, result: Any = None, error: str | None = None) -> None:
        self._transition(job, status)
        job.completed_at = self._clock()
        if status == JobStatus.COMPLETED:
            job.result = result
            details = job.progress.details if job.progress is not None else {}
            job.progress = JobProgress(percent=100, message="completed", details=details)
            logger.info("job_completed", extra={"event": "job_completed", "job_id": job.id})
            self._emit("job.completed", job)
        else:
            job.error = error
            self._emit("job.failed", job)
        self._resolve_waiters(job)

    def _transition(self, job: Job, status: JobStatus) -> None:
        if status not in ALLOWED_TRANSITIONS.get(job.status, frozenset()):
            raise InvalidTransition(f"Job {job.id} cannot move from {job.status.value} to {status.value}")
        job.status = status

    def _apply_progress(self, job_id: str, percent: int, message: str | None, details: dict[str, Any]) -> None:
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.RUNNING:
            return
        job.progress = JobProgress(percent=max(0, min(100, int(percent))), message=message, details=details)
        self._emit("job.progress", job)

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def _resolve_waiters(self, job: Job) -> None:
        for future in self._waiters.pop(job.id, []):
            if not future.done():
                future.set_result(job.model_copy(deep=True))

    def _emit(self, event: str, job: Job) -> None:
        if not self._listeners:
            return
        snapshot = job.model_copy(deep=True)
        for listener in list(self._listeners):
            try:
                listener(event, snapshot)
            except Exception:
                logger.exception(
                    "job_listener_failed",
                    extra={"event": "job_listener_failed", "job_id": job.id, "job_event": event},
                )
