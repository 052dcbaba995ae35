from __future__ import annotations

import time
from pathlib import Path
from uuid import uuid4

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from reqsift.config import settings
from reqsift.storage import normalize_storage_backend


def _storage_check() -> dict[str, object]:
    backend = normalize_storage_backend(settings.storage_backend)
    if backend == "s3":
        # Objects are addressed by s3:// URIs per job; reads are checked when a job runs.
        return {"ok": True, "backend": "s3"}
    if backend != "local":
        return {"ok": False, "backend": backend, "error": "unsupported storage backend"}

    try:
        root = Path(settings.storage_root)
        root.mkdir(parents=True, exist_ok=True)
        token = f"{time.time()}-{uuid4()}"
        probe = root / ".ready_probe"
        probe.write_text(token, encoding="utf-8")
        read_back = probe.read_text(encoding="utf-8")
        probe.unlink(missing_ok=True)
        if read_back != token:
            raise RuntimeError("local storage probe mismatch")
    except (OSError, RuntimeError) as exc:
        return {"ok": False, "backend": "local", "error": str(exc)}
    return {"ok": True, "backend": "local"}


def build_system_router() -> APIRouter:
    router = APIRouter()

    @router.get("/")
    def root() -> dict[str, str]:
        return {"service": "reqsift-backend", "status": "running"}

    @router.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "environment": settings.app_env}

    @router.get("/ready", response_model=None)
    async def ready(request: Request) -> JSONResponse:
        queue = getattr(request.app.state, "job_queue", None)
        worker_ok = queue is not None and queue.running
        checks: dict[str, dict[str, object]] = {
            "worker": {
                "ok": worker_ok,
                "queue_depth": queue.queue_depth if queue is not None else 0,
            },
            "storage": _storage_check(),
            "nli": {"ok": True, "configured": bool(settings.nli_endpoint_url and settings.nli_api_key)},
        }
        ok = all(bool(check["ok"]) for check in checks.values())
        payload = {
            "status": "ready" if ok else "not_ready",
            "environment": settings.app_env,
            "checks": checks,
        }
        return JSONResponse(status_code=200 if ok else 503, content=payload)

    return router
