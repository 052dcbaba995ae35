from contextlib import asynccontextmanager
from functools import lru_cache
import logging
from pathlib import Path
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from reqsift.api.routers.contradictions import build_contradictions_router
from reqsift.api.routers.jobs import build_jobs_router
from reqsift.api.routers.system import build_system_router
from reqsift.config import settings
from reqsift.contradiction import NliClient
from reqsift.generation import BedrockTextGenerator, TextGenerator
from reqsift.jobs.handlers import build_job_handlers
from reqsift.jobs.queue import JobQueueManager
from reqsift.observability import (
    configure_logging,
    normalize_request_id,
    reset_request_id,
    sanitize_for_logging,
    set_request_id,
)
from reqsift.orchestrator import ExtractionOrchestrator

logger = logging.getLogger("reqsift.api")


@lru_cache(maxsize=1)
def _cached_text_generator() -> BedrockTextGenerator:
    return BedrockTextGenerator(settings=settings)


def get_text_generator() -> TextGenerator:
    return _cached_text_generator()


@lru_cache(maxsize=1)
def _cached_nli_client() -> NliClient:
    return NliClient.from_settings(settings)


def get_nli_client() -> NliClient:
    return _cached_nli_client()


def build_job_queue() -> JobQueueManager:
    orchestrator = ExtractionOrchestrator.from_settings(get_text_generator(), settings)
    handlers = build_job_handlers(settings=settings, orchestrator=orchestrator, scorer=get_nli_client())
    return JobQueueManager(handlers, retention_seconds=settings.job_retention_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    logger.info("application_startup", extra={"event": "application_startup", "environment": settings.app_env})
    Path(settings.storage_root).mkdir(parents=True, exist_ok=True)

    # The queue binds asyncio primitives to the running loop, so it is built per lifespan.
    queue = build_job_queue()
    await queue.start()
    app.state.job_queue = queue
    try:
        yield
    finally:
        await queue.stop()
        app.state.job_queue = None
        logger.info("application_shutdown", extra={"event": "application_shutdown"})


def create_app() -> FastAPI:
    cors_origins = settings.cors_origins_list
    if settings.cors_allow_credentials and any(origin == "*" for origin in cors_origins):
        raise RuntimeError("Invalid CORS_ORIGINS: wildcard '*' is not allowed when credentials are enabled.")

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", settings.request_id_header, settings.user_id_header],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = normalize_request_id(request.headers.get(settings.request_id_header))
        request.state.request_id = request_id
        token = set_request_id(request_id)
        started = time.perf_counter()

        logger.info(
            "request_started",
            extra={
                "event": "request_started",
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "query": sanitize_for_logging(dict(request.query_params)),
                "client_ip": request.client.host if request.client else None,
            },
        )

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_failed",
                extra={
                    "event": "request_failed",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
            raise
        finally:
            reset_request_id(token)

        response.headers[settings.request_id_header] = request_id
        logger.info(
            "request_completed",
            extra={
                "event": "request_completed",
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return response

    app.include_router(build_system_router())
    app.include_router(build_jobs_router())
    app.include_router(build_contradictions_router(get_nli_client=lambda: get_nli_client()))
    return app


app = create_app()
