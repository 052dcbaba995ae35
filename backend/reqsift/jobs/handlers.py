from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Mapping, TypeVar

from pydantic import BaseModel, ValidationError

from reqsift.config import Settings
from reqsift.contradiction import ContradictionScorer, analyze_contradictions
from reqsift.jobs.models import (
    ContradictionAnalysisPayload,
    JobPriority,
    JobType,
    LargeFileProcessingPayload,
    PdfProcessingPayload,
)
from reqsift.jobs.queue import InvalidPayload, JobHandler, ProgressReporter
from reqsift.orchestrator import ExtractionContext, ExtractionOrchestrator, ProgressCallback
from reqsift.storage import StorageError, document_exists, load_document_bytes
from reqsift.text_extraction import ParserRegistry, TextExtractionError

logger = logging.getLogger("reqsift.jobs.handlers")

# Share of the progress bar reserved for loading and text extraction.
_EXTRACTION_BASE_PERCENT = 10

ModelT = TypeVar("ModelT", bound=BaseModel)


def _format_validation_error(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = str(error.get("msg", "invalid value"))
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages) or "invalid payload"


def _validate_model(model: type[ModelT], payload: Mapping[str, Any]) -> ModelT:
    try:
        return model.model_validate(dict(payload))
    except ValidationError as exc:
        raise InvalidPayload(f"Invalid payload: {_format_validation_error(exc)}") from exc


def _extraction_progress(report: ProgressReporter) -> ProgressCallback:
    def on_progress(completed: int, failed: int, total: int) -> None:
        span = 99 - _EXTRACTION_BASE_PERCENT
        percent = _EXTRACTION_BASE_PERCENT + (span * completed // total if total else span)
        report(
            percent,
            f"{completed}/{total} extraction calls finished",
            calls_completed=completed,
            calls_failed=failed,
            calls_total=total,
        )

    return on_progress


class PdfProcessingHandler:
    job_type = JobType.PDF_PROCESSING

    def __init__(
        self,
        orchestrator: ExtractionOrchestrator,
        *,
        settings: Settings,
        registry: ParserRegistry | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._settings = settings
        self._registry = registry or ParserRegistry()

    @staticmethod
    def _document_name(payload: PdfProcessingPayload) -> str:
        # Stored uploads may carry a generated name; fall back to the original file name for the type.
        return payload.file_path if Path(payload.file_path).suffix else payload.file_name

    def validate(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        model = _validate_model(PdfProcessingPayload, payload)
        document_name = self._document_name(model)
        if not self._registry.supports(file_name=document_name):
            raise InvalidPayload(f"Unsupported file type: {Path(document_name).suffix or document_name}")
        try:
            found = document_exists(self._settings, model.file_path)
        except StorageError as exc:
            raise InvalidPayload(str(exc)) from exc
        if not found:
            raise InvalidPayload(f"File not found: {model.file_path}")
        return model.model_dump()

    def default_priority(self, payload: Mapping[str, Any]) -> JobPriority:
        return JobPriority.LOW if payload.get("is_large_file") else JobPriority.NORMAL

    async def run(self, payload: dict[str, Any], report: ProgressReporter) -> dict[str, Any]:
        model = PdfProcessingPayload.model_validate(payload)
        document_name = self._document_name(model)

        report(0, "loading document", file_name=model.file_name)
        content = await asyncio.to_thread(
            load_document_bytes,
            settings=self._settings,
            storage_path=model.file_path,
        )
        extraction = await asyncio.to_thread(self._registry.extract, content, file_name=document_name)
        if not extraction.success:
            raise TextExtractionError(f"Text extraction failed for {model.file_name}: {extraction.error}")
        logger.info(
            "document_text_extracted",
            extra={
                "event": "document_text_extracted",
                "file_name": model.file_name,
                "parser_id": extraction.parser_id,
                "text_length": len(extraction.text),
            },
        )

        report(
            _EXTRACTION_BASE_PERCENT,
            "extracting requirements",
            parser_id=extraction.parser_id,
            text_length=len(extraction.text),
        )
        result = await self._orchestrator.run(
            extraction.text,
            ExtractionContext(
                project_name=model.project_name,
                file_name=model.file_name,
                content_type=model.content_type,
                num_analyses=model.num_analyses,
                req_per_analysis=model.req_per_chunk,
            ),
            on_progress=_extraction_progress(report),
        )
        body = result.to_payload()
        body.update(
            {
                "file_name": model.file_name,
                "project_name": model.project_name,
                "input_data_id": model.input_data_id,
                "parser_id": extraction.parser_id,
            }
        )
        return body


class LargeFileProcessingHandler:
    job_type = JobType.LARGE_FILE_PROCESSING

    def __init__(self, orchestrator: ExtractionOrchestrator) -> None:
        self._orchestrator = orchestrator

    def validate(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        return _validate_model(LargeFileProcessingPayload, payload).model_dump()

    def default_priority(self, payload: Mapping[str, Any]) -> JobPriority:
        return JobPriority.LOW

    async def run(self, payload: dict[str, Any], report: ProgressReporter) -> dict[str, Any]:
        model = LargeFileProcessingPayload.model_validate(payload)
        if not model.extraction_success:
            raise TextExtractionError(
                f"Text extraction failed for {model.file_name}: {model.extraction_error or 'no text extracted'}"
            )

        report(_EXTRACTION_BASE_PERCENT, "extracting requirements", text_length=len(model.text))
        result = await self._orchestrator.run(
            model.text,
            ExtractionContext(
                project_name=model.project_name,
                file_name=model.file_name,
                content_type=model.content_type,
                num_analyses=model.num_analyses,
                req_per_analysis=model.min_requirements,
            ),
            on_progress=_extraction_progress(report),
        )
        body = result.to_payload()
        body.update(
            {
                "file_name": model.file_name,
                "project_name": model.project_name,
                "input_data_id": model.input_data_id,
                "source_path": model.source_path,
            }
        )
        return body


class ContradictionAnalysisHandler:
    job_type = JobType.CONTRADICTION_ANALYSIS

    def __init__(
        self,
        scorer: ContradictionScorer,
        *,
        similarity_threshold: float = 0.6,
        nli_threshold: float = 0.55,
        max_requirements: int = 100,
    ) -> None:
        self._scorer = scorer
        self._similarity_threshold = similarity_threshold
        self._nli_threshold = nli_threshold
        self._max_requirements = max_requirements

    def validate(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        return _validate_model(ContradictionAnalysisPayload, payload).model_dump()

    def default_priority(self, payload: Mapping[str, Any]) -> JobPriority:
        return JobPriority.NORMAL

    async def run(self, payload: dict[str, Any], report: ProgressReporter) -> dict[str, object]:
        model = ContradictionAnalysisPayload.model_validate(payload)

        def on_progress(done: int, total: int) -> None:
            report(99 * done // total if total else 99, f"{done}/{total} pairs compared")

        return await analyze_contradictions(
            model.requirements,
            self._scorer,
            similarity_threshold=(
                model.similarity_threshold if model.similarity_threshold is not None else self._similarity_threshold
            ),
            nli_threshold=model.nli_threshold if model.nli_threshold is not None else self._nli_threshold,
            max_requirements=self._max_requirements,
            on_progress=on_progress,
        )


def build_job_handlers(
    *,
    settings: Settings,
    orchestrator: ExtractionOrchestrator,
    scorer: ContradictionScorer,
    registry: ParserRegistry | None = None,
) -> list[JobHandler]:
    return [
        PdfProcessingHandler(orchestrator, settings=settings, registry=registry),
        LargeFileProcessingHandler(orchestrator),
        ContradictionAnalysisHandler(
            scorer,
            similarity_threshold=settings.contradiction_similarity_threshold,
            nli_threshold=settings.contradiction_nli_threshold,
            max_requirements=settings.contradiction_max_requirements,
        ),
    ]
