from __future__ import annotations

import logging
from pathlib import Path

from reqsift.config import Settings

logger = logging.getLogger("reqsift.storage")


class StorageError(RuntimeError):
    """Raised when an uploaded document cannot be located or read."""


def normalize_storage_backend(value: str) -> str:
    normalized = (value or "").strip().lower()
    if normalized in {"", "local", "filesystem", "fs"}:
        return "local"
    if normalized in {"s3"}:
        return "s3"
    return "unknown"


def is_s3_uri(path: str) -> bool:
    return path.strip().lower().startswith("s3://")


def parse_s3_uri(uri: str) -> tuple[str, str]:
    raw = uri.strip()
    if not is_s3_uri(raw):
        raise StorageError(f"Not an S3 URI: '{uri}'")
    bucket, _, key = raw[5:].partition("/")
    if not bucket.strip() or not key.strip():
        raise StorageError(f"Invalid S3 URI: '{uri}' (expected s3://<bucket>/<key>)")
    return bucket.strip(), key.strip()


def _check_backend(settings: Settings, raw: str) -> None:
    backend = normalize_storage_backend(settings.storage_backend)
    if backend == "unknown":
        raise StorageError(f"Unsupported storage backend: '{settings.storage_backend}'")
    if backend == "s3" and not is_s3_uri(raw):
        raise StorageError(f"Storage backend is s3; expected an s3:// URI, got '{raw}'")
    if backend == "local" and is_s3_uri(raw):
        raise StorageError(f"Storage backend is local; S3 URIs are not accepted: '{raw}'")


def resolve_local_path(settings: Settings, storage_path: str) -> Path:
    """Resolve ``storage_path`` under ``storage_root``; paths that leave the root are rejected."""
    root = Path(settings.storage_root).resolve()
    path = Path(storage_path)
    candidate = (path if path.is_absolute() else root / path).resolve()
    if not candidate.is_relative_to(root):
        raise StorageError(f"Path is outside the storage root: '{storage_path}'")
    return candidate


def document_exists(settings: Settings, storage_path: str) -> bool:
    """Existence check made before a job is accepted; S3 objects are checked on read.

    Raises ``StorageError`` when the path is not allowed for the configured backend.
    """
    raw = str(storage_path or "").strip()
    if not raw:
        return False
    _check_backend(settings, raw)
    if is_s3_uri(raw):
        return True
    return resolve_local_path(settings, raw).is_file()


def load_document_bytes(*, settings: Settings, storage_path: str) -> bytes:
    raw = str(storage_path or "").strip()
    if not raw:
        raise StorageError("Missing storage path.")
    _check_backend(settings, raw)

    if is_s3_uri(raw):
        bucket, key = parse_s3_uri(raw)
        try:
            import boto3  # type: ignore
        except ImportError as exc:
            raise StorageError("boto3 is required to read documents from S3.") from exc

        client = boto3.client("s3", region_name=settings.aws_region)
        try:
            response = client.get_object(Bucket=bucket, Key=key)
        except Exception as exc:  # pragma: no cover - depends on AWS runtime integration
            raise StorageError(f"Failed to read document from S3 (bucket={bucket}, key={key}): {exc}") from exc
        body = response.get("Body")
        if body is None:
            raise StorageError(f"S3 get_object returned no body (bucket={bucket}, key={key}).")
        return body.read()

    path = resolve_local_path(settings, raw)
    if not path.is_file():
        raise StorageError(f"File not found: {raw}")
    logger.debug("document_loaded", extra={"event": "document_loaded", "path": str(path)})
    return path.read_bytes()
