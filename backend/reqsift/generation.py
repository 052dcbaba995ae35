from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Iterator, Protocol, Union

from reqsift.config import Settings

logger = logging.getLogger("reqsift.generation")

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)\s*```", flags=re.IGNORECASE | re.DOTALL)
_WRAPPER_KEYS = ("requirements", "items", "data")


class GenerationError(RuntimeError):
    """Raised when the text-generation backend fails or returns no text."""


class TextGenerator(Protocol):
    async def generate(self, prompt: str) -> str:
        ...


@dataclass(frozen=True)
class Parsed:
    items: list[object]


@dataclass(frozen=True)
class Malformed:
    raw_text: str
    reason: str


ParseOutcome = Union[Parsed, Malformed]


def _json_array_spans(raw: str) -> Iterator[str]:
    """Yield the outermost balanced ``[...]`` spans in order, skipping brackets inside strings."""
    spans: list[tuple[int, int]] = []
    opened: list[int] = []
    in_string = False
    escaped = False
    for index, char in enumerate(raw):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"' and opened:
            in_string = True
        elif char == "[":
            opened.append(index)
        elif char == "]" and opened:
            spans.append((opened.pop(), index))

    last_end = -1
    for start, end in sorted(spans):
        if end > last_end:
            yield raw[start : end + 1]
            last_end = end


def _as_items(value: Any) -> list[object] | None:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for key in _WRAPPER_KEYS:
            nested = value.get(key)
            if isinstance(nested, list):
                return nested
    return None


def _looks_like_requirements(items: list[object]) -> bool:
    return not items or any(isinstance(item, dict) for item in items)


def parse_requirement_array(raw: str) -> ParseOutcome:
    """Pull a JSON array of requirement objects out of free model text.

    Outermost balanced ``[...]`` spans are tried first, in order of appearance, then the
    whole response (bare or inside a fenced block). Never raises.
    """
    candidate = (raw or "").strip()
    if not candidate:
        return Malformed(raw_text=raw or "", reason="empty response")

    for span in _json_array_spans(candidate):
        try:
            items = _as_items(json.loads(span))
        except (json.JSONDecodeError, RecursionError):
            continue
        if items is not None and _looks_like_requirements(items):
            return Parsed(items=items)

    fenced = _FENCED_BLOCK.search(candidate)
    for text in (candidate, fenced.group(1) if fenced else None):
        if text is None:
            continue
        try:
            items = _as_items(json.loads(text))
        except (json.JSONDecodeError, RecursionError):
            continue
        if items is not None:
            return Parsed(items=items)

    return Malformed(raw_text=raw, reason="no JSON array found in response")


class BedrockTextGenerator:
    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        self._settings = settings
        self._client = client or self._create_bedrock_client()

    async def generate(self, prompt: str) -> str:
        return await asyncio.to_thread(self._converse, prompt)

    def _create_bedrock_client(self) -> Any:
        try:
            import boto3  # type: ignore
        except ImportError as exc:
            raise GenerationError("boto3 is required for the Bedrock text generator.") from exc

        return boto3.client("bedrock-runtime", region_name=self._settings.aws_region)

    def _converse(self, prompt: str) -> str:
        model_id = self._settings.bedrock_model_id
        if not model_id:
            raise GenerationError("Bedrock model ID is not configured.")

        started = time.perf_counter()
        try:
            response = self._client.converse(
                modelId=model_id,
                messages=[{"role": "user", "content": [{"text": prompt}]}],
                inferenceConfig={
                    "temperature": self._settings.generation_temperature,
                    "maxTokens": self._settings.generation_max_tokens,
                },
            )
        except Exception as exc:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.warning(
                "generation_failed",
                extra={
                    "event": "generation_failed",
                    "model_id": model_id,
                    "duration_ms": duration_ms,
                    "error": str(exc),
                },
            )
            raise GenerationError(f"Bedrock invocation failed for model '{model_id}': {exc}") from exc

        text = self._extract_text(response)
        logger.info(
            "generation_completed",
            extra={
                "event": "generation_completed",
                "model_id": model_id,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "prompt_chars": len(prompt),
                "response_chars": len(text),
            },
        )
        return text

    @staticmethod
    def _extract_text(response: Any) -> str:
        outputs = response.get("output", {}).get("message", {}).get("content", [])
        parts = [item["text"] for item in outputs if isinstance(item.get("text"), str) and item["text"].strip()]
        if not parts:
            raise GenerationError("Bedrock response did not include textual output.")
        return "\n".join(parts).strip()
