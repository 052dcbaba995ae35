from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger("reqsift.text_extraction")

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_REPEATED_SPACES = re.compile(r"[ \t]{2,}")
_PAGE_OF_PAGES = re.compile(r"(?im)^.*\bpage \d+ of \d+.*$\n?")
_BLANK_RUNS = re.compile(r"\n{3,}")


class TextExtractionError(RuntimeError):
    """Raised when a document yields no usable text."""


@dataclass(frozen=True)
class TextExtraction:
    text: str
    success: bool
    parser_id: str
    error: str | None = None


class DocumentParser(Protocol):
    parser_id: str
    extensions: frozenset[str]
    content_types: frozenset[str]

    def extract(self, content: bytes) -> str:
        ...


def _decode(content: bytes) -> str:
    for encoding in ("utf-8", "latin-1"):
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise TextExtractionError("text decode failed using utf-8 and latin-1")


class PlainTextParser:
    parser_id = "text"
    extensions = frozenset({".txt", ".md", ".csv", ".json", ".yaml", ".yml", ".xml", ".html"})
    content_types = frozenset({"text/plain", "text/markdown", "text/csv", "text/html"})

    def extract(self, content: bytes) -> str:
        return _decode(content)


class PdfParser:
    parser_id = "pdf"
    extensions = frozenset({".pdf"})
    content_types = frozenset({"application/pdf"})

    def extract(self, content: bytes) -> str:
        from pypdf import PdfReader

        reader = PdfReader(io.BytesIO(content), strict=False)
        return "\n\n".join((page.extract_text() or "") for page in reader.pages)


class DocxParser:
    parser_id = "docx"
    extensions = frozenset({".docx"})
    content_types = frozenset({"application/vnd.openxmlformats-officedocument.wordprocessingml.document"})

    def extract(self, content: bytes) -> str:
        from docx import Document

        document = Document(io.BytesIO(content))
        lines = [paragraph.text for paragraph in document.paragraphs]
        for table in document.tables:
            for row in table.rows:
                cells = [" ".join(cell.text.split()) for cell in row.cells]
                lines.append(" | ".join(value for value in cells if value))
        return "\n".join(lines)


class RtfParser:
    parser_id = "rtf"
    extensions = frozenset({".rtf"})
    content_types = frozenset({"application/rtf", "text/rtf"})

    def extract(self, content: bytes) -> str:
        from striprtf.striprtf import rtf_to_text

        return rtf_to_text(_decode(content))


def clean_extracted_text(text: str) -> str:
    cleaned = text.replace("\r\n", "\n").replace("\r", "\n").replace("\f", "\n")
    cleaned = _CONTROL_CHARS.sub("", cleaned)
    cleaned = _PAGE_OF_PAGES.sub("", cleaned)
    cleaned = _REPEATED_SPACES.sub(" ", cleaned)
    cleaned = "\n".join(line.strip() for line in cleaned.split("\n"))
    return _BLANK_RUNS.sub("\n\n", cleaned).strip()


class ParserRegistry:
    def __init__(self, parsers: list[DocumentParser] | None = None) -> None:
        self._parsers: list[DocumentParser] = parsers or [PdfParser(), DocxParser(), RtfParser(), PlainTextParser()]

    def find(self, *, file_name: str, content_type: str = "") -> DocumentParser | None:
        suffix = Path(file_name).suffix.lower()
        normalized_type = content_type.split(";", 1)[0].strip().lower()
        for parser in self._parsers:
            if suffix in parser.extensions or normalized_type in parser.content_types:
                return parser
        return None

    def supports(self, *, file_name: str, content_type: str = "") -> bool:
        return self.find(file_name=file_name, content_type=content_type) is not None

    def extract(self, content: bytes, *, file_name: str, content_type: str = "") -> TextExtraction:
        parser = self.find(file_name=file_name, content_type=content_type)
        if parser is None:
            return TextExtraction(text="", success=False, parser_id="none", error="unsupported file type")

        try:
            text = clean_extracted_text(parser.extract(content))
        except Exception as exc:
            logger.warning(
                "text_extraction_failed",
                extra={"event": "text_extraction_failed", "parser_id": parser.parser_id, "error": str(exc)},
            )
            return TextExtraction(
                text="",
                success=False,
                parser_id=parser.parser_id,
                error=f"{parser.parser_id} parse failed: {exc}",
            )

        if not text:
            return TextExtraction(text="", success=False, parser_id=parser.parser_id, error="no text extracted")
        return TextExtraction(text=text, success=True, parser_id=parser.parser_id)
