"""
Text extraction from uploaded document binaries.

Plain text and markdown are decoded directly. PDF and Word documents are
handed to parser callables; PDFs are parsed with PyMuPDF by default, Word
documents only when a parser is injected.
"""

import re
from collections.abc import Callable, Mapping
from typing import Optional, Protocol

import fitz  # PyMuPDF

from kbsearch.exceptions import ExtractionError
from kbsearch.models import ExtractionResult

PDF_MIME_TYPE = "application/pdf"
DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_MIME_TYPES = frozenset({"text/plain", "text/markdown", "text/x-markdown"})

SUPPORTED_MIME_TYPES: dict[str, str] = {
    "text/plain": "Plain Text",
    "text/markdown": "Markdown",
    "text/x-markdown": "Markdown",
    PDF_MIME_TYPE: "PDF",
    DOCX_MIME_TYPE: "Word Document",
}
"""Supported mime type -> human-readable format name."""

SCANNED_PDF_WARNING = (
    "PDF appears to contain mostly images or scanned content. "
    "Text extraction may be incomplete."
)
SCANNED_PDF_MIN_CHARS = 100

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_HORIZONTAL_SPACE = re.compile(r"[^\S\n]+")
_BLANK_LINE_RUNS = re.compile(r"\n{3,}")

_MIME_BY_EXTENSION = {
    "txt": "text/plain",
    "md": "text/markdown",
    "markdown": "text/markdown",
    "pdf": PDF_MIME_TYPE,
    "docx": DOCX_MIME_TYPE,
}

Parser = Callable[[bytes], ExtractionResult]


class Extractor(Protocol):
    """Turns a document binary into text."""

    def supports(self, mime_type: str) -> bool: ...

    def extract(self, content: bytes, mime_type: str) -> ExtractionResult: ...


def is_supported_mime_type(mime_type: str) -> bool:
    return mime_type in SUPPORTED_MIME_TYPES


def mime_type_for_filename(filename: str) -> Optional[str]:
    """Mime type implied by a file extension, or None when unsupported."""
    suffix = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return _MIME_BY_EXTENSION.get(suffix)


def format_name(mime_type: str) -> str:
    """Human-readable format name ("Unknown" when unsupported)."""
    return SUPPORTED_MIME_TYPES.get(mime_type, "Unknown")


def clean_extracted_text(text: str) -> str:
    """
    Normalize extracted text.

    Converts line endings to LF, removes control characters other than
    tab and newline, collapses horizontal whitespace runs to one space,
    trims every line and collapses three or more newlines to two.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_CHARS.sub("", text)
    text = _HORIZONTAL_SPACE.sub(" ", text)
    text = _BLANK_LINE_RUNS.sub("\n\n", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    return text.strip()


def scanned_pdf_warning(
    mime_type: str,
    page_count: Optional[int],
    text: str,
) -> Optional[str]:
    """Warning for PDFs with pages but almost no extractable text."""
    if mime_type != PDF_MIME_TYPE or not page_count:
        return None
    if len(text.strip()) >= SCANNED_PDF_MIN_CHARS:
        return None
    return SCANNED_PDF_WARNING


class PlainTextExtractor:
    """Extractor for plain text and markdown (UTF-8)."""

    def supports(self, mime_type: str) -> bool:
        return mime_type in TEXT_MIME_TYPES

    def extract(self, content: bytes, mime_type: str) -> ExtractionResult:
        if mime_type not in TEXT_MIME_TYPES:
            raise ExtractionError(f"Unsupported file type: {mime_type}")
        return ExtractionResult(
            text=clean_extracted_text(content.decode("utf-8", errors="replace"))
        )


class DelegatingExtractor:
    """
    Extractor that routes binary formats to injected parsers.

    Text formats are handled by ``PlainTextExtractor``. Parser output is
    cleaned the same way as plain text, and any parser exception is
    re-raised as ExtractionError.

    Example:
        >>> extractor = DelegatingExtractor({"application/pdf": parse_pdf})
        >>> result = extractor.extract(pdf_bytes, "application/pdf")
        >>> result.page_count
        12
    """

    def __init__(
        self,
        parsers: Optional[Mapping[str, Parser]] = None,
        text_extractor: Optional[PlainTextExtractor] = None,
    ) -> None:
        self.parsers = dict(parsers or {})
        self.text_extractor = text_extractor or PlainTextExtractor()

    def supports(self, mime_type: str) -> bool:
        return self.text_extractor.supports(mime_type) or mime_type in self.parsers

    def extract(self, content: bytes, mime_type: str) -> ExtractionResult:
        if mime_type in TEXT_MIME_TYPES:
            return self.text_extractor.extract(content, mime_type)

        parser = self.parsers.get(mime_type)
        if parser is None:
            raise ExtractionError(f"Unsupported file type: {mime_type}")

        try:
            result = parser(content)
        except Exception as e:
            raise ExtractionError(f"{format_name(mime_type)} extraction failed: {e}") from e

        return ExtractionResult(
            text=clean_extracted_text(result.text or ""),
            page_count=result.page_count,
            warnings=list(result.warnings),
        )


def parse_pdf(content: bytes) -> ExtractionResult:
    """Extract the text of every page of a PDF with PyMuPDF."""
    with fitz.open(stream=content, filetype="pdf") as document:
        pages = [page.get_text("text") for page in document]
        page_count = document.page_count

    return ExtractionResult(text="\n\n".join(pages), page_count=page_count)


def default_extractor() -> DelegatingExtractor:
    """Extractor for text formats and PDFs; Word documents need an injected parser."""
    return DelegatingExtractor({PDF_MIME_TYPE: parse_pdf})
