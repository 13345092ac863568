"""
Domain models shared by ingestion, storage and retrieval.

Documents and chunks are persisted by a DocumentStore; SearchResult is
transient and only lives for the duration of a query.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import numpy as np
from numpy.typing import NDArray


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class DocumentStatus(str, enum.Enum):
    """
    Document processing lifecycle states.

    PENDING: Uploaded, awaiting processing (or reset for reprocessing)
    PROCESSING: Extraction, chunking and embedding in progress
    READY: Chunks persisted, document is searchable
    FAILED: Processing error; error_message holds the reason
    """

    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class MatchType(str, enum.Enum):
    """How a search result was found."""

    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    HYBRID = "hybrid"


@dataclass
class Document:
    """An uploaded document and its ingestion state."""

    id: str
    user_id: str
    name: str
    mime_type: str
    size: int
    organization_id: Optional[str] = None
    shared: bool = False
    original_name: Optional[str] = None
    storage_key: Optional[str] = None
    status: DocumentStatus = DocumentStatus.PENDING
    chunk_count: int = 0
    error_message: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    processed_at: Optional[datetime] = None

    def is_visible_to(self, user_id: str, organization_id: Optional[str] = None) -> bool:
        """Check whether a caller may search this document."""
        if self.user_id == user_id:
            return True
        return (
            self.shared
            and organization_id is not None
            and self.organization_id == organization_id
        )


@dataclass
class Chunk:
    """A positioned slice of a document's normalized text."""

    content: str
    """The trimmed text content of the chunk."""

    index: int
    """0-based position within the document."""

    token_count: int
    """Estimated token count (ceil(chars / 4))."""

    start_char: int
    """Start offset into the normalized source text."""

    end_char: int
    """End offset (exclusive) into the normalized source text."""

    @property
    def metadata(self) -> dict[str, int]:
        """Positional metadata as persisted alongside the chunk."""
        return {"startChar": self.start_char, "endChar": self.end_char}


@dataclass
class StoredChunk:
    """A chunk as persisted by a DocumentStore."""

    id: str
    document_id: str
    chunk_index: int
    content: str
    token_count: Optional[int] = None
    embedding: Optional[NDArray[np.float32]] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ScoredChunk:
    """A chunk row returned by a store query, with its score."""

    chunk_id: str
    document_id: str
    document_name: str
    content: str
    chunk_index: int
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict)
    keyword_rank: Optional[float] = None
    """Full-text rank when the chunk matched the keyword query, else None."""


@dataclass
class SearchResult:
    """A ranked retrieval hit handed to context assembly."""

    chunk_id: str
    document_id: str
    document_name: str
    content: str
    similarity: float
    chunk_index: int
    metadata: dict[str, Any] = field(default_factory=dict)
    match_type: MatchType = MatchType.SEMANTIC
    name_match: bool = False
    """True when the hit came from the document-name pass."""


@dataclass
class ExtractionResult:
    """Output of a text extractor."""

    text: str
    page_count: Optional[int] = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class ProcessingResult:
    """Outcome of processing a single document."""

    success: bool
    document_id: str
    chunk_count: int = 0
    error: Optional[str] = None


@dataclass
class ChunkStats:
    """Aggregate token statistics over a document's chunks."""

    total_chunks: int = 0
    total_tokens: int = 0
    avg_tokens_per_chunk: int = 0
    min_tokens: int = 0
    max_tokens: int = 0
