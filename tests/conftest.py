"""
Pytest configuration and shared fixtures.

Provides common fixtures for:
    - Configuration with test values
    - Deterministic fake embedders (working and failing)
    - In-memory store, blob storage, pipeline and retriever
    - Sample documents
"""

import re
import zlib
from typing import Optional
from unittest.mock import patch

import numpy as np
import pytest

from kbsearch.exceptions import EmbeddingError
from kbsearch.ingestion.pipeline import IngestionPipeline
from kbsearch.ingestion.storage import InMemoryBlobStorage
from kbsearch.models import Chunk, Document, DocumentStatus
from kbsearch.retrieval.hybrid import HybridRetriever
from kbsearch.store.memory import InMemoryStore

FAKE_DIMENSION = 64

_WORD = re.compile(r"[a-z0-9]+")


# =============================================================================
# Fake Embedders
# =============================================================================

class FakeEmbedder:
    """
    Bag-of-words embedder: each word is hashed into one of 64 buckets.

    Texts sharing words get high cosine similarity, which is enough to make
    semantic ranking predictable in tests.
    """

    def __init__(self, dimension: int = FAKE_DIMENSION) -> None:
        self.dimension = dimension
        self.calls: list[list[str]] = []

    def embed_text(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype=np.float32)
        for word in _WORD.findall(text.lower()):
            vector[zlib.crc32(word.encode()) % self.dimension] += 1.0
        norm = np.linalg.norm(vector)
        if norm == 0:
            vector[0] = 1.0
            return vector
        return vector / norm

    def embed_batch(self, texts: list[str]) -> np.ndarray:
        self.calls.append(list(texts))
        if not texts:
            return np.empty((0, self.dimension), dtype=np.float32)
        return np.vstack([self.embed_text(text) for text in texts])

    def embed_one(self, text: str) -> np.ndarray:
        return self.embed_batch([text])[0]


class FailingEmbedder:
    """Embedder whose service is always down."""

    def __init__(self) -> None:
        self.calls = 0

    def embed_batch(self, texts: list[str]) -> np.ndarray:
        self.calls += 1
        raise EmbeddingError("Embedding service unavailable")

    def embed_one(self, text: str) -> np.ndarray:
        return self.embed_batch([text])[0]


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def mock_settings():
    """Provide test settings without requiring .env file."""
    with patch.dict(
        "os.environ",
        {
            "OPENAI_API_KEY": "test-api-key",
            "EMBEDDING_MODEL": "text-embedding-3-small",
            "EMBEDDING_DIMENSION": "64",
            "CHUNK_SIZE": "200",
            "CHUNK_OVERLAP": "20",
            "ENABLE_TRACING": "false",
        },
    ):
        from kbsearch.config import Settings
        yield Settings(_env_file=None)


# =============================================================================
# Component Fixtures
# =============================================================================

@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def failing_embedder() -> FailingEmbedder:
    return FailingEmbedder()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def blob_storage() -> InMemoryBlobStorage:
    return InMemoryBlobStorage()


@pytest.fixture
def pipeline(store, blob_storage, fake_embedder) -> IngestionPipeline:
    """Pipeline with small chunks so short test documents split."""
    return IngestionPipeline(
        store=store,
        storage=blob_storage,
        embedder=fake_embedder,
        chunk_size=100,
        chunk_overlap=10,
        min_chunk_size=5,
    )


@pytest.fixture
def retriever(store, fake_embedder) -> HybridRetriever:
    return HybridRetriever(store, fake_embedder)


@pytest.fixture
def add_ready_document(store, fake_embedder):
    """
    Factory that writes a ready document with one chunk per text.

    Chunks are embedded with the fake embedder unless ``embed=False``.
    """
    def _add(
        name: str,
        texts: list[str],
        user_id: str = "user-1",
        organization_id: Optional[str] = None,
        shared: bool = False,
        status: DocumentStatus = DocumentStatus.READY,
        embed: bool = True,
    ) -> Document:
        document = store.create_document(
            user_id=user_id,
            organization_id=organization_id,
            shared=shared,
            name=name,
            mime_type="text/plain",
            size=sum(len(text) for text in texts),
            status=status,
            chunk_count=len(texts),
        )

        offset = 0
        chunks = []
        for index, text in enumerate(texts):
            chunks.append(
                Chunk(
                    content=text,
                    index=index,
                    token_count=(len(text) + 3) // 4,
                    start_char=offset,
                    end_char=offset + len(text),
                )
            )
            offset += len(text) + 2

        store.insert_chunks(document.id, chunks)
        if embed:
            vectors = fake_embedder.embed_batch(texts)
            store.set_embeddings(document.id, {i: vectors[i] for i in range(len(texts))})
        return document

    return _add


# =============================================================================
# Sample Data Fixtures
# =============================================================================

@pytest.fixture
def sample_documents() -> dict[str, str]:
    """Provide sample knowledge-base documents keyed by file name."""
    return {
        "FSDS Overview.md": """# FSDS Overview

## Product

The Field Service Dispatch System schedules technicians, tracks work orders
and syncs job notes from mobile devices back to the office.

## Pricing

FSDS pricing starts at 49 dollars per technician per month on the Basic plan.
The Pro plan adds route optimisation for 79 dollars per technician per month.
""",
        "Refund Policy.txt": (
            "Customers may request a refund within 30 days of purchase. "
            "Refund requests are reviewed by the billing team within five business days. "
            "Annual plans are refunded pro rata after the first 30 days."
        ),
        "Onboarding Guide.md": """# Onboarding Guide

## First week

New hires meet their manager on day one, receive laptop credentials and
complete security training before the end of the week.

## Benefits

Health insurance enrolment opens on the first day of employment and stays
open for thirty days.
""",
    }


@pytest.fixture
def long_text() -> str:
    """Roughly 13k characters of prose with paragraph breaks."""
    paragraphs = []
    for p in range(60):
        sentences = [
            f"Sentence {p * 5 + s} explains topic {(p + s) % 7} in plain words."
            for s in range(5)
        ]
        paragraphs.append(" ".join(sentences))
    return "\n\n".join(paragraphs)
