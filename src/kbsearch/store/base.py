"""
Abstract base class for document stores.

A store persists documents and their chunks and answers the three query
shapes retrieval needs: vector similarity, full-text keyword rank, and
document-name matching. Every query is scoped to a caller-supplied set of
document IDs; the store never decides on its own what a caller may see
beyond ``accessible_document_ids``.
"""

from abc import ABC, abstractmethod
from collections.abc import Collection, Mapping
from typing import Any, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from kbsearch.models import Chunk, Document, ScoredChunk, StoredChunk
from kbsearch.retrieval.keywords import KeywordQuery

HYBRID_KEYWORD_FLOOR = 0.5
HYBRID_KEYWORD_WEIGHT = 0.3


def hybrid_score(vector_similarity: float, keyword_rank: Optional[float]) -> float:
    """
    Combine vector similarity and keyword rank into one ordering score.

    Keyword hits are lifted to at least 0.5 and boosted by 0.3 * rank, so the
    result may exceed 1.0; it is used for ordering only.
    """
    if keyword_rank is None:
        return vector_similarity
    return max(vector_similarity, HYBRID_KEYWORD_FLOOR) + HYBRID_KEYWORD_WEIGHT * keyword_rank


class DocumentStore(ABC):
    """Contract for document and chunk persistence."""

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------
    @abstractmethod
    def create_document(self, **fields: Any) -> Document:
        """Create a document; ``id`` and timestamps are generated when absent."""

    @abstractmethod
    def get_document(self, document_id: str) -> Optional[Document]:
        """Return a document by ID, or None."""

    @abstractmethod
    def update_document(self, document_id: str, **fields: Any) -> Optional[Document]:
        """Update fields of a document; returns None when it does not exist."""

    @abstractmethod
    def delete_document(self, document_id: str) -> bool:
        """Delete a document and all its chunks; False when not found."""

    @abstractmethod
    def list_documents(
        self,
        user_id: str,
        organization_id: Optional[str] = None,
    ) -> list[Document]:
        """List documents visible to a caller, newest first, any status."""

    @abstractmethod
    def accessible_document_ids(
        self,
        user_id: str,
        organization_id: Optional[str] = None,
    ) -> set[str]:
        """
        IDs of ``ready`` documents a caller may search.

        Owners see their own documents; organization members see documents
        shared with that organization. A private document that carries an
        organization ID stays private to its owner.
        """

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------
    @abstractmethod
    def delete_chunks(self, document_id: str) -> int:
        """Delete all chunks of a document; returns the number removed."""

    @abstractmethod
    def insert_chunks(self, document_id: str, chunks: Sequence[Chunk]) -> list[str]:
        """Insert one batch of chunks without embeddings; returns their IDs."""

    @abstractmethod
    def set_embeddings(
        self,
        document_id: str,
        embeddings: Mapping[int, NDArray[np.float32]],
    ) -> int:
        """Backfill embeddings keyed by chunk index in one bulk update."""

    @abstractmethod
    def get_chunks(self, document_id: str) -> list[StoredChunk]:
        """All chunks of a document ordered by chunk index."""

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @abstractmethod
    def similarity_search(
        self,
        embedding: NDArray[np.float32],
        document_ids: Collection[str],
        limit: int,
    ) -> list[ScoredChunk]:
        """Chunks with embeddings ranked by ``1 - cosine_distance``."""

    @abstractmethod
    def keyword_search(
        self,
        query: KeywordQuery,
        document_ids: Collection[str],
        limit: int,
    ) -> list[ScoredChunk]:
        """Chunks matching the full-text query, ranked by text relevance."""

    @abstractmethod
    def hybrid_search(
        self,
        embedding: NDArray[np.float32],
        query: KeywordQuery,
        document_ids: Collection[str],
        limit: int,
    ) -> list[ScoredChunk]:
        """
        Chunks ranked by ``hybrid_score`` of vector similarity and keyword rank.

        Candidates are chunks with an embedding or a keyword hit; chunks
        without an embedding count as vector similarity 0.
        """

    @abstractmethod
    def name_match(
        self,
        query: KeywordQuery,
        document_ids: Collection[str],
        limit: int = 3,
    ) -> list[tuple[Document, StoredChunk]]:
        """
        Documents whose name contains any term (or all terms in order).

        Each document is paired with its lowest-index chunk; documents
        without chunks are skipped.
        """
