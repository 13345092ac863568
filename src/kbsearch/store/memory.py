"""
In-memory document store.

Implements the DocumentStore contract with plain dictionaries and numpy
cosine similarity. Each instance owns its data, so tests and local runs
inject their own store instead of sharing module-level state.
"""

import re
import threading
import uuid
from collections.abc import Collection, Mapping
from dataclasses import replace
from typing import Any, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from kbsearch.models import (
    Chunk,
    Document,
    DocumentStatus,
    ScoredChunk,
    StoredChunk,
    utcnow,
)
from kbsearch.retrieval.keywords import KeywordQuery
from kbsearch.store.base import DocumentStore, hybrid_score

_WORD = re.compile(r"[a-z0-9]+")


class InMemoryStore(DocumentStore):
    """
    DocumentStore backed by process memory.

    Keyword rank is the fraction of query terms that prefix-match a word
    of the chunk, which keeps it in [0, 1] like Postgres ``ts_rank`` values.

    Example:
        >>> store = InMemoryStore()
        >>> doc = store.create_document(user_id="u1", name="Plan.md",
        ...                             mime_type="text/markdown", size=10)
        >>> store.get_document(doc.id) is not None
        True
    """

    def __init__(self) -> None:
        self._documents: dict[str, Document] = {}
        self._chunks: dict[str, list[StoredChunk]] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------
    def create_document(self, **fields: Any) -> Document:
        fields.setdefault("id", str(uuid.uuid4()))
        document = Document(**fields)
        with self._lock:
            self._documents[document.id] = document
            self._chunks.setdefault(document.id, [])
        return replace(document)

    def get_document(self, document_id: str) -> Optional[Document]:
        with self._lock:
            document = self._documents.get(document_id)
            return replace(document) if document else None

    def update_document(self, document_id: str, **fields: Any) -> Optional[Document]:
        with self._lock:
            document = self._documents.get(document_id)
            if document is None:
                return None
            fields.setdefault("updated_at", utcnow())
            updated = replace(document, **fields)
            self._documents[document_id] = updated
            return replace(updated)

    def delete_document(self, document_id: str) -> bool:
        with self._lock:
            if document_id not in self._documents:
                return False
            del self._documents[document_id]
            self._chunks.pop(document_id, None)
            return True

    def list_documents(
        self,
        user_id: str,
        organization_id: Optional[str] = None,
    ) -> list[Document]:
        with self._lock:
            visible = [
                replace(doc)
                for doc in self._documents.values()
                if doc.is_visible_to(user_id, organization_id)
            ]
        return sorted(visible, key=lambda doc: doc.created_at, reverse=True)

    def accessible_document_ids(
        self,
        user_id: str,
        organization_id: Optional[str] = None,
    ) -> set[str]:
        with self._lock:
            return {
                doc.id
                for doc in self._documents.values()
                if doc.status == DocumentStatus.READY
                and doc.is_visible_to(user_id, organization_id)
            }

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------
    def delete_chunks(self, document_id: str) -> int:
        with self._lock:
            removed = len(self._chunks.get(document_id, []))
            self._chunks[document_id] = []
            return removed

    def insert_chunks(self, document_id: str, chunks: Sequence[Chunk]) -> list[str]:
        stored = [
            StoredChunk(
                id=str(uuid.uuid4()),
                document_id=document_id,
                chunk_index=chunk.index,
                content=chunk.content,
                token_count=chunk.token_count,
                metadata=dict(chunk.metadata),
            )
            for chunk in chunks
        ]
        with self._lock:
            if document_id not in self._documents:
                raise KeyError(f"Unknown document: {document_id}")
            self._chunks[document_id].extend(stored)
        return [chunk.id for chunk in stored]

    def set_embeddings(
        self,
        document_id: str,
        embeddings: Mapping[int, NDArray[np.float32]],
    ) -> int:
        updated = 0
        with self._lock:
            for chunk in self._chunks.get(document_id, []):
                if chunk.chunk_index in embeddings:
                    chunk.embedding = np.asarray(embeddings[chunk.chunk_index], dtype=np.float32)
                    updated += 1
        return updated

    def get_chunks(self, document_id: str) -> list[StoredChunk]:
        with self._lock:
            chunks = list(self._chunks.get(document_id, []))
        return sorted(chunks, key=lambda chunk: chunk.chunk_index)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def similarity_search(
        self,
        embedding: NDArray[np.float32],
        document_ids: Collection[str],
        limit: int,
    ) -> list[ScoredChunk]:
        rows = [
            self._scored(chunk, _cosine_similarity(embedding, chunk.embedding))
            for chunk in self._candidates(document_ids)
            if chunk.embedding is not None
        ]
        return _top(rows, limit)

    def keyword_search(
        self,
        query: KeywordQuery,
        document_ids: Collection[str],
        limit: int,
    ) -> list[ScoredChunk]:
        if not query:
            return []

        rows = []
        for chunk in self._candidates(document_ids):
            rank = _keyword_rank(query, chunk.content)
            if rank is not None:
                rows.append(self._scored(chunk, rank, keyword_rank=rank))
        return _top(rows, limit)

    def hybrid_search(
        self,
        embedding: NDArray[np.float32],
        query: KeywordQuery,
        document_ids: Collection[str],
        limit: int,
    ) -> list[ScoredChunk]:
        rows = []
        for chunk in self._candidates(document_ids):
            rank = _keyword_rank(query, chunk.content) if query else None
            if chunk.embedding is None and rank is None:
                continue

            vector_similarity = (
                _cosine_similarity(embedding, chunk.embedding)
                if chunk.embedding is not None
                else 0.0
            )
            rows.append(
                self._scored(chunk, hybrid_score(vector_similarity, rank), keyword_rank=rank)
            )
        return _top(rows, limit)

    def name_match(
        self,
        query: KeywordQuery,
        document_ids: Collection[str],
        limit: int = 3,
    ) -> list[tuple[Document, StoredChunk]]:
        if not query:
            return []

        in_order = re.compile(".*".join(re.escape(term) for term in query.terms))
        with self._lock:
            documents = [
                self._documents[doc_id]
                for doc_id in document_ids
                if doc_id in self._documents
            ]

        matches: list[tuple[Document, StoredChunk]] = []
        for document in sorted(documents, key=lambda doc: doc.created_at, reverse=True):
            name = document.name.lower()
            if not (any(term in name for term in query.terms) or in_order.search(name)):
                continue

            chunks = self.get_chunks(document.id)
            if not chunks:
                continue

            matches.append((replace(document), chunks[0]))
            if len(matches) >= limit:
                break

        return matches

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _candidates(self, document_ids: Collection[str]) -> list[StoredChunk]:
        with self._lock:
            return [
                chunk
                for doc_id in set(document_ids)
                for chunk in self._chunks.get(doc_id, [])
            ]

    def _scored(
        self,
        chunk: StoredChunk,
        similarity: float,
        keyword_rank: Optional[float] = None,
    ) -> ScoredChunk:
        document = self._documents.get(chunk.document_id)
        return ScoredChunk(
            chunk_id=chunk.id,
            document_id=chunk.document_id,
            document_name=document.name if document else "",
            content=chunk.content,
            chunk_index=chunk.chunk_index,
            similarity=float(similarity),
            metadata=dict(chunk.metadata),
            keyword_rank=keyword_rank,
        )


def _cosine_similarity(a: NDArray[np.float32], b: NDArray[np.float32]) -> float:
    denominator = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denominator == 0:
        return 0.0
    return float(np.dot(a, b) / denominator)


def _keyword_rank(query: KeywordQuery, content: str) -> Optional[float]:
    """Fraction of terms prefix-matching a word of ``content``; None for no hit."""
    words = set(_WORD.findall(content.lower()))
    hits = sum(1 for term in query.terms if any(word.startswith(term) for word in words))
    if hits == 0:
        return None
    return hits / len(query.terms)


def _top(rows: list[ScoredChunk], limit: int) -> list[ScoredChunk]:
    rows.sort(key=lambda row: (-row.similarity, row.document_id, row.chunk_index))
    return rows[:limit]
