"""
PostgreSQL + pgvector document store.

Vector similarity uses pgvector's cosine distance, keyword search uses
Postgres full-text search (``to_tsvector`` / ``to_tsquery`` / ``ts_rank``)
and document-name matching uses ``ILIKE``. Every query is restricted to
the document IDs supplied by the caller.
"""

import logging
import uuid
from collections.abc import Collection, Mapping
from typing import Any, Optional, Sequence

import numpy as np
from numpy.typing import NDArray
from pgvector.sqlalchemy import Vector
from sqlalchemy import and_, bindparam, case, delete, func, insert, or_, select, update
from sqlalchemy.engine import Engine

from kbsearch.config import settings
from kbsearch.models import (
    Chunk,
    Document,
    DocumentStatus,
    ScoredChunk,
    StoredChunk,
    utcnow,
)
from kbsearch.retrieval.keywords import KeywordQuery
from kbsearch.store.base import (
    HYBRID_KEYWORD_FLOOR,
    HYBRID_KEYWORD_WEIGHT,
    DocumentStore,
)
from kbsearch.store.schema import (
    DocumentChunkModel,
    DocumentModel,
    content_tsvector,
    get_engine,
    get_session_factory,
    ts_config,
)

logger = logging.getLogger(__name__)

# Document fields whose ORM attribute name differs from the dataclass field
_DOCUMENT_COLUMNS = {"metadata": "doc_metadata"}


class PostgresStore(DocumentStore):
    """
    DocumentStore backed by PostgreSQL with the pgvector extension.

    Example:
        >>> store = PostgresStore(database_url="postgresql://localhost/kb")
        >>> ids = store.accessible_document_ids("user-1", "org-1")
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[Engine] = None,
        text_search_config: Optional[str] = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            database_url: Connection string (default from settings)
            engine: Existing engine to reuse instead of creating one
            text_search_config: Full-text configuration (default from settings)
        """
        self.engine = engine or get_engine(database_url)
        self._session_factory = get_session_factory(self.engine)
        self.text_search_config = text_search_config or settings.text_search_config
        self._dimension = settings.embedding_dimension

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------
    def create_document(self, **fields: Any) -> Document:
        fields.setdefault("id", str(uuid.uuid4()))
        with self._session_factory.begin() as session:
            row = DocumentModel(**_document_columns(fields))
            session.add(row)
            session.flush()
            return row.to_document()

    def get_document(self, document_id: str) -> Optional[Document]:
        if not _is_uuid(document_id):
            return None
        with self._session_factory() as session:
            row = session.get(DocumentModel, document_id)
            return row.to_document() if row else None

    def update_document(self, document_id: str, **fields: Any) -> Optional[Document]:
        if not _is_uuid(document_id):
            return None
        with self._session_factory.begin() as session:
            row = session.get(DocumentModel, document_id)
            if row is None:
                return None
            for column, value in _document_columns(fields).items():
                setattr(row, column, value)
            row.updated_at = utcnow()
            session.flush()
            return row.to_document()

    def delete_document(self, document_id: str) -> bool:
        if not _is_uuid(document_id):
            return False
        with self._session_factory.begin() as session:
            result = session.execute(
                delete(DocumentModel).where(DocumentModel.id == document_id)
            )
            return result.rowcount > 0

    def list_documents(
        self,
        user_id: str,
        organization_id: Optional[str] = None,
    ) -> list[Document]:
        stmt = (
            select(DocumentModel)
            .where(_visible_to(user_id, organization_id))
            .order_by(DocumentModel.created_at.desc())
        )
        with self._session_factory() as session:
            return [row.to_document() for row in session.scalars(stmt)]

    def accessible_document_ids(
        self,
        user_id: str,
        organization_id: Optional[str] = None,
    ) -> set[str]:
        stmt = select(DocumentModel.id).where(
            DocumentModel.status == DocumentStatus.READY,
            _visible_to(user_id, organization_id),
        )
        with self._session_factory() as session:
            return {str(doc_id) for doc_id in session.scalars(stmt)}

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------
    def delete_chunks(self, document_id: str) -> int:
        with self._session_factory.begin() as session:
            result = session.execute(
                delete(DocumentChunkModel).where(DocumentChunkModel.document_id == document_id)
            )
            return result.rowcount

    def insert_chunks(self, document_id: str, chunks: Sequence[Chunk]) -> list[str]:
        if not chunks:
            return []

        rows = [
            {
                "id": str(uuid.uuid4()),
                "document_id": document_id,
                "chunk_index": chunk.index,
                "content": chunk.content,
                "token_count": chunk.token_count,
                "chunk_metadata": dict(chunk.metadata),
            }
            for chunk in chunks
        ]
        with self._session_factory.begin() as session:
            session.execute(insert(DocumentChunkModel), rows)
        return [row["id"] for row in rows]

    def set_embeddings(
        self,
        document_id: str,
        embeddings: Mapping[int, NDArray[np.float32]],
    ) -> int:
        if not embeddings:
            return 0

        table = DocumentChunkModel.__table__
        stmt = (
            update(table)
            .where(
                table.c.document_id == bindparam("b_document_id"),
                table.c.chunk_index == bindparam("b_chunk_index"),
            )
            .values(embedding=bindparam("b_embedding", type_=Vector(self._dimension)))
        )
        params = [
            {
                "b_document_id": document_id,
                "b_chunk_index": index,
                "b_embedding": np.asarray(vector, dtype=np.float32),
            }
            for index, vector in embeddings.items()
        ]
        with self.engine.begin() as connection:
            connection.execute(stmt, params)
        return len(params)

    def get_chunks(self, document_id: str) -> list[StoredChunk]:
        stmt = (
            select(DocumentChunkModel)
            .where(DocumentChunkModel.document_id == document_id)
            .order_by(DocumentChunkModel.chunk_index)
        )
        with self._session_factory() as session:
            return [row.to_stored_chunk() for row in session.scalars(stmt)]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def similarity_search(
        self,
        embedding: NDArray[np.float32],
        document_ids: Collection[str],
        limit: int,
    ) -> list[ScoredChunk]:
        if not document_ids:
            return []

        distance = DocumentChunkModel.embedding.cosine_distance(embedding)
        stmt = (
            self._scored_select((1 - distance).label("similarity"))
            .where(
                DocumentChunkModel.document_id.in_(list(document_ids)),
                DocumentChunkModel.embedding.is_not(None),
            )
            .order_by(distance)
            .limit(limit)
        )
        return self._fetch_scored(stmt)

    def keyword_search(
        self,
        query: KeywordQuery,
        document_ids: Collection[str],
        limit: int,
    ) -> list[ScoredChunk]:
        if not query or not document_ids:
            return []

        tsv, tsq = self._text_search(query)
        rank = func.ts_rank(tsv, tsq)
        stmt = (
            self._scored_select(rank.label("similarity"), rank.label("keyword_rank"))
            .where(
                DocumentChunkModel.document_id.in_(list(document_ids)),
                tsv.op("@@")(tsq),
            )
            .order_by(rank.desc())
            .limit(limit)
        )
        return self._fetch_scored(stmt)

    def hybrid_search(
        self,
        embedding: NDArray[np.float32],
        query: KeywordQuery,
        document_ids: Collection[str],
        limit: int,
    ) -> list[ScoredChunk]:
        if not query:
            return self.similarity_search(embedding, document_ids, limit)
        if not document_ids:
            return []

        tsv, tsq = self._text_search(query)
        keyword_hit = tsv.op("@@")(tsq)
        rank = func.ts_rank(tsv, tsq)
        vector_similarity = func.coalesce(
            1 - DocumentChunkModel.embedding.cosine_distance(embedding), 0.0
        )
        score = case(
            (
                keyword_hit,
                func.greatest(vector_similarity, HYBRID_KEYWORD_FLOOR)
                + HYBRID_KEYWORD_WEIGHT * rank,
            ),
            else_=vector_similarity,
        )
        stmt = (
            self._scored_select(
                score.label("similarity"),
                case((keyword_hit, rank), else_=None).label("keyword_rank"),
            )
            .where(
                DocumentChunkModel.document_id.in_(list(document_ids)),
                or_(DocumentChunkModel.embedding.is_not(None), keyword_hit),
            )
            .order_by(score.desc())
            .limit(limit)
        )
        return self._fetch_scored(stmt)

    def name_match(
        self,
        query: KeywordQuery,
        document_ids: Collection[str],
        limit: int = 3,
    ) -> list[tuple[Document, StoredChunk]]:
        if not query or not document_ids:
            return []

        conditions = [DocumentModel.name.ilike(f"%{term}%") for term in query.terms]
        conditions.append(DocumentModel.name.ilike(query.name_pattern))

        documents_stmt = (
            select(DocumentModel)
            .where(DocumentModel.id.in_(list(document_ids)), or_(*conditions))
            .order_by(DocumentModel.created_at.desc())
        )

        matches: list[tuple[Document, StoredChunk]] = []
        with self._session_factory() as session:
            for document in session.scalars(documents_stmt):
                first_chunk = session.scalars(
                    select(DocumentChunkModel)
                    .where(DocumentChunkModel.document_id == document.id)
                    .order_by(DocumentChunkModel.chunk_index)
                    .limit(1)
                ).first()
                if first_chunk is None:
                    continue

                matches.append((document.to_document(), first_chunk.to_stored_chunk()))
                if len(matches) >= limit:
                    break

        return matches

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _text_search(self, query: KeywordQuery):
        tsv = content_tsvector(self.text_search_config)
        tsq = func.to_tsquery(ts_config(self.text_search_config), query.ts_query)
        return tsv, tsq

    @staticmethod
    def _scored_select(similarity, keyword_rank=None):
        columns = [
            DocumentChunkModel.id.label("id"),
            DocumentChunkModel.document_id.label("document_id"),
            DocumentModel.name.label("document_name"),
            DocumentChunkModel.content,
            DocumentChunkModel.chunk_index,
            DocumentChunkModel.chunk_metadata.label("chunk_metadata"),
            similarity,
        ]
        if keyword_rank is not None:
            columns.append(keyword_rank)
        return select(*columns).join(
            DocumentModel, DocumentModel.id == DocumentChunkModel.document_id
        )

    def _fetch_scored(self, stmt) -> list[ScoredChunk]:
        with self._session_factory() as session:
            rows = session.execute(stmt).mappings().all()

        return [
            ScoredChunk(
                chunk_id=str(row["id"]),
                document_id=str(row["document_id"]),
                document_name=row["document_name"],
                content=row["content"],
                chunk_index=row["chunk_index"],
                similarity=float(row["similarity"]),
                metadata=dict(row["chunk_metadata"] or {}),
                keyword_rank=(
                    float(row["keyword_rank"])
                    if row.get("keyword_rank") is not None
                    else None
                ),
            )
            for row in rows
        ]


def _visible_to(user_id: str, organization_id: Optional[str]):
    """Owner's documents, plus documents shared with the caller's organization."""
    if organization_id is None:
        return DocumentModel.user_id == user_id
    return or_(
        DocumentModel.user_id == user_id,
        and_(
            DocumentModel.shared.is_(True),
            DocumentModel.organization_id == organization_id,
        ),
    )


def _is_uuid(value: str) -> bool:
    """Document IDs are UUIDs; anything else cannot exist in the table."""
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def _document_columns(fields: dict[str, Any]) -> dict[str, Any]:
    return {_DOCUMENT_COLUMNS.get(key, key): value for key, value in fields.items()}
