"""
SQLAlchemy schema and connection management for the Postgres store.

Tables:
    documents: One row per uploaded document, with its lifecycle state
    document_chunks: Chunk text, offsets and an optional pgvector embedding

Chunks reference their document with ON DELETE CASCADE, so deleting a
document row removes its chunks in the same statement.
"""

import logging
import re
import uuid
from datetime import datetime
from typing import Any, Optional

import numpy as np
from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    literal_column,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.sql.elements import ColumnElement

from kbsearch.config import settings
from kbsearch.models import Document, DocumentStatus, StoredChunk, utcnow

logger = logging.getLogger(__name__)

_TS_CONFIG_NAME = re.compile(r"^[a-z_]+$")


class Base(DeclarativeBase):
    """Declarative base for the knowledge-base tables."""

    pass


class DocumentModel(Base):
    """ORM model for the ``documents`` table."""

    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    organization_id: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    shared: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    original_name: Mapped[Optional[str]] = mapped_column(String(512))
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    storage_key: Mapped[Optional[str]] = mapped_column(String(1024))
    status: Mapped[DocumentStatus] = mapped_column(
        SAEnum(
            DocumentStatus,
            name="document_status",
            native_enum=False,
            length=20,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=DocumentStatus.PENDING,
        index=True,
    )
    chunk_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    doc_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    def to_document(self) -> Document:
        return Document(
            id=str(self.id),
            user_id=self.user_id,
            organization_id=self.organization_id,
            shared=self.shared,
            name=self.name,
            original_name=self.original_name,
            mime_type=self.mime_type,
            size=self.size,
            storage_key=self.storage_key,
            status=DocumentStatus(self.status),
            chunk_count=self.chunk_count,
            error_message=self.error_message,
            metadata=dict(self.doc_metadata or {}),
            created_at=self.created_at,
            updated_at=self.updated_at,
            processed_at=self.processed_at,
        )


class DocumentChunkModel(Base):
    """ORM model for the ``document_chunks`` table."""

    __tablename__ = "document_chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_document_chunks_position"),
    )

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    document_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    token_count: Mapped[Optional[int]] = mapped_column(Integer)
    embedding: Mapped[Optional[Any]] = mapped_column(
        Vector(settings.embedding_dimension), nullable=True
    )
    chunk_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def to_stored_chunk(self) -> StoredChunk:
        return StoredChunk(
            id=str(self.id),
            document_id=str(self.document_id),
            chunk_index=self.chunk_index,
            content=self.content,
            token_count=self.token_count,
            embedding=(
                np.asarray(self.embedding, dtype=np.float32)
                if self.embedding is not None
                else None
            ),
            metadata=dict(self.chunk_metadata or {}),
        )


def ts_config(name: Optional[str] = None) -> ColumnElement:
    """
    Text search configuration as a ``regconfig`` SQL literal.

    Rendered inline (not bound) so that query expressions match the
    full-text index expression.

    Raises:
        ValueError: If the configuration name is not a plain identifier
    """
    name = name or settings.text_search_config
    if not _TS_CONFIG_NAME.match(name):
        raise ValueError(f"Invalid text search configuration: {name!r}")
    return literal_column(f"'{name}'::regconfig")


def content_tsvector(name: Optional[str] = None) -> ColumnElement:
    """``to_tsvector(config, content)`` over the chunk table."""
    return func.to_tsvector(ts_config(name), DocumentChunkModel.content)


Index(
    "ix_document_chunks_content_fts",
    content_tsvector(),
    postgresql_using="gin",
)

Index(
    "ix_document_chunks_embedding_hnsw",
    DocumentChunkModel.embedding,
    postgresql_using="hnsw",
    postgresql_with={"m": 16, "ef_construction": 64},
    postgresql_ops={"embedding": "vector_cosine_ops"},
)


def sqlalchemy_url(database_url: str) -> str:
    """Select the psycopg 3 driver for plain ``postgresql://`` URLs."""
    for prefix in ("postgresql://", "postgres://"):
        if database_url.startswith(prefix):
            return "postgresql+psycopg://" + database_url[len(prefix):]
    return database_url


def get_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """
    Create a SQLAlchemy engine for the configured database.

    Args:
        database_url: Connection string (default from settings)
        echo: Echo SQL statements (default from settings)

    Returns:
        Engine with pre-ping enabled

    Raises:
        ValueError: If no database URL is configured
    """
    url = database_url or settings.database_url
    if not url:
        raise ValueError("DATABASE_URL is not configured")

    return create_engine(
        sqlalchemy_url(url),
        echo=settings.database_echo if echo is None else echo,
        pool_pre_ping=True,
    )


def get_session_factory(engine: Engine) -> sessionmaker:
    """Session factory with explicit transactions and no expiry on commit."""
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


def init_db(engine: Engine) -> None:
    """
    Create the pgvector extension and all tables and indexes.

    Safe to run repeatedly; existing objects are left untouched.
    """
    with engine.begin() as connection:
        connection.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        Base.metadata.create_all(connection)
    logger.info("Database schema initialized")
