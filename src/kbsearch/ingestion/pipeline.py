"""
Document ingestion pipeline: extract -> chunk -> embed -> persist.

Documents move through ``pending -> processing -> ready | failed``.
Per-document failures are recorded on the document and returned as a
ProcessingResult; they are not raised to the caller. An embedding outage
is not a failure: the document becomes ``ready`` without vectors and is
still reachable through keyword and name search.
"""

import logging
import uuid
from typing import Any, Optional

import numpy as np
from numpy.typing import NDArray

from kbsearch.config import settings
from kbsearch.exceptions import (
    DocumentNotFoundError,
    EmbeddingError,
    EmptyContentError,
    IngestionError,
    NoChunksError,
    UnsupportedFileError,
)
from kbsearch.ingestion.extraction import (
    Extractor,
    default_extractor,
    is_supported_mime_type,
    scanned_pdf_warning,
)
from kbsearch.ingestion.storage import BlobStorage, generate_storage_key
from kbsearch.models import (
    Chunk,
    Document,
    DocumentStatus,
    ExtractionResult,
    ProcessingResult,
    utcnow,
)
from kbsearch.retrieval.chunker import chunk_document, get_chunk_stats
from kbsearch.retrieval.embeddings import Embedder
from kbsearch.store.base import DocumentStore
from kbsearch.tracing import add_span_attributes, record_exception, traced

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """
    Ingest documents into a DocumentStore.

    Example:
        >>> pipeline = IngestionPipeline(store, InMemoryBlobStorage(), embedder=embedder)
        >>> result = pipeline.upload(b"# Pricing\\n...", "pricing.md", "text/markdown", user_id="u1")
        >>> result.success, result.chunk_count
        (True, 3)
    """

    def __init__(
        self,
        store: DocumentStore,
        storage: BlobStorage,
        extractor: Optional[Extractor] = None,
        embedder: Optional[Embedder] = None,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        min_chunk_size: Optional[int] = None,
        insert_batch_size: Optional[int] = None,
        max_file_size: Optional[int] = None,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            store: Document and chunk persistence
            storage: Blob storage holding uploaded binaries
            extractor: Text extractor (default: text formats and PDF)
            embedder: Embedding client; None stores chunks without vectors
            chunk_size: Target chunk size in tokens (default from settings)
            chunk_overlap: Chunk overlap in tokens (default from settings)
            min_chunk_size: Minimum chunk size in tokens (default from settings)
            insert_batch_size: Chunks per insert + backfill unit (default from settings)
            max_file_size: Upload size limit in bytes (default from settings)
        """
        self.store = store
        self.storage = storage
        self.extractor = extractor or default_extractor()
        self.embedder = embedder
        self.chunk_size = chunk_size or settings.chunk_size
        self.chunk_overlap = settings.chunk_overlap if chunk_overlap is None else chunk_overlap
        self.min_chunk_size = (
            settings.min_chunk_size if min_chunk_size is None else min_chunk_size
        )
        self.insert_batch_size = insert_batch_size or settings.insert_batch_size
        self.max_file_size = max_file_size or settings.max_file_size

    def upload(
        self,
        content: bytes,
        filename: str,
        mime_type: str,
        user_id: str,
        organization_id: Optional[str] = None,
        shared: bool = False,
    ) -> ProcessingResult:
        """
        Store an uploaded file, register it and process it.

        Args:
            content: File bytes
            filename: Original file name (used as the document name)
            mime_type: Declared mime type
            user_id: Uploading user
            organization_id: Organization of the uploader, if any
            shared: Make the document visible to the whole organization

        Returns:
            ProcessingResult of the immediate processing run

        Raises:
            UnsupportedFileError: If the file is too large or its type unsupported
        """
        if len(content) > self.max_file_size:
            raise UnsupportedFileError(
                f"File too large: {len(content)} bytes (max {self.max_file_size})"
            )
        if not (is_supported_mime_type(mime_type) and self.extractor.supports(mime_type)):
            raise UnsupportedFileError(f"Unsupported file type: {mime_type}")

        storage_key = generate_storage_key(
            user_id, filename, organization_id if shared else None
        )
        self.storage.put(storage_key, content, content_type=mime_type)

        document = self.store.create_document(
            id=str(uuid.uuid4()),
            user_id=user_id,
            organization_id=organization_id,
            shared=shared,
            name=filename,
            original_name=filename,
            mime_type=mime_type,
            size=len(content),
            storage_key=storage_key,
            status=DocumentStatus.PENDING,
        )
        logger.info(f"Uploaded {filename} as document {document.id} ({len(content)} bytes)")

        return self.process_document(document.id)

    @traced("process_document")
    def process_document(self, document_id: str) -> ProcessingResult:
        """
        Run extraction, chunking, embedding and persistence for a document.

        Args:
            document_id: Document to process

        Returns:
            ProcessingResult; ``success`` is False when the document ended
            up ``failed``

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        document = self.store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)

        add_span_attributes(document_id=document_id, mime_type=document.mime_type)
        self.store.update_document(document_id, status=DocumentStatus.PROCESSING)

        try:
            chunk_count = self._process(document)

        except Exception as e:
            error_message = str(e) or type(e).__name__
            if isinstance(e, IngestionError):
                logger.error(f"Failed to process document {document_id}: {error_message}")
            else:
                logger.exception(f"Failed to process document {document_id}: {error_message}")
            record_exception(e)

            self.store.update_document(
                document_id,
                status=DocumentStatus.FAILED,
                error_message=error_message,
            )
            return ProcessingResult(success=False, document_id=document_id, error=error_message)

        add_span_attributes(chunk_count=chunk_count)
        return ProcessingResult(success=True, document_id=document_id, chunk_count=chunk_count)

    def reprocess_document(self, document_id: str) -> ProcessingResult:
        """
        Reset a document to ``pending`` and process it again.

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        document = self.store.update_document(
            document_id,
            status=DocumentStatus.PENDING,
            error_message=None,
        )
        if document is None:
            raise DocumentNotFoundError(document_id)

        logger.info(f"Reprocessing document {document_id} ({document.name})")
        return self.process_document(document_id)

    def delete_document(self, document_id: str) -> None:
        """
        Delete a document's binary, chunks and record.

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        document = self.store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)

        if document.storage_key:
            self.storage.delete(document.storage_key)

        removed = self.store.delete_chunks(document_id)
        self.store.delete_document(document_id)
        logger.info(f"Deleted document {document_id} ({document.name}, {removed} chunks)")

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------
    def _process(self, document: Document) -> int:
        if not document.storage_key:
            raise IngestionError("Document has no storage key")

        content = self.storage.get(document.storage_key)
        extraction = self.extractor.extract(content, document.mime_type)

        text = extraction.text
        if not text or not text.strip():
            raise EmptyContentError()

        chunks = chunk_document(
            text,
            document.mime_type,
            chunk_size=self.chunk_size,
            overlap=self.chunk_overlap,
            min_chunk_size=self.min_chunk_size,
        )
        if not chunks:
            raise NoChunksError()

        stats = get_chunk_stats(chunks)
        logger.info(
            f"Processing {document.name}: {stats.total_chunks} chunks, "
            f"{stats.total_tokens} tokens"
        )

        embeddings = self._embed(document, chunks)
        self._persist(document.id, chunks, embeddings)

        self.store.update_document(
            document.id,
            status=DocumentStatus.READY,
            chunk_count=len(chunks),
            error_message=None,
            processed_at=utcnow(),
            metadata={
                **document.metadata,
                **self._ready_metadata(document, text, extraction, stats.total_tokens,
                                       stats.avg_tokens_per_chunk),
                "embedded": embeddings is not None,
            },
        )
        logger.info(f"Document {document.id} ready with {len(chunks)} chunks")
        return len(chunks)

    def _embed(
        self,
        document: Document,
        chunks: list[Chunk],
    ) -> Optional[NDArray[np.float32]]:
        """Embed all chunk texts; None when there is no embedder or it fails."""
        if self.embedder is None:
            logger.info(f"No embedder configured; storing {document.name} without embeddings")
            return None

        try:
            embeddings = self.embedder.embed_batch([chunk.content for chunk in chunks])
            if len(embeddings) != len(chunks):
                raise EmbeddingError(
                    f"Expected {len(chunks)} embeddings, got {len(embeddings)}"
                )
            return embeddings

        except Exception as e:
            logger.warning(
                f"Embedding failed for document {document.id}, "
                f"continuing without embeddings: {e}"
            )
            record_exception(e)
            return None

    def _persist(
        self,
        document_id: str,
        chunks: list[Chunk],
        embeddings: Optional[NDArray[np.float32]],
    ) -> None:
        """Replace the document's chunks in batches, backfilling embeddings per batch."""
        self.store.delete_chunks(document_id)

        for start in range(0, len(chunks), self.insert_batch_size):
            batch = chunks[start : start + self.insert_batch_size]
            self.store.insert_chunks(document_id, batch)

            if embeddings is not None:
                self.store.set_embeddings(
                    document_id,
                    {chunk.index: embeddings[start + offset] for offset, chunk in enumerate(batch)},
                )

    @staticmethod
    def _ready_metadata(
        document: Document,
        text: str,
        extraction: ExtractionResult,
        total_tokens: int,
        avg_chunk_size: int,
    ) -> dict[str, Any]:
        warnings = list(extraction.warnings)
        scanned = scanned_pdf_warning(document.mime_type, extraction.page_count, text)
        if scanned and scanned not in warnings:
            warnings.append(scanned)

        return {
            "totalTokens": total_tokens,
            "avgChunkSize": avg_chunk_size,
            "textLength": len(text),
            "pageCount": extraction.page_count,
            "extractionWarnings": warnings or None,
        }
