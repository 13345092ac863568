"""
Exception hierarchy for the knowledge-base pipeline.

Fatal ingestion errors (extraction, empty content, zero chunks) move a
document to ``failed``; embedding errors only degrade it to keyword search.
"""


class KnowledgeBaseError(Exception):
    """Base class for all knowledge-base errors."""


class IngestionError(KnowledgeBaseError):
    """Raised when a document cannot be ingested."""


class ExtractionError(IngestionError):
    """Raised when text extraction fails or the mime type is unsupported."""


class EmptyContentError(IngestionError):
    """Raised when extraction yields no text."""

    def __init__(self, message: str = "No text content extracted from document") -> None:
        super().__init__(message)


class NoChunksError(IngestionError):
    """Raised when chunking yields no chunks."""

    def __init__(self, message: str = "Document produced no chunks") -> None:
        super().__init__(message)


class EmbeddingError(KnowledgeBaseError):
    """Raised when the embedding service returns an unusable response."""


class DocumentNotFoundError(KnowledgeBaseError):
    """Raised when a document ID does not exist in the store."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class UnsupportedFileError(KnowledgeBaseError):
    """Raised when an upload is too large or of an unsupported type."""
