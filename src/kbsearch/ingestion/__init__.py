"""
Document ingestion.

Components:
    - extraction: Text extraction from uploaded binaries
    - storage: Blob storage for uploaded binaries
    - pipeline: Extract -> chunk -> embed -> persist state machine
"""

from kbsearch.ingestion.extraction import (
    DelegatingExtractor,
    PlainTextExtractor,
    default_extractor,
    is_supported_mime_type,
    parse_pdf,
)
from kbsearch.ingestion.pipeline import IngestionPipeline
from kbsearch.ingestion.storage import (
    InMemoryBlobStorage,
    LocalBlobStorage,
    generate_storage_key,
)

__all__ = [
    "DelegatingExtractor",
    "InMemoryBlobStorage",
    "IngestionPipeline",
    "LocalBlobStorage",
    "PlainTextExtractor",
    "default_extractor",
    "generate_storage_key",
    "is_supported_mime_type",
    "parse_pdf",
]
