"""
Singleton resource management for the store, embedder and services.

Provides cached instances of resources that should only be created once
per application lifecycle. Uses the @lru_cache pattern (same as config.py
settings singleton) so the store backend is resolved once per process,
never per call.

Key resources:
    - DocumentStore (PostgresStore when DATABASE_URL is set, else InMemoryStore)
    - OpenAIEmbedder (None when no API key is configured)
    - HybridRetriever and IngestionPipeline built on the two above

Usage:
    # In API handlers or CLI commands
    retriever = get_retriever()

    # In API startup (explicit initialization)
    status = initialize_resources()

    # In tests (reset cache)
    clear_resource_cache()
"""

import logging
from functools import lru_cache
from typing import TYPE_CHECKING, Optional

from kbsearch.config import settings

if TYPE_CHECKING:
    from kbsearch.ingestion.pipeline import IngestionPipeline
    from kbsearch.retrieval.embeddings import OpenAIEmbedder
    from kbsearch.retrieval.hybrid import HybridRetriever
    from kbsearch.store.base import DocumentStore

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_store() -> "DocumentStore":
    """
    Get or create the global document store.

    Returns:
        PostgresStore if DATABASE_URL is configured, otherwise an InMemoryStore
        (data is lost when the process exits)
    """
    if settings.database_url:
        from kbsearch.store.postgres import PostgresStore

        logger.info("Using PostgreSQL document store")
        return PostgresStore(settings.database_url)

    from kbsearch.store.memory import InMemoryStore

    logger.warning("DATABASE_URL not set; using in-memory document store")
    return InMemoryStore()


@lru_cache(maxsize=1)
def get_embedder() -> Optional["OpenAIEmbedder"]:
    """
    Get or create the global embedder.

    Returns:
        OpenAIEmbedder, or None when no API key is configured (documents are
        then stored without embeddings and search uses keywords only)
    """
    if not settings.openai_api_key_value:
        logger.warning("OPENAI_API_KEY not set; semantic search disabled")
        return None

    from kbsearch.retrieval.embeddings import OpenAIEmbedder

    logger.info(f"Initializing embedder for model: {settings.embedding_model}")
    return OpenAIEmbedder()


@lru_cache(maxsize=1)
def get_retriever() -> "HybridRetriever":
    """Get or create the global hybrid retriever."""
    from kbsearch.retrieval.hybrid import HybridRetriever

    return HybridRetriever(get_store(), get_embedder())


@lru_cache(maxsize=1)
def get_pipeline() -> "IngestionPipeline":
    """Get or create the global ingestion pipeline (local filesystem blobs)."""
    from kbsearch.ingestion.pipeline import IngestionPipeline
    from kbsearch.ingestion.storage import LocalBlobStorage

    return IngestionPipeline(
        store=get_store(),
        storage=LocalBlobStorage(settings.storage_dir),
        embedder=get_embedder(),
    )


def initialize_resources() -> dict[str, bool]:
    """
    Explicitly initialize all resources for eager loading.

    Called at API server startup. For CLI, resources lazy-load instead.

    Returns:
        dict: Status of each resource
            - "store": True if the store was created
            - "persistent": True if the store is backed by PostgreSQL
            - "embedder": True if an embedder is configured

    Raises:
        RuntimeError: If the store fails to initialize
    """
    status = {}

    try:
        store = get_store()
        status["store"] = True
        status["persistent"] = type(store).__name__ == "PostgresStore"
    except Exception as e:
        status["store"] = False
        raise RuntimeError(f"Failed to initialize document store: {e}") from e

    status["embedder"] = get_embedder() is not None
    return status


def clear_resource_cache() -> None:
    """
    Clear all cached resources.

    Used in tests to reset state between test cases.
    In production, resources persist for application lifetime.
    """
    get_store.cache_clear()
    get_embedder.cache_clear()
    get_retriever.cache_clear()
    get_pipeline.cache_clear()
    logger.debug("Resource cache cleared")
