"""
kbsearch: Document knowledge base with hybrid retrieval

Ingests uploaded documents (extract -> chunk -> embed -> persist) and
answers queries by combining document-name matching, Postgres full-text
search and pgvector similarity, assembling the hits into a token-budgeted
context section for an LLM prompt.

Key Components:
    - retrieval: Chunking, embeddings, hybrid retrieval and context assembly
    - store: Document and chunk persistence (in-memory or PostgreSQL + pgvector)
    - ingestion: Text extraction, blob storage and the ingestion pipeline
    - api: FastAPI REST endpoints
    - tracing: Arize Phoenix observability integration

Example:
    >>> from kbsearch.retrieval.resources import get_pipeline, get_retriever
    >>> get_pipeline().upload(data, "pricing.md", "text/markdown", user_id="u1")
    >>> results = get_retriever().search("pricing tiers", user_id="u1")
"""

__version__ = "0.1.0"

from kbsearch.config import settings

__all__ = [
    "__version__",
    "settings",
]
