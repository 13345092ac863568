"""
Document retrieval components.

Components:
    - chunker: Split documents into positioned, overlapping chunks
    - embeddings: Generate vector embeddings via an OpenAI-compatible API
    - keywords: Search-term extraction and full-text query building
    - hybrid: Name + keyword + vector retrieval (import from kbsearch.retrieval.hybrid)
    - context: Token-budgeted context assembly
"""

from kbsearch.retrieval.chunker import chunk_document, chunk_markdown, chunk_text
from kbsearch.retrieval.context import format_for_context
from kbsearch.retrieval.embeddings import OpenAIEmbedder
from kbsearch.retrieval.keywords import KeywordQuery, extract_search_terms

__all__ = [
    "chunk_document",
    "chunk_markdown",
    "chunk_text",
    "extract_search_terms",
    "format_for_context",
    "KeywordQuery",
    "OpenAIEmbedder",
]
