"""
Document and chunk persistence.

The Postgres implementation lives in ``kbsearch.store.postgres`` and is
imported on demand so that the in-memory store works without a database.
"""

from kbsearch.store.base import DocumentStore, hybrid_score
from kbsearch.store.memory import InMemoryStore

__all__ = [
    "DocumentStore",
    "InMemoryStore",
    "hybrid_score",
]
