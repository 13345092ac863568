"""
Hybrid retrieval: document-name matching + keyword + vector similarity.

A search runs two passes over the caller's accessible documents:

    1. Name pass: documents whose name contains the query terms contribute
       their first chunk, ranked by how well the name matches.
    2. Content pass: chunks ranked by vector similarity, boosted when they
       also match the full-text query.

Name hits come first; the merged list is deduplicated by chunk ID and
truncated to the requested limit.
"""

import logging
from typing import Optional

from kbsearch.config import SearchOptions, normalize_search_options
from kbsearch.models import MatchType, ScoredChunk, SearchResult
from kbsearch.retrieval.embeddings import Embedder
from kbsearch.retrieval.keywords import KeywordQuery
from kbsearch.store.base import HYBRID_KEYWORD_FLOOR, HYBRID_KEYWORD_WEIGHT, DocumentStore
from kbsearch.tracing import add_span_attributes, record_exception, traced

logger = logging.getLogger(__name__)

NAME_MATCH_LIMIT = 3
NAME_PHRASE_SIMILARITY = 0.95
NAME_TERM_SIMILARITY = 0.85
NAME_PATTERN_SIMILARITY = 0.7


class HybridRetriever:
    """
    Search a knowledge base on behalf of a caller.

    Without an embedder, the content pass falls back to full-text keyword
    search.

    Example:
        >>> retriever = HybridRetriever(store, embedder)
        >>> results = retriever.search("FSDS pricing", user_id="u1", organization_id="o1")
        >>> [r.document_name for r in results]
        ['FSDS.pdf', 'Pricing.md']
    """

    def __init__(self, store: DocumentStore, embedder: Optional[Embedder] = None) -> None:
        self.store = store
        self.embedder = embedder

    @traced("hybrid_search")
    def search(
        self,
        query: str,
        user_id: str,
        organization_id: Optional[str] = None,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> list[SearchResult]:
        """
        Retrieve the most relevant chunks for a query.

        Args:
            query: Natural language query
            user_id: Caller's user ID
            organization_id: Caller's organization ID, if any
            limit: Maximum number of results (default 5, capped at 20)
            threshold: Minimum similarity for content matches (clamped to [0.3, 0.95])

        Returns:
            At most ``limit`` results; an empty list when nothing is accessible
            or when the search fails
        """
        options = normalize_search_options(limit=limit, threshold=threshold)
        add_span_attributes(
            query=query,
            limit=options.limit,
            threshold=options.threshold,
        )

        try:
            document_ids = self.store.accessible_document_ids(user_id, organization_id)
            if not document_ids:
                logger.debug(f"No accessible documents for user {user_id}")
                return []

            keywords = KeywordQuery.from_query(query)

            name_results = self._name_pass(keywords, document_ids)
            content_results = self._content_pass(query, keywords, document_ids, options)
            results = merge_results(name_results, content_results, options.limit)

        except Exception as e:
            logger.exception(f"Search failed for query {query!r}: {e}")
            record_exception(e)
            return []

        add_span_attributes(
            candidate_documents=len(document_ids),
            name_matches=len(name_results),
            results_returned=len(results),
        )
        return results

    def _name_pass(
        self,
        keywords: KeywordQuery,
        document_ids: set[str],
    ) -> list[SearchResult]:
        if not keywords:
            return []

        results = []
        for document, chunk in self.store.name_match(keywords, document_ids, NAME_MATCH_LIMIT):
            results.append(
                SearchResult(
                    chunk_id=chunk.id,
                    document_id=document.id,
                    document_name=document.name,
                    content=chunk.content,
                    similarity=name_similarity(document.name, keywords),
                    chunk_index=chunk.chunk_index,
                    metadata=dict(chunk.metadata),
                    match_type=MatchType.KEYWORD,
                    name_match=True,
                )
            )
        results.sort(key=lambda result: result.similarity, reverse=True)
        return results

    def _content_pass(
        self,
        query: str,
        keywords: KeywordQuery,
        document_ids: set[str],
        options: SearchOptions,
    ) -> list[SearchResult]:
        fetch_limit = options.limit * 2

        if self.embedder is None:
            if not keywords:
                return []
            rows = self.store.keyword_search(keywords, document_ids, fetch_limit)
            return [
                _to_result(
                    row,
                    MatchType.KEYWORD,
                    similarity=HYBRID_KEYWORD_FLOOR + HYBRID_KEYWORD_WEIGHT * (row.keyword_rank or 0.0),
                )
                for row in rows
            ]

        embedding = self.embedder.embed_one(query)
        if keywords:
            rows = self.store.hybrid_search(embedding, keywords, document_ids, fetch_limit)
        else:
            rows = self.store.similarity_search(embedding, document_ids, fetch_limit)

        return [
            _to_result(
                row,
                MatchType.HYBRID if row.keyword_rank is not None else MatchType.SEMANTIC,
            )
            for row in rows
            if row.similarity >= options.threshold
        ]


def name_similarity(document_name: str, keywords: KeywordQuery) -> float:
    """
    Score a document-name hit.

    0.95 when the space-joined terms appear in the name, 0.85 when any single
    term does, 0.7 otherwise (all terms present in order but apart).
    """
    name = document_name.lower()
    if keywords.phrase and keywords.phrase in name:
        return NAME_PHRASE_SIMILARITY
    if any(term in name for term in keywords.terms):
        return NAME_TERM_SIMILARITY
    return NAME_PATTERN_SIMILARITY


def merge_results(
    name_results: list[SearchResult],
    content_results: list[SearchResult],
    limit: int,
) -> list[SearchResult]:
    """
    Concatenate name hits and content hits, dropping repeated chunks.

    The first occurrence of a chunk wins, so a name hit shadows the same
    chunk found by the content pass.
    """
    merged: list[SearchResult] = []
    seen: set[str] = set()

    for result in [*name_results, *content_results]:
        if result.chunk_id in seen:
            continue
        seen.add(result.chunk_id)
        merged.append(result)
        if len(merged) >= limit:
            break

    return merged


def _to_result(
    row: ScoredChunk,
    match_type: MatchType,
    similarity: Optional[float] = None,
) -> SearchResult:
    return SearchResult(
        chunk_id=row.chunk_id,
        document_id=row.document_id,
        document_name=row.document_name,
        content=row.content,
        similarity=row.similarity if similarity is None else similarity,
        chunk_index=row.chunk_index,
        metadata=dict(row.metadata),
        match_type=match_type,
    )
