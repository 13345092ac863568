"""
Context assembly: turn search results into a token-budgeted prompt section.
"""

import math

from kbsearch.models import MatchType, SearchResult
from kbsearch.retrieval.chunker import estimate_tokens

CONTEXT_HEADER = "## Relevant Information from Documents\n\n"
EMPTY_CONTEXT = CONTEXT_HEADER + "No relevant documents found in your knowledge base."
HEADER_TOKEN_BUFFER = 50


def format_for_context(results: list[SearchResult], max_tokens: int = 3000) -> str:
    """
    Render results as markdown sections, in order, within a token budget.

    The running total starts at 50 tokens for the header; the first section
    that would push it above ``max_tokens`` ends the context (later, smaller
    sections are not tried).

    Args:
        results: Ranked search results
        max_tokens: Token budget for the whole string

    Returns:
        Context string; a fixed "no relevant documents" string when
        ``results`` is empty
    """
    if not results:
        return EMPTY_CONTEXT

    context = CONTEXT_HEADER
    token_count = HEADER_TOKEN_BUFFER

    for result in results:
        section = (
            f'### From "{result.document_name}" '
            f"(relevance: {relevance_percent(result.similarity)}%){_annotation(result)}\n"
            f"{result.content}\n\n"
        )
        section_tokens = estimate_tokens(section)
        if token_count + section_tokens > max_tokens:
            break

        context += section
        token_count += section_tokens

    return context


def relevance_percent(similarity: float) -> int:
    """Similarity as a whole percentage, rounding halves up."""
    return math.floor(similarity * 100 + 0.5)


def _annotation(result: SearchResult) -> str:
    if result.name_match:
        return " [name match]"
    if result.match_type == MatchType.HYBRID:
        return " [keyword+semantic]"
    if result.match_type == MatchType.KEYWORD:
        return " [keyword match]"
    return ""
