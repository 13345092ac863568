"""
Search-term extraction and full-text query building.

Queries are reduced to their significant terms (stop words and tokens of
two characters or fewer removed) which drive both the document-name pass
and the prefix-matching full-text query.
"""

import re
from dataclasses import dataclass

MIN_TERM_LENGTH = 3

STOP_WORDS = frozenset(
    {
        "a", "about", "above", "after", "again", "all", "also", "am", "an", "and",
        "any", "are", "as", "at", "be", "because", "been", "before", "being",
        "below", "between", "both", "but", "by", "can", "could", "did", "do",
        "does", "doing", "document", "documents", "down", "during", "each",
        "explain", "file", "files", "find", "for", "from", "further", "get",
        "give", "had", "has", "have", "having", "he", "her", "here", "hers",
        "him", "his", "how", "i", "if", "in", "into", "is", "it", "its", "just",
        "know", "let", "like", "list", "me", "more", "most", "my", "no", "nor",
        "not", "of", "off", "on", "once", "only", "or", "other", "our", "ours",
        "out", "over", "own", "please", "same", "say", "says", "she", "should",
        "show", "so", "some", "such", "summarize", "summary", "tell", "than",
        "that", "the", "their", "theirs", "them", "then", "there", "these",
        "they", "this", "those", "through", "to", "too", "under", "until", "up",
        "very", "was", "we", "were", "what", "when", "where", "which", "while",
        "who", "whom", "why", "will", "with", "would", "you", "your", "yours",
    }
)

_TOKEN = re.compile(r"[a-z0-9]+")


def extract_search_terms(query: str) -> list[str]:
    """
    Extract significant search terms from a natural language query.

    Args:
        query: User query

    Returns:
        Lower-cased terms in query order, without stop words, short tokens
        or duplicates

    Example:
        >>> extract_search_terms("What does the FSDS document say about pricing?")
        ['fsds', 'pricing']
    """
    terms: list[str] = []
    for token in _TOKEN.findall(query.lower()):
        if len(token) < MIN_TERM_LENGTH or token in STOP_WORDS:
            continue
        if token not in terms:
            terms.append(token)
    return terms


@dataclass(frozen=True)
class KeywordQuery:
    """A full-text query over a list of prefix-matched terms."""

    terms: tuple[str, ...]

    @classmethod
    def from_query(cls, query: str) -> "KeywordQuery":
        return cls(tuple(extract_search_terms(query)))

    def __bool__(self) -> bool:
        return bool(self.terms)

    @property
    def ts_query(self) -> str:
        """Postgres tsquery text, e.g. ``'pricing':* | 'fsds':*``."""
        return " | ".join(f"'{term}':*" for term in self.terms)

    @property
    def name_pattern(self) -> str:
        """SQL LIKE pattern matching all terms in order, e.g. ``%fsds%pricing%``."""
        return "%" + "%".join(self.terms) + "%"

    @property
    def phrase(self) -> str:
        return " ".join(self.terms)
