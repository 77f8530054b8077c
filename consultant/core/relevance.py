"""Keyword relevance scoring.

Used for local suggestion ranking and as the only ranking signal when the
embedding service is unreachable.
"""

from collections.abc import Iterable

from consultant.core.schemas_chat import ContextSource

MIN_QUERY_WORD_LENGTH = 3


def query_words(query: str) -> list[str]:
    """Lowercased whitespace-separated words longer than two characters."""
    return [w for w in query.lower().split() if len(w) >= MIN_QUERY_WORD_LENGTH]


def score(query: str, text: str) -> float:
    """
    Score how relevant ``text`` is to ``query``.

    Counts query words (repeats included) that occur as substrings of the
    text, case-insensitively, divided by the number of query words.

    Args:
        query: Free-text query
        text: Candidate text

    Returns:
        Score in [0, 1]; 0 when the query has no qualifying words
    """
    words = query_words(query)
    if not words:
        return 0.0

    haystack = text.lower()
    matches = sum(1 for word in words if word in haystack)
    return matches / len(words)


def rank_sources(
    query: str,
    candidates: Iterable[ContextSource],
    min_relevance: float = 0.0,
    limit: int | None = None,
) -> list[ContextSource]:
    """Score candidates against the query and return them best-first.

    Candidates scoring below ``min_relevance`` (or zero) are dropped. Equal
    scores keep candidate order.
    """
    scored = []
    for candidate in candidates:
        value = score(query, f"{candidate.title} {candidate.content}")
        if value <= 0.0 or value < min_relevance:
            continue
        scored.append(candidate.with_relevance(value))

    scored.sort(key=lambda s: s.relevance, reverse=True)
    return scored[:limit] if limit is not None else scored
