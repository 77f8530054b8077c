"""Retrieval aggregation: one embedding, then parallel ranked search per source kind.

Pipeline: embed → fan-out ranked search (one call per kind) → merge → stable
sort by relevance → global top-K.

Graceful degradation: when the embedding call fails (or every kind's search
fails) the keyword scorer ranks a cached candidate set instead. A single
kind's failure only empties that kind.

Usage:
    from consultant.core.retrieval import RetrievalAggregator

    aggregator = RetrievalAggregator(embed=..., search=..., candidates=...)
    outcome = await aggregator.retrieve(
        RetrievalRequest(query_text="what should I focus on today", user_id=user_id)
    )
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable

from consultant.core.errors import RetrievalDegraded, SourceKindFailure
from consultant.core.fallback_cache import CandidateCache
from consultant.core.logging import get_logger, log_with_context
from consultant.core.relevance import rank_sources
from consultant.core.schemas_chat import (
    ContextSource,
    RetrievalOutcome,
    RetrievalRequest,
    SourceKind,
)

logger = get_logger(__name__)

DEFAULT_TOP_K = 8

EmbedFn = Callable[[str], Awaitable[list[float]]]
SearchFn = Callable[[SourceKind, list[float], float, int, str | None], Awaitable[list[ContextSource]]]


def merge_ranked(per_kind: Iterable[list[ContextSource]], top_k: int = DEFAULT_TOP_K) -> list[ContextSource]:
    """
    Merge per-kind lists into one list, best first, capped at ``top_k``.

    ``per_kind`` must be given in the fixed kind order. ``sorted`` is stable,
    so equal relevance keeps kind order, then each kind's own order.
    """
    merged = [source for sources in per_kind for source in sources]
    return sorted(merged, key=lambda s: s.relevance, reverse=True)[:top_k]


class RetrievalAggregator:
    """Turns one query into a bounded, ranked list of context sources."""

    def __init__(
        self,
        embed: EmbedFn,
        search: SearchFn,
        candidates: CandidateCache | None = None,
        top_k: int = DEFAULT_TOP_K,
        fallback_min_relevance: float = 0.2,
    ):
        self._embed = embed
        self._search = search
        self._candidates = candidates
        self.top_k = top_k
        self.fallback_min_relevance = fallback_min_relevance

    async def retrieve(self, request: RetrievalRequest) -> RetrievalOutcome:
        """
        Retrieve ranked sources for the request.

        Never raises for embedding or search failures; those set
        ``degraded`` or ``failed_kinds`` on the outcome instead.
        """
        kinds = request.ordered_kinds()
        if not kinds:
            return RetrievalOutcome()

        try:
            vector = await self._embed(request.query_text)
        except Exception as e:
            return await self._degraded(request, RetrievalDegraded(f"Embedding failed: {e}"))

        results = await asyncio.gather(
            *[
                self._search(kind, vector, request.match_threshold, request.count_for(kind), request.user_id)
                for kind in kinds
            ],
            return_exceptions=True,
        )

        per_kind: list[list[ContextSource]] = []
        failed: list[SourceKind] = []
        for kind, result in zip(kinds, results):
            if isinstance(result, Exception):
                failure = SourceKindFailure(kind, result)
                log_with_context(logger, logging.WARNING, str(failure), kind=kind.value)
                failed.append(kind)
                continue
            if isinstance(result, BaseException):
                raise result
            per_kind.append(result[: request.count_for(kind)])

        if len(failed) == len(kinds):
            return await self._degraded(request, RetrievalDegraded("All ranked searches failed"), failed)

        sources = merge_ranked(per_kind, self.top_k)
        logger.info(
            f"Retrieved {len(sources)} sources across {len(kinds)} kinds "
            f"({len(failed)} failed)"
        )
        return RetrievalOutcome(sources=sources, degraded=False, failed_kinds=failed)

    async def _degraded(
        self,
        request: RetrievalRequest,
        reason: RetrievalDegraded,
        failed: list[SourceKind] | None = None,
    ) -> RetrievalOutcome:
        """Rank locally cached candidates with the keyword scorer."""
        logger.warning(f"Retrieval degraded, using keyword fallback: {reason}")

        candidates: list[ContextSource] = []
        if self._candidates is not None and request.user_id:
            try:
                candidates = await self._candidates.get(request.user_id)
            except Exception as e:
                logger.warning(f"Fallback candidates unavailable: {e}")

        per_kind = []
        for kind in request.ordered_kinds():
            of_kind = [c for c in candidates if c.kind == kind]
            per_kind.append(
                rank_sources(
                    request.query_text,
                    of_kind,
                    min_relevance=self.fallback_min_relevance,
                    limit=request.count_for(kind),
                )
            )

        return RetrievalOutcome(
            sources=merge_ranked(per_kind, self.top_k),
            degraded=True,
            failed_kinds=failed or [],
        )
