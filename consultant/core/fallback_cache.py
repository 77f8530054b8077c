"""Per-user cache of keyword-fallback candidates."""

import time
from collections.abc import Awaitable, Callable

from consultant.core.logging import get_logger
from consultant.core.schemas_chat import ContextSource

logger = get_logger(__name__)

CandidateLoader = Callable[[str], Awaitable[list[ContextSource]]]


class CandidateCache:
    """
    TTL cache of recent rows used when the embedding service is down.

    Entries are immutable tuples replaced wholesale on refresh; a request
    never sees another request's partial write.
    """

    def __init__(
        self,
        loader: CandidateLoader,
        ttl_seconds: float = 300.0,
        max_users: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = ttl_seconds
        self._max_users = max_users
        self._clock = clock
        self._entries: dict[str, tuple[float, tuple[ContextSource, ...]]] = {}

    async def get(self, user_id: str) -> list[ContextSource]:
        """Cached candidates for the user, loading them when missing or stale."""
        now = self._clock()
        entry = self._entries.get(user_id)
        if entry is not None and entry[0] > now:
            return list(entry[1])

        candidates = tuple(await self._loader(user_id))
        if len(self._entries) >= self._max_users:
            self._evict(now)
        self._entries[user_id] = (now + self._ttl, candidates)
        logger.debug(f"Cached {len(candidates)} fallback candidates")
        return list(candidates)

    def _evict(self, now: float) -> None:
        expired = [uid for uid, (expires, _) in self._entries.items() if expires <= now]
        for uid in expired:
            del self._entries[uid]
        if len(self._entries) >= self._max_users:
            oldest = min(self._entries, key=lambda uid: self._entries[uid][0])
            del self._entries[oldest]
