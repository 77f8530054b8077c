"""Simple in-memory rate limiter for the chat endpoint."""

import time
from collections import defaultdict
from typing import Any, Dict, Tuple

from fastapi import HTTPException

from consultant.core.config import get_settings
from consultant.core.logging import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Simple token bucket rate limiter.

    Tracks requests per key (e.g., user id) and enforces limits.
    Uses in-memory storage, so limits are per process.
    """

    def __init__(self, requests_per_minute: int = 10, burst_size: int = 15):
        """
        Initialize rate limiter.

        Args:
            requests_per_minute: Sustained rate limit
            burst_size: Maximum burst size
        """
        self.requests_per_minute = requests_per_minute
        self.burst_size = burst_size
        self.refill_rate = requests_per_minute / 60.0  # tokens per second

        # Storage: key -> (tokens, last_refill_time)
        self._buckets: Dict[str, Tuple[float, float]] = defaultdict(lambda: (burst_size, time.time()))

        # Track request counts for metrics
        self._request_counts: Dict[str, int] = defaultdict(int)

    def _refill_bucket(self, key: str) -> None:
        current_tokens, last_refill = self._buckets[key]
        now = time.time()

        # Cap at burst size
        elapsed = now - last_refill
        new_tokens = min(self.burst_size, current_tokens + elapsed * self.refill_rate)

        self._buckets[key] = (new_tokens, now)

    def check_limit(self, key: str, cost: float = 1.0) -> bool:
        """
        Check if request is allowed under rate limit.

        Args:
            key: Rate limit key (e.g., user id)
            cost: Token cost for this request (default 1.0)

        Returns:
            True if allowed

        Raises:
            HTTPException: 429 if rate limited
        """
        self._refill_bucket(key)

        current_tokens, last_refill = self._buckets[key]

        if current_tokens >= cost:
            self._buckets[key] = (current_tokens - cost, last_refill)
            self._request_counts[key] += 1
            return True

        retry_after = int((cost - current_tokens) / self.refill_rate) + 1

        logger.warning(
            f"Rate limit exceeded for key: {key}, "
            f"tokens: {current_tokens:.2f}/{self.burst_size}, "
            f"retry after: {retry_after}s"
        )

        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)},
        )

    def get_stats(self, key: str) -> Dict[str, Any]:
        """
        Get rate limit stats for a key.

        Args:
            key: Rate limit key

        Returns:
            Dictionary with stats
        """
        self._refill_bucket(key)
        current_tokens, _ = self._buckets[key]

        return {
            "tokens_remaining": int(current_tokens),
            "burst_size": self.burst_size,
            "requests_per_minute": self.requests_per_minute,
            "total_requests": self._request_counts.get(key, 0),
        }


_chat_rate_limiter: RateLimiter | None = None


def get_chat_rate_limiter() -> RateLimiter:
    """Process-wide chat limiter, sized from settings on first use."""
    global _chat_rate_limiter
    if _chat_rate_limiter is None:
        settings = get_settings()
        _chat_rate_limiter = RateLimiter(
            requests_per_minute=settings.CHAT_RATE_LIMIT_RPM,
            burst_size=settings.CHAT_RATE_LIMIT_BURST,
        )
    return _chat_rate_limiter


def check_chat_rate_limit(user_id: str) -> None:
    """
    Check rate limit for chat endpoint.

    Raises:
        HTTPException: 429 if rate limited
    """
    get_chat_rate_limiter().check_limit(f"chat:{user_id}")


def get_chat_rate_limit_stats(user_id: str) -> Dict[str, Any]:
    """Rate limit stats for a user's chat bucket."""
    return get_chat_rate_limiter().get_stats(f"chat:{user_id}")
