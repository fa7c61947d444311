"""Simple in-memory rate limiter for memo generation requests."""

import time
from collections import defaultdict
from collections.abc import Callable
from functools import lru_cache
from typing import Any
from uuid import UUID

from fastapi import HTTPException

from dealmemo.core.config import get_settings
from dealmemo.core.logging import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Token bucket rate limiter.

    Tracks requests per key (e.g., deal_id) and enforces limits.
    Uses in-memory storage, so limits are per process.
    """

    def __init__(
        self,
        requests_per_minute: int = 3,
        burst_size: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize rate limiter.

        Args:
            requests_per_minute: Sustained rate limit
            burst_size: Maximum burst size
            clock: Monotonic time source in seconds
        """
        self.requests_per_minute = requests_per_minute
        self.burst_size = burst_size
        self.refill_rate = requests_per_minute / 60.0  # tokens per second
        self.clock = clock

        # Storage: key -> (tokens, last_refill_time)
        self._buckets: dict[str, tuple[float, float]] = {}

        # Track request counts for metrics
        self._request_counts: dict[str, int] = defaultdict(int)

    def _refill_bucket(self, key: str) -> None:
        """Refill tokens in bucket based on elapsed time."""
        now = self.clock()
        current_tokens, last_refill = self._buckets.get(key, (float(self.burst_size), now))

        elapsed = now - last_refill
        new_tokens = min(self.burst_size, current_tokens + elapsed * self.refill_rate)

        self._buckets[key] = (new_tokens, now)

    def check_limit(self, key: str, cost: float = 1.0) -> bool:
        """
        Check if request is allowed under rate limit.

        Args:
            key: Rate limit key (e.g., deal_id)
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

    def get_stats(self, key: str) -> dict[str, Any]:
        """Get rate limit stats for a key."""
        self._refill_bucket(key)
        current_tokens, _ = self._buckets[key]

        return {
            "tokens_remaining": int(current_tokens),
            "burst_size": self.burst_size,
            "requests_per_minute": self.requests_per_minute,
            "total_requests": self._request_counts.get(key, 0),
        }

    def reset(self, key: str) -> None:
        """Reset rate limit for a key."""
        self._buckets.pop(key, None)
        self._request_counts.pop(key, None)

        logger.info(f"Rate limit reset for key: {key}")


@lru_cache(maxsize=1)
def get_memo_rate_limiter() -> RateLimiter:
    """Get the shared memo kickoff limiter, built from settings on first use."""
    settings = get_settings()
    return RateLimiter(
        requests_per_minute=settings.MEMO_RATE_LIMIT_PER_MINUTE,
        burst_size=settings.MEMO_RATE_LIMIT_BURST,
    )


def check_memo_rate_limit(deal_id: UUID) -> None:
    """
    Check rate limit for memo generation on a deal.

    Raises:
        HTTPException: 429 if rate limited
    """
    get_memo_rate_limiter().check_limit(f"memo:{deal_id}")
