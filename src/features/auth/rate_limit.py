"""Sliding-window rate limiting for login attempts.

Each key holds the timestamps of recent attempts. ``check`` drops attempts that
left the window before counting; ``increment`` records one more. A separate
``blocked:`` key escalates a caller that hit the limit into a fixed-length ban
that is rejected without recomputing the window.

Keys used by the login flow:
    login:<identifier>      attempts per login identifier
    login_ip:<client ip>    attempts per client address
"""

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from src.cache.client import Cache

logger = logging.getLogger(__name__)

# Extra lifetime on window keys so an abandoned window cleans itself up
WINDOW_TTL_MARGIN = 60.0
BLOCK_PREFIX = "blocked:"


@dataclass(frozen=True)
class RateLimitStatus:
    """Outcome of a window check."""

    exceeded: bool
    count: int
    retry_after: float


class RateLimiter:
    """Sliding-window counter over the shared cache.

    Args:
        cache: Cache backend holding the windows
        clock: Returns the current time in seconds

    """

    def __init__(self, cache: Cache, clock: Callable[[], float] = time.time):
        self.cache = cache
        self.clock = clock

    async def check(self, key: str, limit: int, window: float) -> RateLimitStatus:
        """Count attempts inside the trailing ``window`` seconds.

        ``exceeded`` is true once the count has reached ``limit``. ``retry_after``
        is the time until the oldest counted attempt leaves the window.
        """
        now = self.clock()
        count, oldest = await self.cache.window_prune_and_count(key, now - window)
        retry_after = 0.0
        if oldest is not None:
            retry_after = max(0.0, oldest + window - now)
        return RateLimitStatus(exceeded=count >= limit, count=count, retry_after=retry_after)

    async def increment(self, key: str, window: float) -> None:
        """Record one attempt and refresh the key's lifetime."""
        now = self.clock()
        member = f"{now:.6f}:{uuid.uuid4().hex[:8]}"
        await self.cache.window_add(key, member, now, ttl=window + WINDOW_TTL_MARGIN)

    async def reset(self, key: str) -> None:
        """Forget all attempts recorded for a key."""
        await self.cache.delete(key)

    async def block_key(self, key: str, duration: float) -> None:
        """Reject a key outright for ``duration`` seconds."""
        await self.cache.set(f"{BLOCK_PREFIX}{key}", "blocked", ttl=duration)
        logger.warning(f"Rate limit block installed on {key} for {duration:.0f}s")

    async def is_key_blocked(self, key: str) -> tuple[bool, float]:
        """Check for an explicit block.

        Returns:
            Tuple of (blocked, seconds_remaining)

        """
        ttl = await self.cache.ttl(f"{BLOCK_PREFIX}{key}")
        if ttl is None:
            return False, 0.0
        return True, ttl

    async def remaining_attempts(self, key: str, limit: int, window: float) -> int:
        status = await self.check(key, limit, window)
        return max(0, limit - status.count)
