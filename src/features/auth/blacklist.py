"""Access-token blacklist backed by the shared cache."""

import logging

from src.cache.client import Cache

logger = logging.getLogger(__name__)

BLACKLIST_PREFIX = "jwt:blacklist:"


class TokenBlacklist:
    """Deny-list of logged-out access tokens.

    Each entry lives exactly as long as the token it blocks would have stayed
    valid, so the list never outgrows the set of unexpired tokens.
    """

    def __init__(self, cache: Cache):
        self.cache = cache

    @staticmethod
    def _key(token: str) -> str:
        return f"{BLACKLIST_PREFIX}{token}"

    async def block(self, token: str, ttl: float) -> bool:
        """Blacklist a token for ``ttl`` seconds.

        Returns False without writing when the token has no lifetime left.
        """
        if ttl <= 0:
            return False
        await self.cache.set(self._key(token), "1", ttl=ttl)
        logger.debug(f"Access token blacklisted for {ttl:.0f}s")
        return True

    async def is_blocked(self, token: str) -> bool:
        return await self.cache.exists(self._key(token))
