"""Key-value storage for in-progress onboarding wizards.

The wizard core only ever talks to the small async KeyValueStore interface
(get / set / delete), so it can run against Redis in deployment and against
a plain dict in tests.

Keys are namespaced per wizard session:
    {wizard_key_prefix}:{session_id}:{key}
"""

import logging
from typing import Optional, Protocol

import redis.asyncio as redis

from app.config import settings

logger = logging.getLogger(__name__)

# Global Redis connection pool
_redis_client: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    """Get or create Redis client connection."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
    return _redis_client


async def close_redis():
    """Close Redis connection (call on app shutdown)."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def session_key(session_id: str, key: str, prefix: str | None = None) -> str:
    """Build the namespaced storage key for one wizard session."""
    return f"{prefix or settings.wizard_key_prefix}:{session_id}:{key}"


class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, *keys: str) -> None: ...


class RedisKeyValueStore:
    """KeyValueStore backed by Redis strings.

    Values expire after `ttl` seconds (settings.wizard_cache_ttl_seconds by
    default) so abandoned wizards don't accumulate. A ttl of 0 disables
    expiry. Redis errors propagate to the caller; WizardCache decides how
    to degrade.
    """

    def __init__(self, client: redis.Redis | None = None, ttl: int | None = None):
        self._client = client
        self.ttl = settings.wizard_cache_ttl_seconds if ttl is None else ttl

    async def _redis(self) -> redis.Redis:
        if self._client is None:
            self._client = await get_redis()
        return self._client

    async def get(self, key: str) -> str | None:
        client = await self._redis()
        return await client.get(key)

    async def set(self, key: str, value: str) -> None:
        client = await self._redis()
        if self.ttl:
            await client.setex(key, self.ttl, value)
        else:
            await client.set(key, value)

    async def delete(self, *keys: str) -> None:
        if not keys:
            return
        client = await self._redis()
        await client.delete(*keys)

    async def scan(self, pattern: str) -> list[str]:
        """Return keys matching a pattern (used by the support CLI)."""
        client = await self._redis()
        keys = []
        async for key in client.scan_iter(match=pattern):
            keys.append(key)
        return keys


class InMemoryKeyValueStore:
    """Dict-backed KeyValueStore for tests and local development."""

    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self.data.pop(key, None)

    async def scan(self, pattern: str) -> list[str]:
        prefix = pattern.rstrip("*")
        return [k for k in self.data if k.startswith(prefix)]
