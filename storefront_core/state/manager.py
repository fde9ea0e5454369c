"""Redis-based state manager shared by the durable store backend."""

from __future__ import annotations

import json
from typing import Any, AsyncIterator

import redis.asyncio as redis

from storefront_core.config import get_settings
from storefront_core.utils.logging import get_logger

logger = get_logger(__name__)

# Return codes of DECREMENT_IF_AVAILABLE below zero
INSUFFICIENT = -1
MISSING = -2
NOT_NUMERIC = -3

DECREMENT_IF_AVAILABLE = """
local current = redis.call('GET', KEYS[1])
if not current then
    return -2
end
local count = tonumber(current)
if not count then
    return -3
end
if count < tonumber(ARGV[1]) then
    return -1
end
return redis.call('DECRBY', KEYS[1], ARGV[1])
"""


class StateManager:
    """Thin async wrapper over a Redis connection."""

    def __init__(
        self,
        redis_url: str | None = None,
        redis_client: redis.Redis | None = None,
    ) -> None:
        settings = get_settings()
        self.redis_client: redis.Redis | None = redis_client
        self.redis_url = redis_url or settings.redis_url

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self.redis_client is None:
            self.redis_client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("redis_connected", url=self.redis_url)

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("redis_disconnected")

    async def _client(self) -> redis.Redis:
        if not self.redis_client:
            await self.connect()
        return self.redis_client

    @staticmethod
    def _encode(value: Any) -> Any:
        # Serialize complex objects to JSON
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return value

    @staticmethod
    def _decode(value: Any) -> Any:
        if value is None:
            return None
        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return value

    async def set(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
    ) -> None:
        """Set a value in Redis with optional TTL."""
        client = await self._client()
        await client.set(key, self._encode(value), ex=ttl)
        logger.debug("state_set", key=key, ttl=ttl)

    async def set_if_absent(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
    ) -> bool:
        """Set a value only if the key does not exist yet."""
        client = await self._client()
        created = await client.set(key, self._encode(value), ex=ttl, nx=True)
        return bool(created)

    async def get(self, key: str) -> Any:
        """Get a value from Redis."""
        client = await self._client()
        return self._decode(await client.get(key))

    async def delete(self, *keys: str) -> None:
        """Delete keys from Redis."""
        if not keys:
            return
        client = await self._client()
        await client.delete(*keys)
        logger.debug("state_deleted", keys=list(keys))

    async def scan_keys(self, pattern: str) -> AsyncIterator[str]:
        """Iterate keys matching a pattern without blocking the server."""
        client = await self._client()
        async for key in client.scan_iter(match=pattern):
            yield key

    async def zadd(
        self,
        key: str,
        mapping: dict[str, float],
    ) -> None:
        """Add members to a sorted set."""
        client = await self._client()
        await client.zadd(key, mapping)

    async def zcount(self, key: str, minimum: float | str, maximum: float | str) -> int:
        """Count sorted set members with scores in a range."""
        client = await self._client()
        return int(await client.zcount(key, minimum, maximum))

    async def sadd(self, key: str, *members: str) -> None:
        """Add members to a set."""
        client = await self._client()
        await client.sadd(key, *members)

    async def srem(self, key: str, *members: str) -> None:
        """Remove members from a set."""
        client = await self._client()
        await client.srem(key, *members)

    async def smembers(self, key: str) -> set[str]:
        """Get all members of a set."""
        client = await self._client()
        return set(await client.smembers(key))

    async def increment(self, key: str, amount: int = 1) -> int:
        """Increment a counter."""
        client = await self._client()
        return int(await client.incrby(key, amount))

    async def decrement_if_available(self, key: str, amount: int) -> int:
        """
        Decrement a counter only if it holds at least ``amount``.

        The check and the write run as one server-side script.

        Returns:
            The new value, or one of the negative codes above
        """
        client = await self._client()
        return int(await client.eval(DECREMENT_IF_AVAILABLE, 1, key, amount))

