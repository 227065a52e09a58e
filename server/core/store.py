"""Key-value store adapter over a shared Redis instance.

The adapter owns the connection lifecycle and exposes the handful of
commands the rest of the service needs. Redis errors propagate; each caller
decides whether a store failure is a cache miss or a hard failure.
"""

from typing import Any, List, Optional, Sequence

import redis.asyncio as redis
from redis.exceptions import RedisError

from core.config import Settings
from core.logging import get_logger, log_cache_operation

logger = get_logger(__name__)

__all__ = ["KeyValueStore", "RedisError"]


class KeyValueStore:
    """Async Redis store injected into every component that needs it.

    The process entry point calls ``startup()``/``shutdown()``; components
    never open or close the connection themselves. A pre-built client can be
    passed in (tests hand over a fakeredis instance).
    """

    def __init__(self, settings: Settings, client: Optional[redis.Redis] = None):
        self.settings = settings
        self.redis: Optional[redis.Redis] = client
        self._owns_client = client is None

    async def startup(self):
        """Open the connection and verify it with a PING."""
        if self.redis is None:
            self.redis = redis.from_url(
                self.settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=self.settings.redis_socket_timeout,
                socket_connect_timeout=self.settings.redis_socket_timeout,
                retry_on_timeout=True
            )
        try:
            await self.redis.ping()
            logger.info("Key-value store connected", url=self.settings.redis_url)
        except RedisError as e:
            # The service still starts: reads degrade to cache misses until
            # the store comes back.
            logger.warning("Key-value store unreachable at startup", error=str(e))

    async def shutdown(self):
        """Close store connections."""
        if self.redis is not None and self._owns_client:
            await self.redis.aclose()
            logger.info("Key-value store connections closed")
        self.redis = None

    @property
    def client(self) -> redis.Redis:
        if self.redis is None:
            raise RuntimeError("Key-value store not initialized")
        return self.redis

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    # ------------------------------------------------------------------
    # Strings
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[str]:
        value = await self.client.get(key)
        log_cache_operation(logger, "get", key, hit=value is not None)
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None,
                  nx: bool = False) -> bool:
        """SET with optional TTL (seconds). Returns False when NX did not apply."""
        result = await self.client.set(key, value, ex=ttl, nx=nx)
        log_cache_operation(logger, "set", key, ttl=ttl, nx=nx)
        return bool(result)

    async def incr(self, key: str) -> int:
        return int(await self.client.incr(key))

    async def expire(self, key: str, ttl: int) -> bool:
        return bool(await self.client.expire(key, ttl))

    async def exists(self, key: str) -> bool:
        return bool(await self.client.exists(key))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        deleted = await self.client.delete(*keys)
        log_cache_operation(logger, "delete", keys[0], count=len(keys), deleted=deleted)
        return int(deleted)

    # ------------------------------------------------------------------
    # Sets
    # ------------------------------------------------------------------

    async def smembers(self, key: str) -> List[str]:
        members = await self.client.smembers(key)
        return sorted(members)

    async def sadd(self, key: str, *members: str) -> int:
        return int(await self.client.sadd(key, *members))

    async def srem(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return int(await self.client.srem(key, *members))

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def pipeline(self, transaction: bool = False):
        """Return a pipeline; ``transaction=True`` wraps it in MULTI/EXEC."""
        return self.client.pipeline(transaction=transaction)

    async def mget_pipelined(self, keys: Sequence[str]) -> List[Any]:
        """GET every key in one round trip; per-command errors are returned in place."""
        if not keys:
            return []
        async with self.pipeline() as pipe:
            for key in keys:
                pipe.get(key)
            return await pipe.execute(raise_on_error=False)

    async def scan_keys(self, pattern: str, count: int = 500) -> List[str]:
        """Enumerate keys matching ``pattern`` with SCAN (never KEYS)."""
        keys = [key async for key in self.client.scan_iter(match=pattern, count=count)]
        log_cache_operation(logger, "scan", pattern, found=len(keys))
        return keys

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key under ``pattern`` in one batch."""
        keys = await self.scan_keys(pattern)
        if not keys:
            return 0
        return await self.delete(*keys)
