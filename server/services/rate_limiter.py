"""Sliding-window rate limiter backed by Redis sorted sets.

Each identifier owns one sorted set ``ratelimit:{namespace}:{identifier}``
whose members are request timestamps. Every admission check runs
prune + insert + count + expire in a single MULTI/EXEC so concurrent callers
sharing an identifier cannot slip past the limit between prune and count.
"""

import time
import uuid
from typing import Callable, Optional

from redis.exceptions import RedisError

from core.logging import get_logger
from core.store import KeyValueStore

logger = get_logger(__name__)


class RateLimiterUnavailable(Exception):
    """The store could not be reached while checking a quota."""

    def __init__(self, identifier: str, cause: Exception):
        self.identifier = identifier
        self.cause = cause
        super().__init__(f"Rate limiter unavailable for {identifier!r}: {cause}")


class RateLimiter:
    """Per-identifier sliding-window admission control."""

    def __init__(self, store: KeyValueStore,
                 namespace: str = "hn",
                 max_requests: int = 30,
                 window_seconds: int = 60,
                 fail_open: bool = False,
                 clock: Optional[Callable[[], float]] = None):
        self.store = store
        self.namespace = namespace
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.fail_open = fail_open
        self._clock = clock or time.time

    def key_for(self, identifier: str) -> str:
        return f"ratelimit:{self.namespace}:{identifier}"

    async def admit(self, identifier: str) -> bool:
        """Record one request and report whether it fits in the window.

        Returns False when the limit is exceeded; that is a normal outcome.
        Raises RateLimiterUnavailable on store failure unless fail_open is set.
        """
        key = self.key_for(identifier)
        now = self._clock()
        window_start = now - self.window_seconds
        # Unique member so that bursts within one clock tick all count.
        member = f"{now:.6f}:{uuid.uuid4().hex[:8]}"

        try:
            async with self.store.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(key, 0, window_start)
                pipe.zadd(key, {member: now})
                pipe.zcard(key)
                pipe.expire(key, self.window_seconds)
                results = await pipe.execute()
        except RedisError as e:
            if self.fail_open:
                logger.warning("Rate limiter store error, admitting request",
                               identifier=identifier, error=str(e))
                return True
            logger.error("Rate limiter store error", identifier=identifier, error=str(e))
            raise RateLimiterUnavailable(identifier, e) from e

        request_count = int(results[2])
        allowed = request_count <= self.max_requests
        if not allowed:
            logger.info("Rate limit exceeded", identifier=identifier,
                        count=request_count, limit=self.max_requests)
        return allowed

    async def remaining(self, identifier: str) -> int:
        """Requests still available in the current window (read-only)."""
        key = self.key_for(identifier)
        window_start = self._clock() - self.window_seconds
        count = await self.store.client.zcount(key, f"({window_start}", "+inf")
        return max(0, self.max_requests - int(count))
