"""Ephemeral engagement counters kept in the key-value store.

Counters are bumped on the hot path and later folded into the system of
record by the reconciliation jobs.

Key schema:
    posts:with:views                  -> SET {post_id}
    post:views:{post_id}              -> INT
    posts:with:shares                 -> SET {post_id}
    share:stats:{post_id}:{platform}  -> INT pending shares (TTL 24h)
    share:clicks:{post_id}:{platform} -> INT pending clicks (TTL 24h)
"""

from typing import Dict, Iterable, List, Sequence, Tuple

from redis.exceptions import RedisError

from core.logging import get_logger
from core.store import KeyValueStore

logger = get_logger(__name__)

POST_VIEWS_KEY_PREFIX = "post:views:"
POST_VIEWS_SET = "posts:with:views"
SHARE_STATS_PREFIX = "share:stats:"
SHARE_CLICKS_PREFIX = "share:clicks:"
POST_SHARES_SET = "posts:with:shares"
SHARE_COUNTER_TTL = 86400

SUPPORTED_PLATFORMS: Tuple[str, ...] = (
    "twitter",
    "facebook",
    "linkedin",
    "instagram",
    "pinterest",
    "reddit",
    "whatsapp",
    "discord",
    "email",
    "copy",
    "qr",
)


def view_key(post_id: str) -> str:
    return f"{POST_VIEWS_KEY_PREFIX}{post_id}"


def share_key(post_id: str, platform: str) -> str:
    return f"{SHARE_STATS_PREFIX}{post_id}:{platform}"


def click_key(post_id: str, platform: str) -> str:
    return f"{SHARE_CLICKS_PREFIX}{post_id}:{platform}"


def _to_int(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class ViewCounter:
    """Per-post view counts."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def increment(self, post_id: str) -> int:
        """Count one view and remember the post for the next sync."""
        try:
            async with self.store.pipeline(transaction=True) as pipe:
                pipe.sadd(POST_VIEWS_SET, post_id)
                pipe.incr(view_key(post_id))
                results = await pipe.execute()
            return int(results[1])
        except RedisError as e:
            logger.error("Error incrementing post view", post_id=post_id, error=str(e))
            return 0

    async def get_views(self, post_id: str) -> int:
        try:
            return _to_int(await self.store.get(view_key(post_id)))
        except RedisError as e:
            logger.error("Error getting post views", post_id=post_id, error=str(e))
            return 0

    async def get_many(self, post_ids: Iterable[str]) -> Dict[str, int]:
        ids = list(post_ids)
        try:
            values = await self.store.mget_pipelined([view_key(i) for i in ids])
        except RedisError as e:
            logger.error("Error getting multiple post views", error=str(e))
            return {}
        return {
            post_id: _to_int(value)
            for post_id, value in zip(ids, values)
            if not isinstance(value, Exception)
        }

    async def tracked_posts(self) -> List[str]:
        return await self.store.smembers(POST_VIEWS_SET)


class ShareCounter:
    """Per-post, per-platform share and click counts.

    The keys hold increments not yet folded into ``share_stats``: the sync job
    drains them, so a key that expires loses only its own pending delta.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def _bump(self, key: str, post_id: str) -> int:
        try:
            async with self.store.pipeline(transaction=True) as pipe:
                pipe.sadd(POST_SHARES_SET, post_id)
                pipe.incr(key)
                pipe.expire(key, SHARE_COUNTER_TTL)
                results = await pipe.execute()
            return int(results[1])
        except RedisError as e:
            logger.error("Error incrementing share counter", key=key, error=str(e))
            return 0

    async def increment_share(self, post_id: str, platform: str) -> int:
        return await self._bump(share_key(post_id, platform), post_id)

    async def increment_click(self, post_id: str, platform: str) -> int:
        return await self._bump(click_key(post_id, platform), post_id)

    async def get_stats(self, post_id: str, platform: str) -> Dict[str, int]:
        try:
            shares, clicks = await self.store.mget_pipelined(
                [share_key(post_id, platform), click_key(post_id, platform)]
            )
        except RedisError as e:
            logger.error("Error getting share stats", post_id=post_id, error=str(e))
            return {"shares": 0, "clicks": 0}
        return {"shares": _to_int(shares), "clicks": _to_int(clicks)}

    async def get_all_stats(self, post_id: str,
                            platforms: Sequence[str] = SUPPORTED_PLATFORMS) -> Dict[str, Dict[str, int]]:
        """Pending counts for every platform in one round trip."""
        keys: List[str] = []
        for platform in platforms:
            keys.extend((share_key(post_id, platform), click_key(post_id, platform)))
        try:
            values = await self.store.mget_pipelined(keys)
        except RedisError as e:
            logger.error("Error getting share stats", post_id=post_id, error=str(e))
            values = [None] * len(keys)
        return {
            platform: {
                "shares": _to_int(values[i * 2]),
                "clicks": _to_int(values[i * 2 + 1]),
            }
            for i, platform in enumerate(platforms)
        }

    async def drain(self, post_id: str, platform: str) -> Tuple[int, int]:
        """Atomically read and delete one pair's pending (shares, clicks).

        Store errors propagate; the caller decides whether to retry.
        """
        async with self.store.pipeline(transaction=True) as pipe:
            pipe.getdel(share_key(post_id, platform))
            pipe.getdel(click_key(post_id, platform))
            shares, clicks = await pipe.execute()
        return _to_int(shares), _to_int(clicks)

    async def restore(self, post_id: str, platform: str, shares: int, clicks: int) -> None:
        """Put drained counts back after a failed write to the system of record."""
        async with self.store.pipeline(transaction=True) as pipe:
            for key, amount in ((share_key(post_id, platform), shares),
                                (click_key(post_id, platform), clicks)):
                if amount:
                    pipe.incrby(key, amount)
                    pipe.expire(key, SHARE_COUNTER_TTL)
            pipe.sadd(POST_SHARES_SET, post_id)
            await pipe.execute()

    async def tracked_posts(self) -> List[str]:
        return await self.store.smembers(POST_SHARES_SET)
