"""Two-tier (primary + backup) cache for HackerNews data.

Key schema (``ns`` defaults to ``hn``):
    {ns}:stories                -> JSON list of story ids      (TTL = T)
    {ns}:stories:backup         -> same payload                (TTL = B)
    {ns}:stories:last_updated   -> epoch millis of last write  (TTL = T)
    {ns}:stories:refreshing     -> refresh lock token          (TTL = lock)
    {ns}:story:{id}             -> JSON story                  (TTL = T)
    {ns}:story:{id}:backup      -> same payload                (TTL = B)

Primary and backup are written in one pipeline but NOT in a transaction: if
one command fails the other is kept, so the tiers can briefly disagree. Reads
always prefer primary, and the backup only ever holds data that was correct
when written.
"""

import json
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError
from redis.exceptions import RedisError

from core.logging import get_logger, log_cache_operation
from core.store import KeyValueStore
from .models import CacheTier, Story

logger = get_logger(__name__)

BACKUP_SUFFIX = ":backup"


@dataclass(frozen=True)
class CacheLookup:
    """A cache read together with the tier that served it."""
    payload: Any
    tier: CacheTier


class HackerNewsCache:
    """Primary/backup entry pairs over the shared key-value store.

    ``refresh_source`` is the coroutine used for stale-while-revalidate; it
    returns a fresh story index which ``warm()`` writes back.
    """

    def __init__(self, store: KeyValueStore,
                 namespace: str = "hn",
                 ttl: int = 900,
                 backup_ttl: int = 3600,
                 lock_ttl: int = 30,
                 refresh_source: Optional[Callable[[], Awaitable[List[int]]]] = None,
                 clock: Optional[Callable[[], float]] = None):
        if backup_ttl <= ttl:
            raise ValueError("backup_ttl must exceed the primary ttl")
        self.store = store
        self.namespace = namespace
        self.ttl = ttl
        self.backup_ttl = backup_ttl
        self.lock_ttl = lock_ttl
        self._refresh_source = refresh_source
        self._clock = clock or time.time

    # =========================================================================
    # KEYS
    # =========================================================================

    @property
    def stories_key(self) -> str:
        return f"{self.namespace}:stories"

    @property
    def last_updated_key(self) -> str:
        return f"{self.stories_key}:last_updated"

    @property
    def refreshing_key(self) -> str:
        return f"{self.stories_key}:refreshing"

    def story_key(self, story_id: int) -> str:
        return f"{self.namespace}:story:{story_id}"

    # =========================================================================
    # GENERIC TWO-TIER OPERATIONS
    # =========================================================================

    async def lookup(self, key: str) -> Optional[CacheLookup]:
        """Read primary, then backup. Store errors and bad JSON count as a miss."""
        try:
            async with self.store.pipeline() as pipe:
                pipe.get(key)
                pipe.get(key + BACKUP_SUFFIX)
                primary, backup = await pipe.execute()
        except RedisError as e:
            logger.warning("Cache read failed, treating as miss", key=key, error=str(e))
            return None

        for raw, tier in ((primary, CacheTier.PRIMARY), (backup, CacheTier.BACKUP)):
            payload = self._decode(key, raw)
            if payload is not None:
                log_cache_operation(logger, "lookup", key, hit=True, tier=tier.value)
                return CacheLookup(payload=payload, tier=tier)

        log_cache_operation(logger, "lookup", key, hit=False)
        return None

    async def get_entry(self, key: str) -> Optional[Any]:
        """Payload from whichever tier has it, primary preferred."""
        found = await self.lookup(key)
        return found.payload if found else None

    async def set_entry(self, key: str, payload: Any, touch_updated: bool = False) -> bool:
        """Write primary (TTL T) and backup (TTL B) in one pipeline.

        Both commands are always sent. A failure of either is logged and the
        other write is kept. Returns True only when every command succeeded.
        """
        serialized = json.dumps(payload, default=str)
        try:
            async with self.store.pipeline() as pipe:
                pipe.set(key, serialized, ex=self.ttl)
                pipe.set(key + BACKUP_SUFFIX, serialized, ex=self.backup_ttl)
                if touch_updated:
                    pipe.set(self.last_updated_key, int(self._clock() * 1000), ex=self.ttl)
                results = await pipe.execute(raise_on_error=False)
        except RedisError as e:
            logger.error("Cache write failed", key=key, error=str(e))
            return False

        ok = True
        for label, result in zip(("primary", "backup", "last_updated"), results):
            if isinstance(result, Exception):
                ok = False
                logger.error("Cache tier write failed", key=key, tier=label, error=str(result))
        log_cache_operation(logger, "set_entry", key, ttl=self.ttl,
                            backup_ttl=self.backup_ttl, ok=ok)
        return ok

    async def get_many(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Batch lookup in a single round trip; misses are simply absent."""
        keys = list(keys)
        if not keys:
            return {}

        expanded: List[str] = []
        for key in keys:
            expanded.extend((key, key + BACKUP_SUFFIX))

        try:
            results = await self.store.mget_pipelined(expanded)
        except RedisError as e:
            logger.warning("Cache batch read failed, treating as misses",
                           count=len(keys), error=str(e))
            return {}

        found: Dict[str, Any] = {}
        for index, key in enumerate(keys):
            primary, backup = results[index * 2], results[index * 2 + 1]
            for raw in (primary, backup):
                if isinstance(raw, Exception):
                    continue
                payload = self._decode(key, raw)
                if payload is not None:
                    found[key] = payload
                    break

        log_cache_operation(logger, "get_many", keys[0], requested=len(keys), hits=len(found))
        return found

    async def invalidate_all(self, prefix: Optional[str] = None) -> int:
        """Delete every key under ``prefix`` (default: this namespace). Admin only."""
        pattern = f"{prefix or self.namespace + ':'}*"
        try:
            deleted = await self.store.delete_pattern(pattern)
        except RedisError as e:
            logger.error("Cache invalidation failed", pattern=pattern, error=str(e))
            return 0
        logger.info("Invalidated cache namespace", pattern=pattern, deleted=deleted)
        return deleted

    async def should_refresh(self) -> bool:
        """True once half the primary TTL has elapsed since the last index write.

        A missing timestamp (or an unreadable store) always asks for a refresh.
        """
        try:
            last_updated = await self.store.get(self.last_updated_key)
        except RedisError:
            return True
        if not last_updated:
            return True
        try:
            elapsed_ms = self._clock() * 1000 - int(last_updated)
        except ValueError:
            return True
        return elapsed_ms > (self.ttl * 1000) / 2

    # =========================================================================
    # STALE-WHILE-REVALIDATE
    # =========================================================================

    async def is_refreshing(self) -> bool:
        try:
            return await self.store.exists(self.refreshing_key)
        except RedisError:
            return False

    @asynccontextmanager
    async def refreshing_lock(self):
        """Short-lived marker so only one process refreshes at a time.

        Yields True if this caller holds the marker. The TTL lets a crashed
        refresh release the marker on its own.
        """
        token = str(uuid.uuid4())
        acquired = False
        try:
            acquired = await self.store.set(self.refreshing_key, token,
                                            ttl=self.lock_ttl, nx=True)
        except RedisError as e:
            logger.warning("Could not take refresh marker", error=str(e))

        try:
            yield acquired
        finally:
            if acquired:
                try:
                    current = await self.store.get(self.refreshing_key)
                    if current == token:
                        await self.store.delete(self.refreshing_key)
                except RedisError as e:
                    logger.warning("Could not release refresh marker", error=str(e))

    async def warm(self, force: bool = False) -> bool:
        """Refresh the story index from ``refresh_source`` when it is due.

        Returns True if a refresh ran. Exceptions from the refresh source
        propagate; the cached index is left untouched in that case.
        """
        if self._refresh_source is None:
            return False
        if not force and not await self.should_refresh():
            return False

        async with self.refreshing_lock() as acquired:
            if not acquired:
                logger.debug("Refresh already in flight elsewhere")
                return False
            story_ids = await self._refresh_source()
            await self.set_stories(story_ids)
            logger.info("Story index revalidated", count=len(story_ids))
            return True

    # =========================================================================
    # STORY HELPERS
    # =========================================================================

    async def get_stories(self) -> List[int]:
        payload = await self.get_entry(self.stories_key)
        return list(payload) if isinstance(payload, list) else []

    async def set_stories(self, story_ids: List[int]) -> bool:
        return await self.set_entry(self.stories_key, list(story_ids), touch_updated=True)

    async def get_story(self, story_id: int) -> Optional[Story]:
        return self._to_story(story_id, await self.get_entry(self.story_key(story_id)))

    async def set_story(self, story: Story) -> bool:
        return await self.set_entry(self.story_key(story.id), story.model_dump())

    async def get_multiple_stories(self, story_ids: Iterable[int]) -> Dict[int, Story]:
        ids = list(story_ids)
        payloads = await self.get_many(self.story_key(i) for i in ids)
        stories: Dict[int, Story] = {}
        for story_id in ids:
            story = self._to_story(story_id, payloads.get(self.story_key(story_id)))
            if story is not None:
                stories[story_id] = story
        return stories

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _decode(self, key: str, raw: Optional[str]) -> Optional[Any]:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning("Malformed cache payload, ignoring", key=key, error=str(e))
            return None

    def _to_story(self, story_id: int, payload: Optional[Any]) -> Optional[Story]:
        if payload is None:
            return None
        try:
            return Story.model_validate(payload)
        except ValidationError as e:
            logger.warning("Cached story failed validation", story_id=story_id, error=str(e))
            return None
