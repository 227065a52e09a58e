"""HackerNews ingestion and query service.

Cache-first reads over the story index and individual stories, with the
index lifecycle modelled as COLD -> WARM -> STALE -> REFRESHING (see
``IndexState``). Remote calls go through ``HackerNewsAPIClient`` which handles
rate limiting, timeouts and retries.
"""

import asyncio
import time
from typing import Dict, List, Optional

from pydantic import ValidationError

from core.logging import get_logger, log_execution_time
from services.rate_limiter import RateLimiter, RateLimiterUnavailable
from .cache import HackerNewsCache
from .client import HackerNewsAPIClient
from .exceptions import HackerNewsError, RateLimitExceeded, StoryNotFound, UpstreamError
from .models import CacheTier, IndexState, SortOrder, StoriesPage, Story

logger = get_logger(__name__)

_SORT_KEYS = {
    SortOrder.SCORE: lambda story: story.score,
    SortOrder.TIME: lambda story: story.time,
    SortOrder.COMMENTS: lambda story: story.descendants,
    SortOrder.DESCENDANTS: lambda story: story.descendants,
}


class HackerNewsService:
    """Serves the story index, single stories and paged/filtered views."""

    def __init__(self, api_client: HackerNewsAPIClient,
                 cache: HackerNewsCache,
                 rate_limiter: RateLimiter,
                 warm_page_size: int = 30,
                 cold_wait: float = 5.0,
                 poll_interval: float = 0.05):
        self.api = api_client
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.warm_page_size = warm_page_size
        self.cold_wait = cold_wait
        self.poll_interval = poll_interval
        self._refresh_task: Optional[asyncio.Task] = None

    # =========================================================================
    # INDEX
    # =========================================================================

    async def index_state(self) -> IndexState:
        """Current lifecycle state of the cached story index."""
        if await self.cache.is_refreshing():
            return IndexState.REFRESHING
        found = await self.cache.lookup(self.cache.stories_key)
        if found is None or not found.payload:
            return IndexState.COLD
        if found.tier == CacheTier.PRIMARY:
            return IndexState.WARM
        return IndexState.STALE

    async def fetch_top_stories(self) -> List[int]:
        """Ranked story ids, cache first.

        A cached index is returned immediately; if it is due for refresh a
        background revalidation is started. Only a cold cache blocks on the
        remote API, and concurrent cold callers share a single fetch.
        """
        found = await self.cache.lookup(self.cache.stories_key)
        if found is not None and found.payload:
            if found.tier == CacheTier.BACKUP or await self.cache.should_refresh():
                self._schedule_revalidation()
            return list(found.payload)

        # Cold: one caller fetches under the refreshing marker, the rest wait for it.
        # The index is written before the marker is released, so the marker is
        # always checked before the cache.
        async with self.cache.refreshing_lock() as acquired:
            if not acquired:
                if await self.cache.is_refreshing():
                    story_ids = await self._wait_for_index()
                else:
                    story_ids = await self.cache.get_stories()
                if story_ids:
                    return story_ids
            return await self._fetch_index()

    async def _wait_for_index(self) -> List[int]:
        """Poll the cache while another caller fills the index; [] on timeout."""
        for _ in range(max(1, int(self.cold_wait / self.poll_interval))):
            await asyncio.sleep(self.poll_interval)
            still_refreshing = await self.cache.is_refreshing()
            story_ids = await self.cache.get_stories()
            if story_ids:
                return story_ids
            if not still_refreshing:
                break
        logger.info("Index fill elsewhere did not finish, fetching directly")
        return []

    async def _fetch_index(self) -> List[int]:
        try:
            story_ids = await self.api.fetch_top_story_ids()
        except HackerNewsError:
            raise
        except Exception as e:
            raise HackerNewsError("Failed to fetch top stories") from e

        await self.cache.set_stories(story_ids)
        logger.info("Story index fetched", count=len(story_ids))
        return story_ids

    def _schedule_revalidation(self) -> None:
        if self._refresh_task is not None and not self._refresh_task.done():
            return
        self._refresh_task = asyncio.create_task(self.revalidate())

    async def revalidate(self) -> bool:
        """Refresh the index through the cache's refresh source if it is due."""
        # A failure leaves the cached index in place (STALE), never COLD.
        try:
            return await self.cache.warm()
        except HackerNewsError as e:
            logger.warning("Background refresh failed, serving cached index",
                           status_code=e.status_code, error=str(e))
        except Exception as e:
            logger.error("Background refresh crashed", error=str(e))
        return False

    async def wait_for_refresh(self) -> bool:
        """Await the in-flight background refresh, if any."""
        if self._refresh_task is None:
            return False
        return await self._refresh_task

    # =========================================================================
    # STORIES
    # =========================================================================

    async def fetch_story(self, story_id: int) -> Story:
        """One story, cache first."""
        cached = await self.cache.get_story(story_id)
        if cached is not None:
            return cached
        return await self._fetch_remote_story(story_id)

    async def _fetch_remote_story(self, story_id: int) -> Story:
        try:
            data = await self.api.fetch_item(story_id)
        except HackerNewsError:
            raise
        except Exception as e:
            raise HackerNewsError(f"Failed to fetch story {story_id}") from e

        try:
            story = Story.model_validate(data)
        except ValidationError as e:
            raise UpstreamError(f"Malformed story {story_id} from upstream") from e

        await self.cache.set_story(story)
        return story

    async def fetch_stories(self, page: int = 0, limit: int = 30,
                            search: Optional[str] = None,
                            sort: str = SortOrder.SCORE.value,
                            type: str = "all",
                            identifier: Optional[str] = "anonymous") -> StoriesPage:
        """One page of stories, filtered and sorted in memory.

        ``total`` is the length of the whole index, not of the filtered page.
        Raises ValueError for a negative page or a limit below 1.
        """
        if limit < 1 or page < 0:
            raise ValueError(f"Invalid page window: page={page}, limit={limit}")

        if identifier:
            try:
                allowed = await self.rate_limiter.admit(identifier)
            except RateLimiterUnavailable as e:
                raise HackerNewsError("Rate limiter unavailable", 503) from e
            if not allowed:
                raise RateLimitExceeded(identifier)

        all_ids = await self.fetch_top_stories()
        start = page * limit
        end = start + limit
        page_ids = all_ids[start:end]

        by_id: Dict[int, Story] = await self.cache.get_multiple_stories(page_ids)
        missing = [story_id for story_id in page_ids if story_id not in by_id]

        if missing:
            results = await asyncio.gather(
                *(self._fetch_remote_story(story_id) for story_id in missing),
                return_exceptions=True
            )
            for story_id, result in zip(missing, results):
                if isinstance(result, StoryNotFound):
                    logger.info("Skipping missing story", story_id=story_id)
                    continue
                if isinstance(result, BaseException):
                    raise result
                by_id[story_id] = result

        stories = [by_id[story_id] for story_id in page_ids if story_id in by_id]

        if type and type != "all":
            stories = [story for story in stories if story.type == type]

        if search:
            needle = search.lower()
            stories = [
                story for story in stories
                if needle in story.title.lower() or needle in story.by.lower()
            ]

        # list.sort is stable: ties keep index order
        stories.sort(key=_SORT_KEYS[self._parse_sort(sort)], reverse=True)

        return StoriesPage(stories=stories, has_more=end < len(all_ids), total=len(all_ids))

    @staticmethod
    def _parse_sort(sort: str) -> SortOrder:
        try:
            return SortOrder(sort)
        except ValueError:
            return SortOrder.SCORE

    # =========================================================================
    # ADMIN
    # =========================================================================

    async def refresh_cache(self) -> Dict[str, int]:
        """Drop the namespace, refetch the index and warm the first page."""
        start_time = time.time()
        try:
            await self.cache.invalidate_all()
            story_ids = await self.fetch_top_stories()
            first_page = story_ids[:self.warm_page_size]
            results = await asyncio.gather(
                *(self._fetch_remote_story(story_id) for story_id in first_page),
                return_exceptions=True
            )
        except HackerNewsError as e:
            raise HackerNewsError("Failed to refresh cache", e.status_code) from e

        failures = [r for r in results if isinstance(r, BaseException)]
        for failure in failures:
            logger.warning("Story warm failed", error=str(failure))

        summary = {
            "stories": len(story_ids),
            "warmed": len(first_page) - len(failures),
        }
        log_execution_time(logger, "refresh_cache", start_time, time.time(), **summary)
        return summary
