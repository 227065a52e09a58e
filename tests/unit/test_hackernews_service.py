"""Tests for HackerNewsService: index lifecycle, paging, filtering and refresh."""

import asyncio

import pytest

from services.hackernews import (
    HackerNewsError,
    HackerNewsService,
    IndexState,
    RateLimitExceeded,
)
from services.rate_limiter import RateLimiter

TOP_STORIES = "/v0/topstories.json"


@pytest.mark.asyncio
class TestStoryIndex:
    """Tests for fetch_top_stories and the index lifecycle."""

    async def test_cold_fetch_caches_index(self, service, upstream):
        """Should fetch once on a cold cache and serve later calls from cache."""
        upstream.seed(5)
        assert await service.index_state() == IndexState.COLD

        assert await service.fetch_top_stories() == [1, 2, 3, 4, 5]
        assert await service.index_state() == IndexState.WARM

        assert await service.fetch_top_stories() == [1, 2, 3, 4, 5]
        assert upstream.count("topstories.json") == 1

    async def test_cold_fetch_failure_raises(self, service, upstream):
        upstream.failures[TOP_STORIES] = [503, 503, 503]

        with pytest.raises(HackerNewsError) as exc_info:
            await service.fetch_top_stories()

        assert exc_info.value.status_code == 503

    async def test_stale_index_served_then_revalidated(self, service, cache, upstream, clock):
        """Should return the cached index at once and refresh it in the background."""
        await cache.set_stories([10, 20])
        upstream.seed(3)
        clock.advance(500)

        assert await service.fetch_top_stories() == [10, 20]
        assert await service.wait_for_refresh() is True

        assert await cache.get_stories() == [1, 2, 3]
        assert upstream.count("topstories.json") == 1

    async def test_failed_revalidation_keeps_backup(self, service, cache, store, upstream):
        """With the primary expired and the API down the backup keeps serving."""
        await cache.set_stories([10, 20])
        await store.delete(cache.stories_key, cache.last_updated_key)
        upstream.failures[TOP_STORIES] = [503, 503, 503]

        assert await service.index_state() == IndexState.STALE
        assert await service.fetch_top_stories() == [10, 20]
        assert await service.wait_for_refresh() is False

        assert await cache.get_stories() == [10, 20]
        assert await service.index_state() == IndexState.STALE

    async def test_index_state_while_refreshing(self, service, cache, store):
        await cache.set_stories([1])
        await store.set(cache.refreshing_key, "token", ttl=30)

        assert await service.index_state() == IndexState.REFRESHING

    async def test_concurrent_cold_callers_share_one_fetch(self, service, upstream):
        upstream.seed(4)

        results = await asyncio.gather(*(service.fetch_top_stories() for _ in range(5)))

        assert all(ids == [1, 2, 3, 4] for ids in results)
        assert upstream.count("topstories.json") == 1

    async def test_cold_caller_waits_for_fill_elsewhere(self, service, cache, store, upstream):
        """Another process holds the marker and fills the index; no upstream call here."""
        upstream.seed(3)
        await store.set(cache.refreshing_key, "other-process", ttl=30)

        async def fill_elsewhere():
            await asyncio.sleep(0.1)
            await cache.set_stories([7, 8])

        filler = asyncio.create_task(fill_elsewhere())
        assert await service.fetch_top_stories() == [7, 8]
        await filler

        assert upstream.count("topstories.json") == 0
        assert await store.get(cache.refreshing_key) == "other-process"

    async def test_cold_caller_fetches_when_marker_released_empty(self, service, cache, store,
                                                                 upstream):
        upstream.seed(3)
        await store.set(cache.refreshing_key, "other-process", ttl=30)

        async def give_up_elsewhere():
            await asyncio.sleep(0.1)
            await store.delete(cache.refreshing_key)

        releaser = asyncio.create_task(give_up_elsewhere())
        assert await service.fetch_top_stories() == [1, 2, 3]
        await releaser

        assert upstream.count("topstories.json") == 1


@pytest.mark.asyncio
class TestFetchStories:
    """Tests for the paged query."""

    async def test_pagination(self, service, upstream):
        """45 stories at 20 per page: 20, 20, 5."""
        upstream.seed(45)

        pages = [await service.fetch_stories(page=n, limit=20) for n in range(3)]

        assert [len(p.stories) for p in pages] == [20, 20, 5]
        assert [p.has_more for p in pages] == [True, True, False]
        assert all(p.total == 45 for p in pages)
        assert [s.id for s in pages[2].stories] == [41, 42, 43, 44, 45]

    async def test_page_past_end_is_empty(self, service, upstream):
        upstream.seed(5)

        result = await service.fetch_stories(page=3, limit=20)

        assert result.stories == []
        assert result.has_more is False
        assert result.total == 5

    @pytest.mark.parametrize("page, limit", [(0, 0), (0, -5), (-1, 10)])
    async def test_invalid_page_window_is_rejected(self, service, upstream, page, limit):
        upstream.seed(5)

        with pytest.raises(ValueError):
            await service.fetch_stories(page=page, limit=limit)

        assert upstream.count("topstories.json") == 0

    async def test_second_page_served_from_cache(self, service, upstream):
        upstream.seed(10)

        await service.fetch_stories(page=0, limit=10)
        await service.fetch_stories(page=0, limit=10)

        assert upstream.item_calls() == 10

    async def test_sort_by_time_is_stable(self, service, upstream):
        """Ties keep the index order."""
        upstream.add_story(1, time=100)
        upstream.add_story(2, time=300)
        upstream.add_story(3, time=200)
        upstream.add_story(4, time=300)
        upstream.add_story(5, time=50)

        result = await service.fetch_stories(sort="time")

        assert [s.id for s in result.stories] == [2, 4, 3, 1, 5]

    async def test_sort_by_comments(self, service, upstream):
        upstream.add_story(1, descendants=5)
        upstream.add_story(2, descendants=50)
        upstream.add_story(3, descendants=None)

        result = await service.fetch_stories(sort="comments")

        assert [s.id for s in result.stories] == [2, 1, 3]

    async def test_unknown_sort_falls_back_to_score(self, service, upstream):
        upstream.add_story(1, score=1)
        upstream.add_story(2, score=9)

        result = await service.fetch_stories(sort="bogus")

        assert [s.id for s in result.stories] == [2, 1]

    async def test_search_matches_title_and_author(self, service, upstream):
        """Case-insensitive search; total stays the unfiltered index length."""
        upstream.add_story(1, title="Rust in production")
        upstream.add_story(2, title="Python tips")
        upstream.add_story(3, title="Databases", by="rustacean")
        upstream.add_story(4, title="Go generics")

        result = await service.fetch_stories(search="RUST")

        assert sorted(s.id for s in result.stories) == [1, 3]
        assert result.total == 4

    async def test_type_filter(self, service, upstream):
        upstream.add_story(1, type="story")
        upstream.add_story(2, type="job")
        upstream.add_story(3, type="story")

        jobs = await service.fetch_stories(type="job")
        everything = await service.fetch_stories(type="all")

        assert [s.id for s in jobs.stories] == [2]
        assert len(everything.stories) == 3

    async def test_missing_story_is_skipped(self, service, upstream):
        """A story that no longer exists drops out of the page."""
        upstream.seed(3)
        upstream.top_ids.append(99)

        result = await service.fetch_stories()

        assert [s.id for s in result.stories] == [1, 2, 3]
        assert result.total == 4

    async def test_upstream_failure_for_page_raises(self, service, upstream):
        upstream.seed(2)
        upstream.failures["/v0/item/2.json"] = [500, 500, 500]

        with pytest.raises(HackerNewsError):
            await service.fetch_stories()

    async def test_rate_limited_identifier(self, api_client, cache, store, clock, upstream):
        """Should deny the caller once its window is full."""
        upstream.seed(2)
        limiter = RateLimiter(store, max_requests=2, window_seconds=60, clock=clock)
        service = HackerNewsService(api_client, cache, limiter)

        await service.fetch_stories(identifier="10.0.0.1")
        await service.fetch_stories(identifier="10.0.0.1")
        with pytest.raises(RateLimitExceeded):
            await service.fetch_stories(identifier="10.0.0.1")

        # Another caller is unaffected
        result = await service.fetch_stories(identifier="10.0.0.2")
        assert len(result.stories) == 2

    async def test_limiter_outage_is_503(self, service, fake_server):
        fake_server.connected = False

        with pytest.raises(HackerNewsError) as exc_info:
            await service.fetch_stories()

        assert exc_info.value.status_code == 503


@pytest.mark.asyncio
class TestSingleStory:
    """Tests for fetch_story."""

    async def test_fetch_story_caches(self, service, upstream):
        upstream.add_story(7, title="Seven")

        first = await service.fetch_story(7)
        second = await service.fetch_story(7)

        assert first == second
        assert first.title == "Seven"
        assert upstream.item_calls() == 1


@pytest.mark.asyncio
class TestRefreshCache:
    """Tests for refresh_cache."""

    async def test_refresh_warms_first_page(self, service, upstream):
        """After a refresh the first page needs no further upstream calls."""
        upstream.seed(45)

        summary = await service.refresh_cache()

        assert summary == {"stories": 45, "warmed": 30}
        assert upstream.count("topstories.json") == 1
        assert upstream.item_calls() == 30

        result = await service.fetch_stories(page=0, limit=30)

        assert len(result.stories) == 30
        assert upstream.count("topstories.json") == 1
        assert upstream.item_calls() == 30

    async def test_refresh_replaces_stale_index(self, service, cache, upstream):
        await cache.set_stories([100, 200])
        upstream.seed(3)

        await service.refresh_cache()

        assert await cache.get_stories() == [1, 2, 3]

    async def test_refresh_tolerates_missing_stories(self, service, upstream):
        upstream.seed(3)
        upstream.top_ids.append(99)

        summary = await service.refresh_cache()

        assert summary == {"stories": 4, "warmed": 3}

    async def test_refresh_failure_is_wrapped(self, service, upstream):
        upstream.failures[TOP_STORIES] = [503, 503, 503]

        with pytest.raises(HackerNewsError) as exc_info:
            await service.refresh_cache()

        assert str(exc_info.value) == "Failed to refresh cache"
        assert exc_info.value.status_code == 503
