"""Tests for the HackerNews HTTP client: retries, not-found and admission."""

import httpx
import pytest

from services.hackernews.client import HackerNewsAPIClient, is_retryable
from services.hackernews.exceptions import (
    HackerNewsError,
    RateLimitExceeded,
    StoryNotFound,
    UpstreamError,
)
from services.rate_limiter import RateLimiter

TOP_STORIES = "/v0/topstories.json"


@pytest.mark.asyncio
class TestHackerNewsAPIClient:
    """Tests for HackerNewsAPIClient."""

    async def test_fetches_top_story_ids(self, api_client, upstream):
        upstream.seed(3)

        assert await api_client.fetch_top_story_ids() == [1, 2, 3]

    async def test_retries_transient_status_then_succeeds(self, api_client, upstream):
        """Should retry 503 twice and return the third response."""
        upstream.seed(2)
        upstream.failures[TOP_STORIES] = [503, 503]

        assert await api_client.fetch_top_story_ids() == [1, 2]
        assert upstream.count("topstories.json") == 3

    async def test_retries_timeouts(self, api_client, upstream):
        upstream.seed(1)
        upstream.failures[TOP_STORIES] = ["timeout"]

        assert await api_client.fetch_top_story_ids() == [1]
        assert upstream.count("topstories.json") == 2

    async def test_gives_up_after_max_attempts(self, api_client, upstream):
        """Should surface an UpstreamError carrying the last status."""
        upstream.failures[TOP_STORIES] = [503, 503, 503, 503]

        with pytest.raises(UpstreamError) as exc_info:
            await api_client.fetch_top_story_ids()

        assert exc_info.value.status_code == 503
        assert upstream.count("topstories.json") == 3

    async def test_timeouts_exhausted_become_upstream_error(self, api_client, upstream):
        upstream.failures[TOP_STORIES] = ["timeout", "timeout", "timeout"]

        with pytest.raises(UpstreamError) as exc_info:
            await api_client.fetch_top_story_ids()

        assert exc_info.value.status_code == 502

    async def test_client_errors_are_not_retried(self, api_client, upstream):
        upstream.failures[TOP_STORIES] = [400]

        with pytest.raises(UpstreamError) as exc_info:
            await api_client.fetch_top_story_ids()

        assert exc_info.value.status_code == 400
        assert upstream.count("topstories.json") == 1

    async def test_null_item_is_not_found(self, api_client, upstream):
        """A null body for item/{id}.json means the story does not exist."""
        with pytest.raises(StoryNotFound) as exc_info:
            await api_client.fetch_item(999)

        assert exc_info.value.story_id == 999
        assert exc_info.value.status_code == 404
        assert upstream.item_calls() == 1

    async def test_404_item_is_not_found_and_not_retried(self, api_client, upstream):
        upstream.add_story(5)
        upstream.failures["/v0/item/5.json"] = [404]

        with pytest.raises(StoryNotFound):
            await api_client.fetch_item(5)

        assert upstream.item_calls() == 1

    async def test_fetch_item_returns_payload(self, api_client, upstream):
        upstream.add_story(7, title="Seven")

        item = await api_client.fetch_item(7)

        assert item["id"] == 7
        assert item["title"] == "Seven"

    async def test_denied_request_never_reaches_upstream(self, settings, store, clock,
                                                         http_client, upstream):
        """Should raise RateLimitExceeded before any HTTP call once over quota."""
        upstream.seed(1)
        limiter = RateLimiter(store, max_requests=1, window_seconds=60, clock=clock)
        client = HackerNewsAPIClient(settings, limiter, http_client=http_client)

        await client.fetch_top_story_ids()
        with pytest.raises(RateLimitExceeded):
            await client.fetch_top_story_ids()

        assert upstream.count("topstories.json") == 1

    async def test_limiter_outage_maps_to_503(self, api_client, upstream, fake_server):
        fake_server.connected = False

        with pytest.raises(HackerNewsError) as exc_info:
            await api_client.fetch_top_story_ids()

        assert exc_info.value.status_code == 503
        assert upstream.calls == []


class TestRetryPolicy:
    """Tests for is_retryable."""

    def test_transient_statuses(self):
        request = httpx.Request("GET", "https://hn.test/v0/topstories.json")
        for status, expected in ((503, True), (429, True), (408, True), (404, False), (400, False)):
            response = httpx.Response(status, request=request)
            error = httpx.HTTPStatusError("status", request=request, response=response)
            assert is_retryable(error) is expected

    def test_other_exceptions_are_not_retried(self):
        assert is_retryable(ValueError("bad json")) is False
