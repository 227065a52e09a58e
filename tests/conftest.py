"""Pytest configuration and shared fixtures."""

import json
import os
import re
from collections import defaultdict

# main.py builds Settings at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import fakeredis
import httpx
import pytest
import pytest_asyncio

from core.config import Settings
from core.database import Database
from core.store import KeyValueStore
from models.database import Post
from services.hackernews import HackerNewsAPIClient, HackerNewsCache, HackerNewsService
from services.rate_limiter import RateLimiter

API_BASE = "https://hn.test/v0"
CRON_SECRET = "test-secret"


class FakeClock:
    """Controllable epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeHackerNews:
    """In-memory stand-in for the HackerNews Firebase API.

    ``failures[path]`` is a queue of status codes (or "timeout") served
    before the real response for that path.
    """

    def __init__(self):
        self.top_ids = []
        self.items = {}
        self.failures = defaultdict(list)
        self.calls = []

    def add_story(self, story_id: int, **fields) -> dict:
        item = {
            "id": story_id,
            "type": "story",
            "title": f"Story {story_id}",
            "by": "pg",
            "score": 100,
            "time": 1_700_000_000,
            "descendants": 0,
            "url": f"https://example.com/{story_id}",
        }
        item.update(fields)
        self.items[story_id] = item
        self.top_ids.append(story_id)
        return item

    def seed(self, count: int) -> None:
        for story_id in range(1, count + 1):
            self.add_story(story_id, score=count - story_id)

    def count(self, suffix: str) -> int:
        return sum(1 for path in self.calls if path.endswith(suffix))

    def item_calls(self) -> int:
        return sum(1 for path in self.calls if "/item/" in path)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append(path)

        queued = self.failures.get(path)
        if queued:
            failure = queued.pop(0)
            if failure == "timeout":
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(failure)

        if path.endswith("/topstories.json"):
            return httpx.Response(200, json=self.top_ids)

        match = re.search(r"/item/(\d+)\.json$", path)
        if match:
            item = self.items.get(int(match.group(1)))
            return httpx.Response(200, content=json.dumps(item))

        return httpx.Response(404)


@pytest.fixture
def settings(tmp_path):
    """Settings tuned for tests: no retry waits, no batch pacing."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/test.db",
        cron_secret_key=CRON_SECRET,
        hn_api_base=API_BASE,
        hn_retry_min_wait=0,
        hn_retry_max_wait=0,
        reconcile_batch_delay=0,
        scheduler_enabled=False,
        log_format="console",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_server():
    """Backing server; set ``connected = False`` to simulate an outage."""
    return fakeredis.FakeServer()


@pytest_asyncio.fixture
async def redis_client(fake_server):
    client = fakeredis.FakeAsyncRedis(server=fake_server, decode_responses=True)
    yield client
    fake_server.connected = True
    await client.aclose()


@pytest_asyncio.fixture
async def store(settings, redis_client):
    store = KeyValueStore(settings, client=redis_client)
    await store.startup()
    yield store
    await store.shutdown()


@pytest_asyncio.fixture
async def database(settings):
    database = Database(settings)
    await database.startup()
    yield database
    await database.shutdown()


@pytest.fixture
def rate_limiter(store, clock):
    return RateLimiter(store, namespace="hn", max_requests=30, window_seconds=60, clock=clock)


@pytest.fixture
def upstream():
    return FakeHackerNews()


@pytest_asyncio.fixture
async def http_client(upstream):
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(upstream.handler),
        base_url=API_BASE
    )
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def api_client(settings, rate_limiter, http_client):
    client = HackerNewsAPIClient(settings, rate_limiter, http_client=http_client)
    await client.startup()
    yield client
    await client.shutdown()


@pytest.fixture
def cache(store, api_client, clock):
    return HackerNewsCache(
        store,
        namespace="hn",
        ttl=900,
        backup_ttl=3600,
        lock_ttl=30,
        refresh_source=api_client.fetch_top_story_ids,
        clock=clock
    )


@pytest.fixture
def service(api_client, cache, rate_limiter):
    return HackerNewsService(api_client, cache, rate_limiter, warm_page_size=30)


@pytest.fixture
def seed_posts(database):
    """Insert posts into the system of record."""
    async def _seed(*post_ids: str, view_count: int = 0) -> None:
        async with database.get_session() as session:
            for post_id in post_ids:
                session.add(Post(id=post_id, user_id="user-1", view_count=view_count))
            await session.commit()
    return _seed
