"""Scheduled stale-while-revalidate pass over the HackerNews story index."""

from services.hackernews.cache import HackerNewsCache
from .base import ReconciliationJob
from .models import JobStats


class RefreshHackerNewsJob(ReconciliationJob):
    """Revalidate the cached index once it is past half its primary TTL.

    Uses the cache's own refresh source and refreshing marker, so a request
    path revalidation and this job never fetch at the same time.
    """

    name = "refresh_hackernews"
    counter_kinds = ("refreshed",)

    def __init__(self, *args, cache: HackerNewsCache, **kwargs):
        super().__init__(*args, **kwargs)
        self.cache = cache

    async def reconcile(self, stats: JobStats) -> None:
        try:
            refreshed = await self.cache.warm()
        except Exception as e:
            # The cached index stays in place; next run retries.
            stats.record_error(f"Error refreshing story index: {e}")
            return
        stats.processed += 1
        if refreshed:
            stats.updated += 1
            stats.incr("refreshed")
