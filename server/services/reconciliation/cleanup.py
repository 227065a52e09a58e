"""Prune cached counters that reference deleted posts."""

from typing import Sequence

from services.counters import POST_SHARES_SET, POST_VIEWS_SET, view_key
from .base import ReconciliationJob
from .models import JobStats
from .shares import prune_share_counters


class CleanupCacheJob(ReconciliationJob):
    """Remove orphaned view and share counters without syncing anything."""

    name = "cleanup_cache"
    counter_kinds = ("deleted_post_views", "deleted_post_shares")

    async def reconcile(self, stats: JobStats) -> None:
        view_ids = await self.store.smembers(POST_VIEWS_SET)
        await self.for_each_batch(view_ids, self._prune_views, stats, "view")

        share_ids = await self.store.smembers(POST_SHARES_SET)
        await self.for_each_batch(share_ids, self._prune_shares, stats, "share")

    async def _prune_views(self, batch: Sequence[str], stats: JobStats) -> None:
        existing = await self.database.get_existing_post_ids(batch)
        orphans = [post_id for post_id in batch if post_id not in existing]
        if orphans:
            async with self.store.pipeline(transaction=True) as pipe:
                for post_id in orphans:
                    pipe.srem(POST_VIEWS_SET, post_id)
                    pipe.delete(view_key(post_id))
                await pipe.execute()
        stats.processed += len(batch)
        stats.updated += len(orphans)
        stats.incr("deleted_post_views", len(orphans))

    async def _prune_shares(self, batch: Sequence[str], stats: JobStats) -> None:
        existing = await self.database.get_existing_post_ids(batch)
        orphans = [post_id for post_id in batch if post_id not in existing]
        if orphans:
            await prune_share_counters(self.store, orphans)
        stats.processed += len(batch)
        stats.updated += len(orphans)
        stats.incr("deleted_post_shares", len(orphans))
