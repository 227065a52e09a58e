"""Fold cached post view counters into ``posts.view_count``."""

from typing import Sequence

from services.counters import POST_VIEWS_SET, view_key
from .base import ReconciliationJob
from .models import JobStats


class SyncViewsJob(ReconciliationJob):
    """Copy each tracked post's cached view count to the database.

    Posts whose counter already matches are skipped. Counters for posts that
    were deleted are removed together with their tracking-set membership.
    """

    name = "sync_views"
    counter_kinds = ("tracked_posts", "synced_posts", "skipped_posts", "pruned_posts", "deleted_keys")

    async def reconcile(self, stats: JobStats) -> None:
        post_ids = await self.store.smembers(POST_VIEWS_SET)
        if not post_ids:
            return
        stats.incr("tracked_posts", len(post_ids))
        await self.for_each_batch(post_ids, self._sync_batch, stats, "view")

    async def _sync_batch(self, batch: Sequence[str], stats: JobStats) -> None:
        db_counts = await self.database.get_post_view_counts(batch)
        cached_values = await self.store.mget_pipelined([view_key(post_id) for post_id in batch])

        orphans = [post_id for post_id in batch if post_id not in db_counts]
        if orphans:
            async with self.store.pipeline(transaction=True) as pipe:
                for post_id in orphans:
                    pipe.delete(view_key(post_id))
                    pipe.srem(POST_VIEWS_SET, post_id)
                await pipe.execute()
            stats.incr("pruned_posts", len(orphans))
            stats.incr("deleted_keys", len(orphans) * 2)

        cached = dict(zip(batch, cached_values))

        async def sync_one(post_id: str) -> bool:
            value = cached[post_id]
            if isinstance(value, Exception):
                raise value
            cached_views = int(value or 0)
            if cached_views == db_counts[post_id]:
                stats.incr("skipped_posts")
                return False
            if not await self.database.update_post_view_count(post_id, cached_views):
                # Deleted between the read and the write; the next run prunes it.
                stats.incr("skipped_posts")
                return False
            stats.incr("synced_posts")
            return True

        existing = [post_id for post_id in batch if post_id in db_counts]
        await self.gather_items(existing, sync_one, stats, "post")
