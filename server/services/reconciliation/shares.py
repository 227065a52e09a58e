"""Fold pending share/click counters into the ``share_stats`` table."""

from typing import List, Sequence, Tuple

from services.counters import (
    POST_SHARES_SET,
    SUPPORTED_PLATFORMS,
    ShareCounter,
    click_key,
    share_key,
)
from .base import ReconciliationJob
from .models import JobStats


class SyncShareStatsJob(ReconciliationJob):
    """Add each (post, platform) pair's pending counts to its ShareStats row.

    Pending counts are drained from the store before the write and put back
    if the write fails, so every increment lands in the table exactly once
    and stored totals never go down.
    """

    name = "sync_share_stats"
    counter_kinds = ("tracked_posts", "synced_stats", "skipped_stats", "pruned_posts", "deleted_keys")

    def __init__(self, *args, platforms: Sequence[str] = SUPPORTED_PLATFORMS, **kwargs):
        super().__init__(*args, **kwargs)
        self.platforms = tuple(platforms)
        self.counter = ShareCounter(self.store)

    async def reconcile(self, stats: JobStats) -> None:
        post_ids = await self.store.smembers(POST_SHARES_SET)
        if not post_ids:
            return
        stats.incr("tracked_posts", len(post_ids))
        await self.for_each_batch(post_ids, self._sync_batch, stats, "share")

    async def _sync_batch(self, batch: Sequence[str], stats: JobStats) -> None:
        existing_ids = await self.database.get_existing_post_ids(batch)

        orphans = [post_id for post_id in batch if post_id not in existing_ids]
        if orphans:
            deleted = await prune_share_counters(self.store, orphans, self.platforms)
            stats.incr("pruned_posts", len(orphans))
            stats.incr("deleted_keys", deleted)

        live = [post_id for post_id in batch if post_id in existing_ids]
        if not live:
            return

        pairs: List[Tuple[str, str]] = [
            (post_id, platform) for post_id in live for platform in self.platforms
        ]
        keys: List[str] = []
        for post_id, platform in pairs:
            keys.extend((share_key(post_id, platform), click_key(post_id, platform)))
        values = await self.store.mget_pipelined(keys)

        pending = [
            pair for i, pair in enumerate(pairs)
            if values[i * 2] is not None or values[i * 2 + 1] is not None
        ]
        idle = set(live) - {post_id for post_id, _ in pending}
        stats.incr("skipped_stats", len(idle))

        async def sync_one(pair: Tuple[str, str]) -> bool:
            post_id, platform = pair
            shares, clicks = await self.counter.drain(post_id, platform)
            if shares == 0 and clicks == 0:
                return False
            try:
                await self.database.add_share_stats(post_id, platform, shares, clicks)
            except Exception:
                await self.counter.restore(post_id, platform, shares, clicks)
                raise
            stats.incr("synced_stats")
            return True

        await self.gather_items(pending, sync_one, stats, "share stats")


async def prune_share_counters(store, post_ids: Sequence[str],
                               platforms: Sequence[str] = SUPPORTED_PLATFORMS) -> int:
    """Delete every share/click counter of ``post_ids`` and untrack them.

    Returns the number of counter keys that actually existed.
    """
    async with store.pipeline(transaction=True) as pipe:
        for post_id in post_ids:
            for platform in platforms:
                pipe.delete(share_key(post_id, platform), click_key(post_id, platform))
            pipe.srem(POST_SHARES_SET, post_id)
        results = await pipe.execute()

    per_post = len(platforms) + 1
    return sum(
        int(result) for index, result in enumerate(results)
        if index % per_post != len(platforms)
    )
