"""Base class for cache reconciliation jobs.

A job reads ephemeral counters out of the key-value store, checks them
against the system of record, writes corrected aggregates back and prunes
cache entries whose row no longer exists.

Contract for every job:
- ``run()`` never raises; the caller always gets a ReconciliationResult.
- Items are processed in fixed-size batches with a pacing delay between
  batches. Inside a batch, per-item work is fanned out with asyncio.gather.
- A failing item or batch is recorded in ``errors`` and processing goes on.
- Running a job twice with no intervening writes changes nothing the second
  time.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

import structlog
from redis.exceptions import RedisError

from core.database import Database
from core.logging import get_logger, log_job_result
from core.store import KeyValueStore
from .models import JobStats, ReconciliationResult

logger = get_logger(__name__)


class ReconciliationJob(ABC):
    """Template for a batched, idempotent reconciliation run."""

    name: str = "reconciliation"
    counter_kinds: Tuple[str, ...] = ()

    def __init__(self, store: KeyValueStore, database: Optional[Database] = None,
                 batch_size: int = 100, batch_delay: float = 0.1):
        self.store = store
        self.database = database
        self.batch_size = batch_size
        self.batch_delay = batch_delay

    async def run(self) -> ReconciliationResult:
        with structlog.contextvars.bound_contextvars(job=self.name):
            result = await self._run()
        log_job_result(logger, result.to_dict())
        return result

    async def _run(self) -> ReconciliationResult:
        stats = JobStats(counters={kind: 0 for kind in self.counter_kinds})
        logger.info("Reconciliation started")

        try:
            await self.store.ping()
        except (RedisError, RuntimeError) as e:
            logger.error("Key-value store unreachable", error=str(e))
            return stats.finish(self.name, success=False,
                                error="Key-value store connection failed")

        try:
            await self.reconcile(stats)
        except Exception as e:
            logger.error("Reconciliation aborted", error=str(e), exc_info=True)
            stats.record_error(str(e))
            return stats.finish(self.name, success=False, error=str(e))

        return stats.finish(self.name, success=True)

    @abstractmethod
    async def reconcile(self, stats: JobStats) -> None:
        """Job body. Exceptions escaping here make the run a job-level failure."""

    # =========================================================================
    # BATCH HELPERS
    # =========================================================================

    def chunk(self, items: Sequence[Any]) -> List[Sequence[Any]]:
        return [items[i:i + self.batch_size] for i in range(0, len(items), self.batch_size)]

    async def for_each_batch(self, items: Sequence[Any],
                             handler: Callable[[Sequence[Any], JobStats], Awaitable[None]],
                             stats: JobStats, label: str) -> None:
        """Run ``handler`` over each batch, pacing between batches.

        A batch that raises is recorded and the next batch still runs.
        """
        batches = self.chunk(items)
        total = len(batches)
        for number, batch in enumerate(batches, start=1):
            try:
                await handler(batch, stats)
                logger.debug("Batch processed", label=label,
                             batch=number, total=total, size=len(batch))
            except Exception as e:
                message = f"Error processing {label} batch {number}/{total}: {e}"
                logger.warning(message)
                stats.record_error(message)

            if number < total and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

    async def gather_items(self, items: Sequence[Any],
                           worker: Callable[[Any], Awaitable[bool]],
                           stats: JobStats, label: str) -> None:
        """Fan out ``worker`` over one batch concurrently.

        ``worker`` returns True when it changed the system of record. Each
        successful item counts as processed; failures go to ``errors``.
        """
        results = await asyncio.gather(*(worker(item) for item in items),
                                       return_exceptions=True)
        for item, result in zip(items, results):
            if isinstance(result, BaseException):
                message = f"Error reconciling {label} {item}: {result}"
                logger.warning(message)
                stats.record_error(message)
                continue
            stats.processed += 1
            if result:
                stats.updated += 1
