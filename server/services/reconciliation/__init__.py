"""Cache reconciliation jobs.

Provides:
- View count sync (cache counters -> posts.view_count)
- Share stats sync (cache counters -> share_stats)
- Orphan cleanup for counters of deleted posts
- Scheduled revalidation of the HackerNews story index
"""

from services.reconciliation.base import ReconciliationJob
from services.reconciliation.cleanup import CleanupCacheJob
from services.reconciliation.hackernews import RefreshHackerNewsJob
from services.reconciliation.models import JobStats, ReconciliationResult
from services.reconciliation.shares import SyncShareStatsJob
from services.reconciliation.views import SyncViewsJob

__all__ = [
    "CleanupCacheJob",
    "JobStats",
    "ReconciliationJob",
    "ReconciliationResult",
    "RefreshHackerNewsJob",
    "SyncShareStatsJob",
    "SyncViewsJob",
]
