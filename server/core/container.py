"""Dependency injection container for the application."""

from dependency_injector import containers, providers

from core.config import Settings
from core.database import Database
from core.store import KeyValueStore
from services.counters import ShareCounter, ViewCounter
from services.hackernews import HackerNewsAPIClient, HackerNewsCache, HackerNewsService
from services.rate_limiter import RateLimiter
from services.reconciliation import (
    CleanupCacheJob,
    RefreshHackerNewsJob,
    SyncShareStatsJob,
    SyncViewsJob,
)


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Shared key-value store (Redis)
    store = providers.Singleton(
        KeyValueStore,
        settings=settings
    )

    # System of record
    database = providers.Singleton(
        Database,
        settings=settings
    )

    rate_limiter = providers.Singleton(
        RateLimiter,
        store=store,
        namespace=settings.provided.hn_namespace,
        max_requests=settings.provided.rate_limit_requests,
        window_seconds=settings.provided.rate_limit_window,
        fail_open=settings.provided.rate_limit_fail_open
    )

    # HackerNews ingestion
    hn_api_client = providers.Singleton(
        HackerNewsAPIClient,
        settings=settings,
        rate_limiter=rate_limiter
    )

    hn_cache = providers.Singleton(
        HackerNewsCache,
        store=store,
        namespace=settings.provided.hn_namespace,
        ttl=settings.provided.cache_ttl,
        backup_ttl=settings.provided.cache_backup_ttl,
        lock_ttl=settings.provided.cache_refresh_lock_ttl,
        refresh_source=hn_api_client.provided.fetch_top_story_ids
    )

    hn_service = providers.Singleton(
        HackerNewsService,
        api_client=hn_api_client,
        cache=hn_cache,
        rate_limiter=rate_limiter,
        warm_page_size=settings.provided.hn_warm_page_size,
        cold_wait=settings.provided.cache_refresh_lock_ttl
    )

    # Engagement counters
    view_counter = providers.Singleton(
        ViewCounter,
        store=store
    )

    share_counter = providers.Singleton(
        ShareCounter,
        store=store
    )

    # Reconciliation jobs
    sync_views_job = providers.Singleton(
        SyncViewsJob,
        store=store,
        database=database,
        batch_size=settings.provided.reconcile_batch_size,
        batch_delay=settings.provided.reconcile_batch_delay
    )

    sync_share_stats_job = providers.Singleton(
        SyncShareStatsJob,
        store=store,
        database=database,
        batch_size=settings.provided.reconcile_batch_size,
        batch_delay=settings.provided.reconcile_batch_delay
    )

    cleanup_cache_job = providers.Singleton(
        CleanupCacheJob,
        store=store,
        database=database,
        batch_size=settings.provided.reconcile_batch_size,
        batch_delay=settings.provided.reconcile_batch_delay
    )

    refresh_hackernews_job = providers.Singleton(
        RefreshHackerNewsJob,
        store=store,
        cache=hn_cache
    )

    jobs = providers.Dict(
        sync_views=sync_views_job,
        sync_share_stats=sync_share_stats_job,
        cleanup_cache=cleanup_cache_job,
        refresh_hackernews=refresh_hackernews_job,
    )


# Global container instance
container = Container()
