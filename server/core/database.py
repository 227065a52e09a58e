"""Async access to the system of record with SQLModel and SQLAlchemy 2.0.

Only the narrow surface the reconciliation jobs need is exposed: bulk reads
keyed by post id and single-entity idempotent writes.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, Set, Tuple
from sqlmodel import SQLModel, select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from contextlib import asynccontextmanager

from core.config import Settings
from models.database import Post, ShareStats
from core.logging import get_logger

logger = get_logger(__name__)


class Database:
    """Async database service with SQLModel."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine = None
        self.async_session = None

    async def startup(self):
        """Initialize database connection and create tables."""
        try:
            self.engine = create_async_engine(
                self.settings.database_url,
                echo=self.settings.database_echo,
                future=True
            )

            self.async_session = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)

            logger.info("Database initialized successfully")

        except Exception as e:
            logger.error("Database startup failed", error=str(e))
            raise

    async def shutdown(self):
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()
            logger.info("Database connections closed")

    @asynccontextmanager
    async def get_session(self):
        """Get async database session."""
        if not self.async_session:
            raise RuntimeError("Database not initialized")

        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    # ============================================================================
    # Posts
    # ============================================================================

    async def get_post_view_counts(self, post_ids: Iterable[str]) -> Dict[str, int]:
        """Return ``{post_id: view_count}`` for the ids that still exist."""
        ids = list(post_ids)
        if not ids:
            return {}
        async with self.get_session() as session:
            stmt = select(Post.id, Post.view_count).where(Post.id.in_(ids))
            result = await session.execute(stmt)
            return {row[0]: row[1] for row in result.all()}

    async def get_existing_post_ids(self, post_ids: Iterable[str]) -> Set[str]:
        """Subset of ``post_ids`` that still has a row."""
        return set(await self.get_post_view_counts(post_ids))

    async def update_post_view_count(self, post_id: str, views: int) -> bool:
        """Set a post's view count. Returns False when the row no longer exists."""
        async with self.get_session() as session:
            post = await session.get(Post, post_id)
            if post is None:
                return False
            post.view_count = views
            await session.commit()
            return True

    # ============================================================================
    # Share stats
    # ============================================================================

    async def get_share_stats(self, post_ids: Iterable[str]) -> Dict[Tuple[str, str], Tuple[int, int]]:
        """Return ``{(post_id, platform): (shares, clicks)}`` for the given posts."""
        ids = list(post_ids)
        if not ids:
            return {}
        async with self.get_session() as session:
            stmt = select(ShareStats).where(ShareStats.post_id.in_(ids))
            result = await session.execute(stmt)
            return {
                (row.post_id, row.platform): (row.shares, row.clicks)
                for row in result.scalars().all()
            }

    async def add_share_stats(self, post_id: str, platform: str,
                              shares: int, clicks: int) -> Tuple[int, int]:
        """Add to the aggregate for one (post, platform) pair, creating it if needed.

        Returns the new (shares, clicks) totals.
        """
        async with self.get_session() as session:
            stmt = select(ShareStats).where(
                ShareStats.post_id == post_id,
                ShareStats.platform == platform
            )
            result = await session.execute(stmt)
            existing = result.scalar_one_or_none()

            if existing:
                existing.shares += shares
                existing.clicks += clicks
                existing.updated_at = datetime.now(timezone.utc)
                totals = (existing.shares, existing.clicks)
            else:
                session.add(ShareStats(
                    post_id=post_id,
                    platform=platform,
                    shares=shares,
                    clicks=clicks
                ))
                totals = (shares, clicks)

            await session.commit()
            return totals
