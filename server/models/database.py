"""SQLModel database models and tables for the system of record."""

from datetime import datetime, timezone
from typing import Optional
from sqlmodel import SQLModel, Field, Column, DateTime, UniqueConstraint
from sqlalchemy import func


class Post(SQLModel, table=True):
    """Post row; only the fields reconciliation touches are modelled."""

    __tablename__ = "posts"

    id: str = Field(primary_key=True, max_length=255)
    user_id: str = Field(index=True, max_length=255)
    view_count: int = Field(default=0)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )


class ShareStats(SQLModel, table=True):
    """Per-platform share and click aggregates for a post."""

    __tablename__ = "share_stats"
    __table_args__ = (UniqueConstraint("post_id", "platform", name="uq_share_stats_post_platform"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    post_id: str = Field(foreign_key="posts.id", index=True, max_length=255)
    platform: str = Field(max_length=50)
    shares: int = Field(default=0)
    clicks: int = Field(default=0)
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), onupdate=func.now())
    )
