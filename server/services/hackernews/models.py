"""Pydantic v2 domain models for HackerNews ingestion."""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class IndexState(str, Enum):
    """Lifecycle of the cached story index.

    State transitions:
        COLD -> WARM               (first successful fetch + cache write)
        WARM -> STALE              (primary TTL expired, backup still valid)
        STALE -> REFRESHING -> WARM
        REFRESHING -> STALE        (refresh failed, backup keeps serving)
    """
    COLD = "cold"
    WARM = "warm"
    STALE = "stale"
    REFRESHING = "refreshing"


class CacheTier(str, Enum):
    PRIMARY = "primary"
    BACKUP = "backup"


class SortOrder(str, Enum):
    SCORE = "score"
    TIME = "time"
    COMMENTS = "comments"
    DESCENDANTS = "descendants"


class Story(BaseModel):
    """A single HackerNews item as returned by ``item/{id}.json``."""
    model_config = ConfigDict(extra="ignore")

    id: int
    title: str = ""
    url: Optional[str] = None
    score: int = 0
    by: str = ""                      # author
    time: int = 0                     # created at, epoch seconds
    descendants: int = 0              # comment count
    type: str = "story"

    @field_validator("title", "by", "type", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        # Deleted/dead items come back with nulls
        return "" if v is None else v

    @field_validator("score", "time", "descendants", mode="before")
    @classmethod
    def _none_to_zero(cls, v):
        return 0 if v is None else v


class StoriesPage(BaseModel):
    """One page of the query layer. ``total`` is the unfiltered index length."""
    model_config = ConfigDict(populate_by_name=True)

    stories: List[Story] = Field(default_factory=list)
    has_more: bool = Field(default=False, alias="hasMore")
    total: int = 0
