"""HackerNews ingestion: rate-limited fetches over a two-tier Redis cache."""

from services.hackernews.cache import HackerNewsCache
from services.hackernews.client import HackerNewsAPIClient
from services.hackernews.exceptions import (
    HackerNewsError,
    RateLimitExceeded,
    StoryNotFound,
    UpstreamError,
)
from services.hackernews.models import IndexState, StoriesPage, Story
from services.hackernews.service import HackerNewsService

__all__ = [
    "HackerNewsAPIClient",
    "HackerNewsCache",
    "HackerNewsError",
    "HackerNewsService",
    "IndexState",
    "RateLimitExceeded",
    "StoriesPage",
    "Story",
    "StoryNotFound",
    "UpstreamError",
]
