"""HackerNews ingestion exception hierarchy.

Every error carries an HTTP-like ``status_code`` so the router can map it
straight onto a response.
"""

from typing import Optional


class HackerNewsError(Exception):
    """Base exception for all ingestion errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code or 500
        super().__init__(message)


class RateLimitExceeded(HackerNewsError):
    """The rate limiter denied the request."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__("Rate limit exceeded", 429)


class StoryNotFound(HackerNewsError):
    """The remote API returned an empty record for the requested id."""

    def __init__(self, story_id: int):
        self.story_id = story_id
        super().__init__(f"Story {story_id} not found", 404)


class UpstreamError(HackerNewsError):
    """Transport failure after retries (timeout, connection error, 5xx)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code or 502)
