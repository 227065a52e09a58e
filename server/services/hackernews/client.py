"""HTTP transport for the public HackerNews Firebase API.

Every call is admitted through the rate limiter first, carries a hard
timeout, and is retried with exponential backoff on a fixed set of
transient status codes and on transport errors (timeouts included).
"""

import time
from typing import Any, List, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from core.config import Settings
from core.logging import get_logger, log_upstream_call
from services.rate_limiter import RateLimiter, RateLimiterUnavailable
from .exceptions import HackerNewsError, RateLimitExceeded, StoryNotFound, UpstreamError

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
TOP_STORIES_IDENTIFIER = "topstories"


def is_retryable(exc: BaseException) -> bool:
    """Transport errors and transient HTTP statuses are worth another attempt."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, httpx.TransportError)


class HackerNewsAPIClient:
    """Rate-limited, retrying GET client. Knows nothing about caching."""

    def __init__(self, settings: Settings, rate_limiter: RateLimiter,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.rate_limiter = rate_limiter
        self._http = http_client
        self._owns_client = http_client is None

    async def startup(self):
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self.settings.hn_api_base,
                timeout=httpx.Timeout(self.settings.hn_fetch_timeout),
                headers={"Accept": "application/json"},
            )
            logger.info("HackerNews client ready", base_url=self.settings.hn_api_base)

    async def shutdown(self):
        if self._http is not None and self._owns_client:
            await self._http.aclose()
            logger.info("HackerNews client closed")
        self._http = None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("HackerNews client not started")
        return self._http

    async def fetch_top_story_ids(self) -> List[int]:
        """GET ``topstories.json``: the ranked front-page id list."""
        data = await self._get_json("topstories.json", TOP_STORIES_IDENTIFIER)
        if not isinstance(data, list):
            raise UpstreamError("Malformed story index from upstream")
        return [int(story_id) for story_id in data]

    async def fetch_item(self, story_id: int) -> dict:
        """GET ``item/{id}.json``. A null body means the item does not exist."""
        try:
            data = await self._get_json(f"item/{story_id}.json", f"story:{story_id}")
        except UpstreamError as e:
            if e.status_code == 404:
                raise StoryNotFound(story_id) from e
            raise
        if not data:
            raise StoryNotFound(story_id)
        if not isinstance(data, dict):
            raise UpstreamError(f"Malformed story {story_id} from upstream")
        return data

    async def _admit(self, identifier: str) -> None:
        try:
            allowed = await self.rate_limiter.admit(identifier)
        except RateLimiterUnavailable as e:
            raise HackerNewsError("Rate limiter unavailable", 503) from e
        if not allowed:
            raise RateLimitExceeded(identifier)

    async def _get_json(self, path: str, identifier: str) -> Any:
        await self._admit(identifier)

        start_time = time.time()
        attempts = 0
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.hn_max_attempts),
            wait=wait_exponential(
                multiplier=self.settings.hn_retry_min_wait,
                min=self.settings.hn_retry_min_wait,
                max=self.settings.hn_retry_max_wait,
            ),
            retry=retry_if_exception(is_retryable),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts += 1
                    response = await self.http.get(path)
                    response.raise_for_status()
                    data = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            log_upstream_call(logger, path, success=False, status=status, attempts=attempts)
            raise UpstreamError(f"Upstream returned {status} for {path}", status) from e
        except httpx.TransportError as e:
            log_upstream_call(logger, path, success=False, error=type(e).__name__,
                              attempts=attempts)
            raise UpstreamError(f"Upstream request failed for {path}") from e
        except ValueError as e:
            log_upstream_call(logger, path, success=False, error="invalid_json",
                              attempts=attempts)
            raise UpstreamError(f"Upstream sent invalid JSON for {path}") from e

        log_upstream_call(logger, path, success=True, attempts=attempts,
                          elapsed_ms=int((time.time() - start_time) * 1000))
        return data
