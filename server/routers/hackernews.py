"""HackerNews story routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from core.container import container
from core.logging import get_logger
from services.hackernews import (
    HackerNewsError,
    HackerNewsService,
    RateLimitExceeded,
    StoryNotFound,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/api/hackernews", tags=["hackernews"])

FETCH_FAILED = "Failed to fetch stories, try again later"


def _error_response(e: HackerNewsError, fallback: str = FETCH_FAILED) -> JSONResponse:
    """Map a HackerNewsError to a client-safe status and message."""
    if isinstance(e, RateLimitExceeded):
        return JSONResponse(status_code=429, content={"error": "Too many requests, try again shortly"})
    if isinstance(e, StoryNotFound):
        return JSONResponse(status_code=404, content={"error": "Story unavailable"})
    status_code = e.status_code if e.status_code and e.status_code >= 500 else 502
    return JSONResponse(status_code=status_code, content={"error": fallback})


@router.get("")
async def list_stories(
    request: Request,
    page: int = Query(default=0, ge=0),
    limit: int = Query(default=30, ge=1, le=100),
    search: Optional[str] = None,
    sort: str = "score",
    type: str = "all",
    identifier: Optional[str] = None,
    service: HackerNewsService = Depends(lambda: container.hn_service())
):
    """One page of top stories, with optional search, type filter and sort."""
    if not identifier:
        identifier = request.client.host if request.client else "anonymous"
    try:
        result = await service.fetch_stories(
            page=page, limit=limit, search=search, sort=sort, type=type,
            identifier=identifier
        )
    except HackerNewsError as e:
        logger.warning("Story listing failed", status_code=e.status_code, error=str(e))
        return _error_response(e)
    return result.model_dump(by_alias=True)


@router.post("/refresh")
async def refresh_stories(
    service: HackerNewsService = Depends(lambda: container.hn_service())
):
    """Invalidate the HackerNews cache and warm the first page."""
    try:
        summary = await service.refresh_cache()
    except HackerNewsError as e:
        logger.error("Cache refresh failed", status_code=e.status_code, error=str(e))
        return _error_response(e, fallback="Failed to refresh cache")
    return JSONResponse(
        content={"success": True, **summary},
        headers={"Cache-Control": "no-store"}
    )


@router.get("/{story_id}")
async def get_story(
    story_id: int,
    service: HackerNewsService = Depends(lambda: container.hn_service())
):
    """Single story by id."""
    try:
        story = await service.fetch_story(story_id)
    except HackerNewsError as e:
        logger.warning("Story fetch failed", story_id=story_id,
                       status_code=e.status_code, error=str(e))
        return _error_response(e)
    return story.model_dump()
