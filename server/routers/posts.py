"""Engagement routes: post views, shares and share-link clicks.

Writes only bump the key-value counters; the reconciliation jobs fold them
into the system of record.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from core.container import container
from core.database import Database
from core.logging import get_logger
from services.counters import SUPPORTED_PLATFORMS, ShareCounter, ViewCounter

logger = get_logger(__name__)
router = APIRouter(prefix="/api/posts", tags=["posts"])


class PlatformBody(BaseModel):
    platform: Optional[str] = None


def _platform_error(body: Optional[PlatformBody]) -> Optional[JSONResponse]:
    if body is None or not body.platform:
        return JSONResponse(status_code=400, content={"error": "Platform is required"})
    if body.platform not in SUPPORTED_PLATFORMS:
        return JSONResponse(status_code=400, content={"error": "Unsupported platform"})
    return None


@router.post("/{post_id}/views")
async def record_view(
    post_id: str,
    views: ViewCounter = Depends(lambda: container.view_counter())
):
    """Count one view of a post."""
    view_count = await views.increment(post_id)
    logger.debug("Post view recorded", post_id=post_id, view_count=view_count)
    return {"success": True, "viewCount": view_count}


@router.post("/{post_id}/share")
async def record_share(
    post_id: str,
    body: Optional[PlatformBody] = Body(default=None),
    shares: ShareCounter = Depends(lambda: container.share_counter())
):
    """Count one share of a post to a platform."""
    error = _platform_error(body)
    if error is not None:
        return error
    return {"shares": await shares.increment_share(post_id, body.platform)}


@router.post("/{post_id}/share/click")
async def record_share_click(
    post_id: str,
    body: Optional[PlatformBody] = Body(default=None),
    shares: ShareCounter = Depends(lambda: container.share_counter())
):
    """Count one click on a shared link."""
    error = _platform_error(body)
    if error is not None:
        return error
    return {"clicks": await shares.increment_click(post_id, body.platform)}


@router.get("/{post_id}/share/stats")
async def get_share_stats(
    post_id: str,
    shares: ShareCounter = Depends(lambda: container.share_counter()),
    database: Database = Depends(lambda: container.database())
):
    """Per-platform totals: synced aggregates plus counts not yet synced."""
    try:
        stored = await database.get_share_stats([post_id])
    except (SQLAlchemyError, RuntimeError) as e:
        logger.error("Share stats lookup failed", post_id=post_id, error=str(e))
        return JSONResponse(status_code=500,
                            content={"error": "Failed to fetch share statistics"})

    pending = await shares.get_all_stats(post_id)
    return [
        {
            "platform": platform,
            "shares": stored.get((post_id, platform), (0, 0))[0] + pending[platform]["shares"],
            "clicks": stored.get((post_id, platform), (0, 0))[1] + pending[platform]["clicks"],
        }
        for platform in SUPPORTED_PLATFORMS
    ]
