"""Cron trigger routes for the cache reconciliation jobs.

Every route here sits behind ``CronAuthMiddleware``.
"""

from typing import Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from core.container import container
from core.logging import get_logger
from services.reconciliation import ReconciliationJob
from services.scheduler import get_all_jobs

logger = get_logger(__name__)
router = APIRouter(prefix="/api/cron", tags=["cron"])

NO_STORE_HEADERS = {"Cache-Control": "no-store"}


@router.get("/jobs")
async def list_jobs(
    jobs: Dict[str, ReconciliationJob] = Depends(lambda: container.jobs())
):
    """Known jobs and their scheduled next runs."""
    return JSONResponse(
        content={
            "jobs": sorted(jobs),
            "scheduled": get_all_jobs()
        },
        headers=NO_STORE_HEADERS
    )


@router.post("/{job_name}")
async def trigger_job(
    job_name: str,
    jobs: Dict[str, ReconciliationJob] = Depends(lambda: container.jobs())
):
    """Run one reconciliation job now. 200 on success, 500 otherwise."""
    job = jobs.get(job_name.replace("-", "_"))
    if job is None:
        return JSONResponse(
            status_code=404,
            content={"error": f"Unknown job: {job_name}"},
            headers=NO_STORE_HEADERS
        )

    logger.info("Manual job trigger", job=job.name)
    result = await job.run()
    return JSONResponse(
        status_code=200 if result.success else 500,
        content=result.to_dict(),
        headers=NO_STORE_HEADERS
    )
