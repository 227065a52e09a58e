"""
FastAPI entry point for the HackerNews ingestion and cache reconciliation service.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, ORJSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.health import get_health_status, set_startup_time
from core.logging import configure_logging, get_logger
from middleware.auth import CronAuthMiddleware
from routers import cron, hackernews, posts
from services.scheduler import register_reconciliation_jobs, shutdown_scheduler, start_scheduler

# Initialize settings and logging
settings = container.settings()
configure_logging(settings)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    # Startup
    logger.info("Starting HackerNews ingestion service")
    set_startup_time()

    await container.store().startup()
    await container.database().startup()
    await container.hn_api_client().startup()

    if settings.scheduler_enabled:
        registered = register_reconciliation_jobs(container.jobs(), settings.cron_schedules)
        start_scheduler()
        logger.info("Reconciliation jobs scheduled", jobs=registered)

    logger.info("Services started successfully")
    yield

    # Shutdown
    if settings.scheduler_enabled:
        shutdown_scheduler()
    await container.hn_api_client().shutdown()
    await container.database().shutdown()
    await container.store().shutdown()
    logger.info("Services shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="HackerNews Ingestion Service",
    version="1.0.0",
    description="Rate-limited HackerNews ingestion over a two-tier Redis cache, with cache reconciliation jobs",
    lifespan=lifespan,
    default_response_class=ORJSONResponse
)


class CatchAllExceptionsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Unhandled exception: {type(e).__name__}: {str(e)}",
                         path=request.url.path, exc_info=True)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Internal server error"}
            )


# Middleware added last runs first: catch-all wraps auth, CORS wraps both
app.add_middleware(CronAuthMiddleware)
app.add_middleware(CatchAllExceptionsMiddleware)

logger.info("Configuring CORS middleware",
            origins_count=len(settings.cors_origins),
            origins=settings.cors_origins)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Include routers
app.include_router(hackernews.router)
app.include_router(cron.router)
app.include_router(posts.router)


@app.get("/health")
async def health_check():
    """Store and database connectivity plus uptime."""
    health = await get_health_status(container.database(), container.store(), settings)
    return {
        "service": "hackernews-ingestion",
        "version": app.version,
        **health
    }


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting HackerNews ingestion service",
                host=settings.host, port=settings.port, debug=settings.debug)
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        reload_dirs=["."] if settings.debug else None,
        reload_excludes=["*.pyc", "__pycache__", "*.log", "*.db"] if settings.debug else None,
        workers=1 if settings.debug else settings.workers
    )
