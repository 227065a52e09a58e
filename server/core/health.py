"""Health check utilities for the /health endpoint.

Tracks uptime and checks the key-value store and the system of record.
"""
import time
from typing import Dict, Any, TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from redis.exceptions import RedisError

if TYPE_CHECKING:
    from core.config import Settings
    from core.database import Database
    from core.store import KeyValueStore

# Module-level startup time tracking
_startup_time: float = 0.0


def set_startup_time() -> None:
    """Record the application startup time. Call once during lifespan startup."""
    global _startup_time
    _startup_time = time.time()


def get_uptime() -> float:
    """Get uptime in seconds since startup."""
    return time.time() - _startup_time if _startup_time else 0.0


async def check_database(database: "Database") -> bool:
    """Check database connectivity."""
    try:
        async with database.get_session() as session:
            await session.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, RuntimeError):
        return False


async def check_store(store: "KeyValueStore") -> bool:
    """Check key-value store connectivity."""
    try:
        return bool(await store.ping())
    except (RedisError, RuntimeError):
        return False


async def get_health_status(
    database: "Database",
    store: "KeyValueStore",
    settings: "Settings"
) -> Dict[str, Any]:
    """Get health status for /health endpoint.

    Returns:
        Dict containing status, uptime and per-dependency checks.
    """
    db_healthy = await check_database(database)
    store_healthy = await check_store(store)

    overall_status = "healthy" if (db_healthy and store_healthy) else "degraded"

    return {
        "status": overall_status,
        "uptime_seconds": round(get_uptime(), 1),
        "environment": "development" if settings.is_development else "production",
        "checks": {
            "database": db_healthy,
            "store": store_healthy,
        },
        "features": {
            "scheduler": settings.scheduler_enabled,
            "rate_limit_fail_open": settings.rate_limit_fail_open,
        },
    }
