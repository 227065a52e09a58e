"""Shared-secret authentication for the cron trigger routes."""

import secrets
from datetime import datetime, timezone

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.logging import get_logger

logger = get_logger(__name__)

# Routes that require the cron bearer secret
PROTECTED_PATHS = frozenset([
    "/api/hackernews/refresh",
])

# Path prefixes that require the cron bearer secret
PROTECTED_PREFIXES = (
    "/api/cron/",
)

NO_STORE_HEADERS = {"Cache-Control": "no-store"}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": message,
            "timestamp": datetime.now(timezone.utc).isoformat()
        },
        headers=NO_STORE_HEADERS
    )


class CronAuthMiddleware(BaseHTTPMiddleware):
    """Require ``Authorization: Bearer <CRON_SECRET_KEY>`` on trigger routes.

    500 when no secret is configured, 401 when the header is missing or wrong.
    """

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if not self._is_protected_path(path):
            return await call_next(request)

        secret = container.settings().cron_secret_key
        if not secret:
            logger.error("CRON_SECRET_KEY is not set, rejecting trigger", path=path)
            return _error(500, "Server configuration error")

        header = request.headers.get("authorization", "")
        if not secrets.compare_digest(header.encode(), f"Bearer {secret}".encode()):
            logger.warning("Unauthorized trigger attempt", path=path)
            return _error(401, "Unauthorized")

        return await call_next(request)

    def _is_protected_path(self, path: str) -> bool:
        """Check if path needs the cron secret."""
        if path in PROTECTED_PATHS:
            return True

        for prefix in PROTECTED_PREFIXES:
            if path.startswith(prefix):
                return True

        return False
