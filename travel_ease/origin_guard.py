"""
Origin allow-list enforcement.

Registered after the CORS middleware so it runs in front of it: a request
from a disallowed browser origin is refused before it reaches any route
handler, and the refusal carries no CORS headers.
"""

from typing import Iterable

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from travel_ease.models import ErrorResponse

logger = structlog.get_logger(__name__)


def is_origin_allowed(origin: str, allowed_origins: Iterable[str]) -> bool:
    """Check a declared origin against the allow-list."""
    return origin.rstrip("/") in set(allowed_origins)


def register_origin_guard(app: FastAPI, allowed_origins: Iterable[str]) -> None:
    """Reject requests whose Origin header is present but not allow-listed."""
    allowed = frozenset(o.rstrip("/") for o in allowed_origins)

    @app.middleware("http")
    async def origin_guard_middleware(request: Request, call_next):
        origin = request.headers.get("origin")

        # Non-browser clients send no Origin header
        if origin is None or is_origin_allowed(origin, allowed):
            return await call_next(request)

        logger.warning(
            "Rejected request from disallowed origin",
            origin=origin,
            method=request.method,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content=ErrorResponse(
                error="Not allowed by CORS",
                status_code=status.HTTP_403_FORBIDDEN,
            ).dict(),
        )
