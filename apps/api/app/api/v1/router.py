"""API v1 router combining all route modules."""

from typing import Any

from fastapi import APIRouter

from app.api.v1 import health, newsletter
from app.schemas.common import ErrorResponse

# Documented error bodies shared by the newsletter endpoints
ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Invalid or unsafe input"},
    429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
    503: {"model": ErrorResponse, "description": "Dependency unavailable"},
}

api_router = APIRouter()

# Include health check routes (no prefix)
api_router.include_router(health.router)

# Newsletter (public subscribe/unsubscribe, API key for status, broadcast and stats)
api_router.include_router(
    newsletter.router,
    prefix="/newsletter",
    tags=["newsletter"],
    responses=ERROR_RESPONSES,
)
