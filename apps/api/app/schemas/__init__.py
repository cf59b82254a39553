"""Pydantic schemas for request/response validation."""

from app.schemas.common import ErrorResponse, HealthResponse
from app.schemas.newsletter import (
    SubscribeRequest,
    SubscribeResponse,
    UnsubscribeRequest,
    UnsubscribeResponse,
)

__all__ = [
    "HealthResponse",
    "ErrorResponse",
    "SubscribeRequest",
    "SubscribeResponse",
    "UnsubscribeRequest",
    "UnsubscribeResponse",
]
