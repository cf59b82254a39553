"""Dependency injection for FastAPI routes."""

from collections.abc import AsyncGenerator
from typing import Annotated

import redis.asyncio as aioredis
from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_async_session
from app.core.exceptions import AuthError
from app.core.logging_config import log_security_event
from app.core.rate_limit import get_client_ip
from app.core.security import UnsubscribeTokenService, get_token_service, verify_api_key
from app.services.broadcast_service import BroadcastService
from app.services.consent_service import ConsentService
from app.services.email_service import EmailService
from app.services.newsletter_service import NewsletterService
from app.services.subscriber_cache import SubscriberCache
from app.services.subscriber_store import SQLAlchemySubscriberStore


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Alias for get_async_session used by the route dependencies."""
    async for session in get_async_session():
        yield session


# Shared Redis connection pool
_redis_pool: aioredis.ConnectionPool | None = None


def _get_redis_pool() -> aioredis.ConnectionPool:
    global _redis_pool  # noqa: PLW0603
    if _redis_pool is None:
        _redis_pool = aioredis.ConnectionPool.from_url(
            str(settings.redis_url), decode_responses=True
        )
    return _redis_pool


async def get_redis() -> AsyncGenerator[aioredis.Redis, None]:
    """Yield a Redis client from the shared connection pool."""
    pool = _get_redis_pool()
    r = aioredis.Redis(connection_pool=pool)
    try:
        yield r
    finally:
        await r.aclose()


# Database session dependency
DBSession = Annotated[AsyncSession, Depends(get_db)]
RedisClient = Annotated[aioredis.Redis, Depends(get_redis)]


def get_email_service() -> EmailService:
    return EmailService()


def get_subscriber_cache(redis: RedisClient) -> SubscriberCache:
    return SubscriberCache(redis)


def get_newsletter_service(
    db: DBSession,
    cache: Annotated[SubscriberCache, Depends(get_subscriber_cache)],
    email_service: Annotated[EmailService, Depends(get_email_service)],
    token_service: Annotated[UnsubscribeTokenService, Depends(get_token_service)],
) -> NewsletterService:
    return NewsletterService(
        SQLAlchemySubscriberStore(db),
        cache,
        token_service=token_service,
        consent_service=ConsentService(db),
        email_service=email_service,
        send_welcome_email=settings.newsletter_send_welcome_email,
    )


def get_broadcast_service(
    db: DBSession,
    email_service: Annotated[EmailService, Depends(get_email_service)],
    token_service: Annotated[UnsubscribeTokenService, Depends(get_token_service)],
) -> BroadcastService:
    return BroadcastService(
        SQLAlchemySubscriberStore(db),
        email_service,
        token_service,
        batch_size=settings.newsletter_batch_size,
        batch_delay=settings.newsletter_batch_delay_seconds,
    )


async def require_api_key(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Reject requests without a valid ``Bearer`` newsletter API key."""
    if not verify_api_key(authorization):
        log_security_event(
            "UNAUTHORIZED_ADMIN_REQUEST",
            ip=get_client_ip(request),
            path=request.url.path,
        )
        raise AuthError()


NewsletterServiceDep = Annotated[NewsletterService, Depends(get_newsletter_service)]
BroadcastServiceDep = Annotated[BroadcastService, Depends(get_broadcast_service)]

__all__ = [
    "BroadcastServiceDep",
    "DBSession",
    "NewsletterServiceDep",
    "RedisClient",
    "get_broadcast_service",
    "get_db",
    "get_email_service",
    "get_newsletter_service",
    "get_redis",
    "get_subscriber_cache",
    "require_api_key",
]
