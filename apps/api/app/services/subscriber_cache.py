"""Redis read-through cache for subscriber lookups and email validation.

The cache is an accelerator only: every Redis failure is logged and reported
as a miss, so callers always fall back to the subscriber store.
"""

import json
import logging
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.config import settings
from app.services.validation import EmailValidationResult

logger = logging.getLogger(__name__)

KEY_PREFIX = "newsletter"
SUBSCRIBER_COUNT_KEY = f"{KEY_PREFIX}:subscriber_count"


def _status_key(email: str) -> str:
    return f"{KEY_PREFIX}:subscriber_status:{email}"


def _exists_key(email: str) -> str:
    return f"{KEY_PREFIX}:subscriber_exists:{email}"


def _validation_key(email: str) -> str:
    return f"{KEY_PREFIX}:email_validation:{email}"


class SubscriberCache:
    """Caches subscriber status, existence, count and email-validation results."""

    def __init__(
        self,
        redis: aioredis.Redis,
        *,
        status_ttl: int = settings.cache_subscriber_status_ttl,
        exists_ttl: int = settings.cache_subscriber_exists_ttl,
        validation_ttl: int = settings.cache_email_validation_ttl,
    ) -> None:
        self.redis = redis
        self.status_ttl = status_ttl
        self.exists_ttl = exists_ttl
        self.validation_ttl = validation_ttl

    # --- primitives ---

    async def get(self, key: str) -> str | None:
        try:
            return await self.redis.get(key)
        except RedisError:
            logger.warning("Cache read failed for %s", key, exc_info=True)
            return None

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            await self.redis.set(key, value, ex=ttl)
        except RedisError:
            logger.warning("Cache write failed for %s", key, exc_info=True)

    async def invalidate(self, email: str) -> None:
        """Drop every cached entry that depends on ``email``'s subscriber record."""
        try:
            await self.redis.delete(_status_key(email), _exists_key(email), SUBSCRIBER_COUNT_KEY)
        except RedisError:
            logger.warning("Cache invalidation failed", exc_info=True)

    # --- subscriber status ---

    async def get_status(self, email: str) -> str | None:
        return await self.get(_status_key(email))

    async def set_status(self, email: str, status: str) -> None:
        await self.set(_status_key(email), status, self.status_ttl)

    async def get_exists(self, email: str) -> bool | None:
        value = await self.get(_exists_key(email))
        if value is None:
            return None
        return value == "1"

    async def set_exists(self, email: str, exists: bool) -> None:
        await self.set(_exists_key(email), "1" if exists else "0", self.exists_ttl)

    async def get_count(self) -> int | None:
        value = await self.get(SUBSCRIBER_COUNT_KEY)
        return int(value) if value is not None else None

    async def set_count(self, count: int) -> None:
        await self.set(SUBSCRIBER_COUNT_KEY, str(count), self.exists_ttl)

    # --- email validation ---

    async def get_email_validation(self, email: str) -> EmailValidationResult | None:
        raw = await self.get(_validation_key(email))
        if raw is None:
            return None
        try:
            data: dict[str, Any] = json.loads(raw)
        except ValueError:
            logger.warning("Discarding malformed cached validation result")
            return None
        return EmailValidationResult.from_dict(data)

    async def set_email_validation(self, email: str, result: EmailValidationResult) -> None:
        await self.set(_validation_key(email), json.dumps(result.to_dict()), self.validation_ttl)
