"""Pytest configuration and fixtures for the newsletter API test suite.

Provides:
- In-memory SQLite database (aiosqlite) with tables created per test
- Mock Redis (fakeredis)
- Resend API replaced by an ``httpx.MockTransport`` that records requests
- Fresh tiered rate limiter per test (slowapi decorator limiter disabled)
- Subscriber factory fixture
"""

import json
import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime
from typing import Any

import fakeredis.aioredis
import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.core.database import get_async_session
from app.core.deps import get_db, get_email_service, get_redis
from app.core.rate_limit import TieredRateLimiter, get_rate_limiter, limiter
from app.core.security import UnsubscribeTokenService, get_token_service
from app.main import app
from app.models.base import Base
from app.models.newsletter_subscriber import NewsletterSubscriber, SubscriberStatus
from app.services.email_service import EmailService
from app.services.subscriber_cache import SubscriberCache

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
API_PREFIX = settings.api_v1_prefix
API_KEY_HEADERS = {"Authorization": f"Bearer {settings.newsletter_api_key}"}
USER_AGENT = "Mozilla/5.0 (pytest)"

# ---------------------------------------------------------------------------
# Disable the decorator-style limiter globally for tests
# ---------------------------------------------------------------------------
limiter.enabled = False


async def _no_sleep(_seconds: float) -> None:
    return None


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh in-memory database for each test.

    StaticPool keeps the single connection alive so every session sees the
    same in-memory database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session for test setup and assertions."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Fake Redis
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_redis() -> fakeredis.aioredis.FakeRedis:
    """Provide a fresh fakeredis instance per test."""
    return fakeredis.aioredis.FakeRedis(decode_responses=True)


@pytest.fixture
def cache(fake_redis: fakeredis.aioredis.FakeRedis) -> SubscriberCache:
    return SubscriberCache(fake_redis)


# ---------------------------------------------------------------------------
# Tokens, rate limiter
# ---------------------------------------------------------------------------


@pytest.fixture
def token_service() -> UnsubscribeTokenService:
    return get_token_service()


@pytest.fixture
def rate_limiter() -> TieredRateLimiter:
    """Per-test limiter with the production tier ceilings."""
    return TieredRateLimiter(
        "memory://",
        global_limit=settings.rate_limit_global,
        per_ip_limit=settings.rate_limit_per_ip,
        strict_limit=settings.rate_limit_strict,
        unsubscribe_limit=settings.rate_limit_unsubscribe,
    )


# ---------------------------------------------------------------------------
# Email (Resend API mocked at the transport level)
# ---------------------------------------------------------------------------


class ResendRecorder:
    """Records payloads posted to the Resend API and answers with canned responses."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.fail_for: set[str] = set()
        self.status_code = 200

    @property
    def payloads(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]

    def sent_to(self, email: str) -> list[dict[str, Any]]:
        return [p for p in self.payloads if p["to"] == [email]]

    def categories(self) -> list[str]:
        return [p["tags"][0]["value"] for p in self.payloads]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        payload = json.loads(request.content)
        if set(payload["to"]) & self.fail_for:
            return httpx.Response(422, json={"message": "Invalid recipient"})
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"message": "Upstream error"})
        return httpx.Response(200, json={"id": f"email-{len(self.requests)}"})


@pytest.fixture
def resend() -> ResendRecorder:
    return ResendRecorder()


@pytest.fixture
def email_service(resend: ResendRecorder) -> EmailService:
    return EmailService(
        api_key="re_test_key",
        max_retries=2,
        base_delay=0.0,
        transport=httpx.MockTransport(resend.handler),
        sleep=_no_sleep,
    )


# ---------------------------------------------------------------------------
# API clients
# ---------------------------------------------------------------------------


def _install_overrides(
    session_factory: async_sessionmaker[AsyncSession],
    fake_redis: fakeredis.aioredis.FakeRedis,
    email_service: EmailService,
    rate_limiter: TieredRateLimiter,
) -> None:
    async def _override_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as s:
            yield s

    async def _override_redis() -> AsyncGenerator[fakeredis.aioredis.FakeRedis, None]:
        yield fake_redis

    app.dependency_overrides[get_async_session] = _override_session
    app.dependency_overrides[get_db] = _override_session
    app.dependency_overrides[get_redis] = _override_redis
    app.dependency_overrides[get_email_service] = lambda: email_service
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    fake_redis: fakeredis.aioredis.FakeRedis,
    email_service: EmailService,
    rate_limiter: TieredRateLimiter,
) -> AsyncGenerator[AsyncClient, None]:
    """Async test client with database, Redis, email and limiter overridden."""
    _install_overrides(session_factory, fake_redis, email_service, rate_limiter)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"User-Agent": USER_AGENT},
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def tolerant_client(
    session_factory: async_sessionmaker[AsyncSession],
    fake_redis: fakeredis.aioredis.FakeRedis,
    email_service: EmailService,
    rate_limiter: TieredRateLimiter,
) -> AsyncGenerator[AsyncClient, None]:
    """Like ``client`` but returns 500 responses instead of re-raising app errors."""
    _install_overrides(session_factory, fake_redis, email_service, rate_limiter)

    async with AsyncClient(
        transport=ASGITransport(app=app, raise_app_exceptions=False),
        base_url="http://test",
        headers={"User-Agent": USER_AGENT},
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def plain_client() -> AsyncGenerator[AsyncClient, None]:
    """Minimal async test client with NO dependency overrides."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ---------------------------------------------------------------------------
# Model Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def subscriber_factory(db_session: AsyncSession) -> Callable[..., Any]:
    """Factory that creates NewsletterSubscriber rows in the test database."""

    async def _create(
        *,
        email: str = "jane@example.com",
        name: str = "Jane Doe",
        status: SubscriberStatus = SubscriberStatus.ACTIVE,
        source: str = "newsletter-form",
    ) -> NewsletterSubscriber:
        subscriber = NewsletterSubscriber(
            id=uuid.uuid4(),
            email=email,
            name=name,
            status=status,
            source=source,
            subscribed_at=datetime.now(UTC),
            unsubscribed_at=datetime.now(UTC) if status != SubscriberStatus.ACTIVE else None,
        )
        db_session.add(subscriber)
        await db_session.commit()
        await db_session.refresh(subscriber)
        return subscriber

    return _create
