"""Tests for the SQLAlchemy subscriber store."""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.newsletter_subscriber import NewsletterSubscriber, SubscriberStatus
from app.services.subscriber_store import SQLAlchemySubscriberStore


def _candidate(email: str = "jane@example.com") -> NewsletterSubscriber:
    return NewsletterSubscriber(
        id=uuid.uuid4(),
        email=email,
        name="Jane Doe",
        status=SubscriberStatus.ACTIVE,
        source="homepage",
        subscribed_at=datetime.now(UTC),
    )


@pytest.mark.asyncio
async def test_create_if_absent_creates(db_session: AsyncSession) -> None:
    store = SQLAlchemySubscriberStore(db_session)

    stored, created = await store.create_if_absent(_candidate())

    assert created is True
    assert stored.email == "jane@example.com"
    assert (await store.get_by_email("jane@example.com")) is not None


@pytest.mark.asyncio
async def test_create_if_absent_returns_existing(
    db_session: AsyncSession, subscriber_factory: Callable[..., Any]
) -> None:
    existing = await subscriber_factory()
    store = SQLAlchemySubscriberStore(db_session)

    stored, created = await store.create_if_absent(_candidate())

    assert created is False
    assert stored.id == existing.id


@pytest.mark.asyncio
async def test_create_if_absent_resolves_insert_race(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """A concurrent insert that lands first makes the loser return the winner's row."""
    async with session_factory() as winner_session:
        winner, _ = await SQLAlchemySubscriberStore(winner_session).create_if_absent(_candidate())
        winner_id = winner.id

    async with session_factory() as session:
        store = SQLAlchemySubscriberStore(session)

        async def _stale_lookup(email: str) -> NewsletterSubscriber | None:
            # First lookup misses, as if it ran before the winner committed
            store.get_by_email = original  # type: ignore[method-assign]
            return None

        original = store.get_by_email
        store.get_by_email = _stale_lookup  # type: ignore[method-assign]

        stored, created = await store.create_if_absent(_candidate())

    assert created is False
    assert stored.id == winner_id


@pytest.mark.asyncio
async def test_mark_unsubscribed_keeps_record(
    db_session: AsyncSession, subscriber_factory: Callable[..., Any]
) -> None:
    subscriber = await subscriber_factory()
    store = SQLAlchemySubscriberStore(db_session)

    await store.mark_unsubscribed(subscriber, ip_hash="abc123")

    reloaded = await store.get_by_email("jane@example.com")
    assert reloaded is not None
    assert reloaded.status == SubscriberStatus.UNSUBSCRIBED
    assert reloaded.unsubscribed_at is not None
    assert reloaded.unsubscribe_ip_hash == "abc123"


@pytest.mark.asyncio
async def test_reactivate_clears_unsubscribe_metadata(
    db_session: AsyncSession, subscriber_factory: Callable[..., Any]
) -> None:
    subscriber = await subscriber_factory(status=SubscriberStatus.UNSUBSCRIBED)
    store = SQLAlchemySubscriberStore(db_session)

    updated = await store.reactivate(
        subscriber,
        name="Jane Smith",
        source="insights",
        ip_hash="def456",
        user_agent="Mozilla/5.0",
        unsubscribe_token="token",
    )

    assert updated.status == SubscriberStatus.ACTIVE
    assert updated.name == "Jane Smith"
    assert updated.source == "insights"
    assert updated.unsubscribed_at is None
    assert updated.unsubscribe_token == "token"


@pytest.mark.asyncio
async def test_iter_active_pages_only_active(
    db_session: AsyncSession, subscriber_factory: Callable[..., Any]
) -> None:
    for i in range(5):
        await subscriber_factory(email=f"user{i}@example.com")
    await subscriber_factory(email="gone@example.com", status=SubscriberStatus.UNSUBSCRIBED)
    await subscriber_factory(email="bounced@example.com", status=SubscriberStatus.BOUNCED)
    store = SQLAlchemySubscriberStore(db_session)

    batches = [batch async for batch in store.iter_active(batch_size=2)]

    assert [len(b) for b in batches] == [2, 2, 1]
    emails = {s.email for batch in batches for s in batch}
    assert emails == {f"user{i}@example.com" for i in range(5)}


@pytest.mark.asyncio
async def test_iter_active_empty(db_session: AsyncSession) -> None:
    store = SQLAlchemySubscriberStore(db_session)
    assert [batch async for batch in store.iter_active()] == []


@pytest.mark.asyncio
async def test_stats_and_count(
    db_session: AsyncSession, subscriber_factory: Callable[..., Any]
) -> None:
    await subscriber_factory(email="a@example.com", source="homepage")
    await subscriber_factory(email="b@example.com", source="homepage")
    await subscriber_factory(email="c@example.com", source="insights")
    await subscriber_factory(email="d@example.com", status=SubscriberStatus.UNSUBSCRIBED)
    store = SQLAlchemySubscriberStore(db_session)

    stats = await store.stats()

    assert stats["total"] == 4
    assert stats["byStatus"] == {"active": 3, "unsubscribed": 1, "bounced": 0}
    assert stats["activeBySource"] == {"homepage": 2, "insights": 1}
    assert await store.count_active() == 3
