"""Subscriber persistence.

``SubscriberStore`` is the interface the newsletter service depends on;
``SQLAlchemySubscriberStore`` is the database-backed implementation. The
store is the source of truth; caching happens a layer above it.
"""

import logging
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.newsletter_subscriber import NewsletterSubscriber, SubscriberStatus

logger = logging.getLogger(__name__)


class SubscriberStore(Protocol):
    """Subscriber repository interface."""

    async def get_by_email(self, email: str) -> NewsletterSubscriber | None:
        """Get subscriber by normalized email."""
        ...

    async def create_if_absent(
        self, subscriber: NewsletterSubscriber
    ) -> tuple[NewsletterSubscriber, bool]:
        """Insert ``subscriber`` unless its email already exists.

        Returns ``(stored, created)``; when ``created`` is False ``stored`` is
        the pre-existing record.
        """
        ...

    async def reactivate(
        self,
        subscriber: NewsletterSubscriber,
        *,
        name: str,
        source: str,
        ip_hash: str | None,
        user_agent: str | None,
        unsubscribe_token: str,
    ) -> NewsletterSubscriber:
        ...

    async def mark_unsubscribed(
        self, subscriber: NewsletterSubscriber, *, ip_hash: str | None = None
    ) -> NewsletterSubscriber:
        ...

    def iter_active(self, batch_size: int = 50) -> AsyncIterator[list[NewsletterSubscriber]]:
        """Yield active subscribers in batches."""
        ...

    async def count_active(self) -> int:
        ...

    async def stats(self) -> dict[str, Any]:
        ...


class SQLAlchemySubscriberStore:
    """Subscriber store backed by the ``newsletter_subscribers`` table."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_by_email(self, email: str) -> NewsletterSubscriber | None:
        stmt = select(NewsletterSubscriber).where(NewsletterSubscriber.email == email)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def create_if_absent(
        self, subscriber: NewsletterSubscriber
    ) -> tuple[NewsletterSubscriber, bool]:
        existing = await self.get_by_email(subscriber.email)
        if existing is not None:
            return existing, False

        self.db.add(subscriber)
        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent insert for the same email
            await self.db.rollback()
            existing = await self.get_by_email(subscriber.email)
            if existing is None:
                raise
            logger.info("Concurrent subscription detected for existing email")
            return existing, False

        await self.db.refresh(subscriber)
        return subscriber, True

    async def reactivate(
        self,
        subscriber: NewsletterSubscriber,
        *,
        name: str,
        source: str,
        ip_hash: str | None,
        user_agent: str | None,
        unsubscribe_token: str,
    ) -> NewsletterSubscriber:
        subscriber.status = SubscriberStatus.ACTIVE
        subscriber.name = name
        subscriber.source = source
        subscriber.subscribed_at = datetime.now(UTC)
        subscriber.ip_hash = ip_hash
        subscriber.user_agent = user_agent
        subscriber.unsubscribe_token = unsubscribe_token
        subscriber.unsubscribed_at = None
        subscriber.unsubscribe_ip_hash = None
        await self.db.commit()
        await self.db.refresh(subscriber)
        return subscriber

    async def mark_unsubscribed(
        self, subscriber: NewsletterSubscriber, *, ip_hash: str | None = None
    ) -> NewsletterSubscriber:
        subscriber.status = SubscriberStatus.UNSUBSCRIBED
        subscriber.unsubscribed_at = datetime.now(UTC)
        subscriber.unsubscribe_ip_hash = ip_hash
        await self.db.commit()
        await self.db.refresh(subscriber)
        return subscriber

    async def iter_active(self, batch_size: int = 50) -> AsyncIterator[list[NewsletterSubscriber]]:
        """Keyset-paginate active subscribers ordered by id."""
        last_id = None
        while True:
            stmt = (
                select(NewsletterSubscriber)
                .where(NewsletterSubscriber.status == SubscriberStatus.ACTIVE)
                .order_by(NewsletterSubscriber.id)
                .limit(batch_size)
            )
            if last_id is not None:
                stmt = stmt.where(NewsletterSubscriber.id > last_id)
            batch = list((await self.db.execute(stmt)).scalars().all())
            if not batch:
                return
            yield batch
            if len(batch) < batch_size:
                return
            last_id = batch[-1].id

    async def count_active(self) -> int:
        stmt = select(func.count()).where(NewsletterSubscriber.status == SubscriberStatus.ACTIVE)
        return (await self.db.execute(stmt)).scalar_one()

    async def stats(self) -> dict[str, Any]:
        """Subscriber totals by status and by source."""
        status_rows = (
            await self.db.execute(
                select(NewsletterSubscriber.status, func.count()).group_by(
                    NewsletterSubscriber.status
                )
            )
        ).all()
        by_status = {s.value: 0 for s in SubscriberStatus}
        for status, count in status_rows:
            by_status[status.value] = count

        source_rows = (
            await self.db.execute(
                select(NewsletterSubscriber.source, func.count())
                .where(NewsletterSubscriber.status == SubscriberStatus.ACTIVE)
                .group_by(NewsletterSubscriber.source)
            )
        ).all()

        return {
            "total": sum(by_status.values()),
            "byStatus": by_status,
            "activeBySource": {source: count for source, count in source_rows},
        }
