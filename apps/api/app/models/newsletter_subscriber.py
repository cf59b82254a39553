"""NewsletterSubscriber model for newsletter recipients."""

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class SubscriberStatus(str, enum.Enum):
    """Delivery status of a subscriber. Only ACTIVE receives notifications."""

    ACTIVE = "active"
    UNSUBSCRIBED = "unsubscribed"
    BOUNCED = "bounced"


class NewsletterSubscriber(Base):
    """One newsletter recipient and their status history.

    Records are never deleted: unsubscribing flips ``status`` and stamps the
    unsubscribe metadata so the row stays available for audit.
    """

    __tablename__ = "newsletter_subscribers"
    __table_args__ = (
        Index("ix_newsletter_subscribers_status_subscribed_at", "status", "subscribed_at"),
    )

    email: Mapped[str] = mapped_column(
        String(254),
        nullable=False,
        unique=True,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    status: Mapped[SubscriberStatus] = mapped_column(
        Enum(
            SubscriberStatus,
            name="subscriber_status",
            values_callable=lambda x: [e.value for e in x],
        ),
        default=SubscriberStatus.ACTIVE,
        nullable=False,
    )
    source: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="newsletter-form",
        index=True,
    )
    subscribed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    unsubscribe_token: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Request metadata (IPs are stored hashed)
    ip_hash: Mapped[str | None] = mapped_column(String(16), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    unsubscribed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    unsubscribe_ip_hash: Mapped[str | None] = mapped_column(String(16), nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status == SubscriberStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<NewsletterSubscriber {self.email} ({self.status.value})>"
