"""Pydantic schemas for newsletter subscription and broadcast."""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.schemas.common import BaseSchema

SubscriptionSource = Literal[
    "newsletter-form",
    "get-notified",
    "subscribe-updates",
    "homepage",
    "insights",
]


class CamelSchema(BaseSchema):
    """Schema exchanged with the website as camelCase JSON."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


# --- Subscribe ---


class RequestMetadata(CamelSchema):
    user_agent: str | None = Field(default=None, max_length=512)
    timestamp: str | None = None


class ConsentOptions(CamelSchema):
    gdpr_applies: bool = True
    ccpa_applies: bool = True
    consent_method: Literal["checkbox", "opt_in", "implied"] = "opt_in"
    data_processing_purposes: list[str] = Field(
        default_factory=lambda: [
            "newsletter_delivery",
            "content_personalization",
            "service_improvement",
        ]
    )


class SubscribeRequest(CamelSchema):
    """Subscription payload.

    Only shape and length are checked here; character-level checks happen in
    ``app.services.validation`` so that unsafe input gets a dedicated error code.
    """

    name: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=1, max_length=254)
    source: SubscriptionSource = "newsletter-form"
    metadata: RequestMetadata | None = None
    consent: ConsentOptions | None = None
    csrf_token: str | None = None


class SubscribeResponse(CamelSchema):
    success: bool = True
    message: str
    subscription_id: UUID | None = None
    is_existing_subscriber: bool | None = None
    is_resubscription: bool | None = None


class ConsentStatus(CamelSchema):
    given: bool
    method: str
    recorded_at: datetime
    withdrawn_at: datetime | None = None


class SubscriptionStatusResponse(CamelSchema):
    success: bool = True
    subscribed: bool
    status: str | None = None
    subscribed_at: datetime | None = None
    source: str | None = None
    consent: ConsentStatus | None = None
    message: str | None = None


class CSRFTokenResponse(CamelSchema):
    success: bool = True
    csrf_token: str
    message: str = "CSRF token generated"


# --- Unsubscribe ---


class UnsubscribeRequest(CamelSchema):
    """Unsubscribe payload; ``token`` is required on the emailed-link path."""

    email: str | None = Field(default=None, max_length=254)
    token: str | None = Field(default=None, max_length=512)


class UnsubscribeResponse(CamelSchema):
    success: bool = True
    message: str
    already_unsubscribed: bool | None = None


# --- Broadcast ---


class ArticleNotification(CamelSchema):
    article_id: str
    title: str
    excerpt: str
    slug: str
    publish_date: str
    category: str
    author: str | None = None
    read_time_minutes: int | None = None


class SendArticleRequest(CamelSchema):
    """Broadcast payload; ``article`` is checked field by field in the route."""

    article: dict[str, Any] | None = None
    test_mode: bool = False
    test_email: str | None = Field(default=None, max_length=254)


class BroadcastStats(CamelSchema):
    total_subscribers: int = 0
    success_count: int = 0
    failure_count: int = 0


class SendArticleResponse(CamelSchema):
    success: bool
    message: str
    stats: BroadcastStats | None = None
    errors: list[str] | None = None
    test_mode: bool | None = None


class InfrastructureTestRequest(CamelSchema):
    """Payload for the email infrastructure check."""

    test_email: str | None = Field(default=None, max_length=254)
    test_type: str = "basic"


class SubscriberStatsResponse(CamelSchema):
    success: bool = True
    total: int
    active_count: int
    by_status: dict[str, int]
    active_by_source: dict[str, int]
