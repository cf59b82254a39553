"""Article broadcast to active newsletter subscribers."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from app.core.security import UnsubscribeTokenService
from app.schemas.newsletter import ArticleNotification
from app.services.email_service import EmailResult, EmailService, build_unsubscribe_url
from app.services.subscriber_store import SubscriberStore

logger = logging.getLogger(__name__)

TEST_TYPES = ("basic", "welcome", "article")
TEST_SUBSCRIBER_NAME = "Test User"


@dataclass
class BroadcastResult:
    total_subscribers: int = 0
    success_count: int = 0
    failure_count: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failure_count == 0


class BroadcastService:
    """Sends an article notification to every active subscriber.

    Subscribers are processed in batches: sends within a batch run
    concurrently, and the service pauses between batches to stay under the
    email provider's rate limits.
    """

    def __init__(
        self,
        store: SubscriberStore,
        email_service: EmailService,
        token_service: UnsubscribeTokenService,
        *,
        batch_size: int = 50,
        batch_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.email_service = email_service
        self.token_service = token_service
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self._sleep = sleep

    async def send_article(self, article: ArticleNotification) -> BroadcastResult:
        result = BroadcastResult()
        logger.info("Starting article notification: %s", article.article_id)

        batch_index = 0
        async for batch in self.store.iter_active(self.batch_size):
            if batch_index > 0 and self.batch_delay > 0:
                await self._sleep(self.batch_delay)
            batch_index += 1

            recipients = [(s.email, s.name) for s in batch]
            outcomes = await asyncio.gather(
                *(self._send_one(article, email, name) for email, name in recipients),
                return_exceptions=True,
            )
            for (email, _), outcome in zip(recipients, outcomes, strict=True):
                result.total_subscribers += 1
                if isinstance(outcome, BaseException):
                    result.failure_count += 1
                    result.errors.append(f"{email}: {outcome}")
                elif outcome.success:
                    result.success_count += 1
                else:
                    result.failure_count += 1
                    result.errors.append(f"{email}: {outcome.error}")

            logger.info(
                "Processed batch %s (%s subscribers)", batch_index, len(recipients)
            )

        logger.info(
            "Article notification complete: article=%s total=%s success=%s failed=%s",
            article.article_id,
            result.total_subscribers,
            result.success_count,
            result.failure_count,
        )
        return result

    async def _send_one(
        self, article: ArticleNotification, email: str, name: str | None
    ) -> EmailResult:
        token = self.token_service.generate(email)
        return await self.email_service.send_article_notification(
            article,
            to_email=email,
            subscriber_name=name,
            unsubscribe_url=build_unsubscribe_url(email, token),
        )

    async def send_test(self, article: ArticleNotification, test_email: str) -> EmailResult:
        """Send a single test email describing ``article``."""
        return await self.email_service.send_test_email(
            to_email=test_email, message=article.excerpt
        )

    async def send_infrastructure_test(self, test_type: str, test_email: str) -> EmailResult:
        """Send one of the ``TEST_TYPES`` emails to ``test_email``.

        ``welcome`` and ``article`` render the real templates for a placeholder
        subscriber, with a working unsubscribe link for ``test_email``.
        """
        if test_type not in TEST_TYPES:
            raise ValueError(f"Unknown test type: {test_type}")
        if test_type == "basic":
            return await self.email_service.send_test_email(to_email=test_email)

        unsubscribe_url = build_unsubscribe_url(
            test_email, self.token_service.generate(test_email)
        )
        if test_type == "welcome":
            return await self.email_service.send_welcome_email(
                to_email=test_email,
                subscriber_name=TEST_SUBSCRIBER_NAME,
                unsubscribe_url=unsubscribe_url,
            )
        return await self.email_service.send_article_notification(
            sample_article(),
            to_email=test_email,
            subscriber_name=TEST_SUBSCRIBER_NAME,
            unsubscribe_url=unsubscribe_url,
        )


def sample_article() -> ArticleNotification:
    """Placeholder article used to verify the notification template."""
    now = datetime.now(UTC)
    return ArticleNotification(
        article_id=f"test-article-{int(now.timestamp() * 1000)}",
        title="Test Article: Newsletter Infrastructure Verification",
        excerpt=(
            "This is a test article notification to verify that the newsletter email "
            "infrastructure is working correctly."
        ),
        slug="test-newsletter-infrastructure-verification",
        publish_date=now.strftime("%B %d, %Y"),
        category="System Test",
        author="Arena Fund Team",
        read_time_minutes=3,
    )
