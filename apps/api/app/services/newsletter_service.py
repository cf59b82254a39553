"""Newsletter subscription lifecycle.

Transitions::

    nonexistent  -> active        create
    active       -> active        no-op, reported as "already subscribed"
    unsubscribed -> active        reactivate (bounced subscribers likewise)
    *            -> unsubscribed  mark unsubscribed, record kept

Every write invalidates the subscriber's cache entries before returning.
Consent recording and emails run after the write as best-effort side effects:
their failures are logged and never undo the transition.
"""

import logging
import uuid
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from app.core.logging_config import log_security_event
from app.core.security import UnsubscribeTokenService, hash_ip
from app.models.consent_record import ConsentMethod, ConsentRecord
from app.models.newsletter_subscriber import NewsletterSubscriber, SubscriberStatus
from app.schemas.newsletter import ConsentOptions
from app.services.consent_service import ConsentService
from app.services.email_service import EmailResult, EmailService, build_unsubscribe_url
from app.services.subscriber_cache import SubscriberCache
from app.services.subscriber_store import SubscriberStore
from app.services.validation import EmailValidationResult, validate_email

logger = logging.getLogger(__name__)


@dataclass
class BestEffortResult:
    """Outcome of a side effect; inspected for logging only."""

    name: str
    success: bool
    error: str | None = None


@dataclass
class SubscriptionOutcome:
    email: str
    subscription_id: UUID | None = None
    created: bool = False
    already_subscribed: bool = False
    reactivated: bool = False


@dataclass
class UnsubscribeOutcome:
    email: str
    already_unsubscribed: bool = False
    previous_status: str | None = None


async def run_best_effort(
    name: str,
    operation: Awaitable[Any],
    *,
    failure_event: str | None = None,
    **details: Any,
) -> BestEffortResult:
    """Await ``operation`` and report, never raise, its failure."""
    try:
        value = await operation
    except Exception as exc:
        logger.warning("Best-effort %s failed", name, exc_info=True)
        if failure_event:
            log_security_event(failure_event, error=str(exc), **details)
        return BestEffortResult(name, False, str(exc))

    if isinstance(value, EmailResult) and not value.success:
        logger.warning("Best-effort %s failed: %s", name, value.error)
        return BestEffortResult(name, False, value.error)
    return BestEffortResult(name, True)


class NewsletterService:
    """Subscription state machine over a subscriber store and its cache."""

    def __init__(
        self,
        store: SubscriberStore,
        cache: SubscriberCache,
        *,
        token_service: UnsubscribeTokenService,
        consent_service: ConsentService | None = None,
        email_service: EmailService | None = None,
        send_welcome_email: bool = True,
    ) -> None:
        self.store = store
        self.cache = cache
        self.token_service = token_service
        self.consent_service = consent_service
        self.email_service = email_service
        self.send_welcome_email = send_welcome_email

    # --- Lookups ---

    async def validate_email(self, email: str) -> EmailValidationResult:
        """Validate ``email`` through the validation-result cache."""
        cached = await self.cache.get_email_validation(email)
        if cached is not None:
            return cached
        result = validate_email(email)
        await self.cache.set_email_validation(email, result)
        return result

    async def get_subscriber(self, email: str) -> NewsletterSubscriber | None:
        """Load a subscriber from the store and refresh the status cache.

        A cached absence answers without a store read; every write
        invalidates it.
        """
        if await self.cache.get_exists(email) is False:
            return None
        subscriber = await self.store.get_by_email(email)
        if subscriber is None:
            await self.cache.set_exists(email, False)
        else:
            await self.cache.set_status(email, subscriber.status.value)
            await self.cache.set_exists(email, True)
        return subscriber

    async def consent_status(self, email: str) -> ConsentRecord | None:
        """Latest newsletter consent event for ``email``."""
        if self.consent_service is None:
            return None
        return await self.consent_service.get_consent_status(email)

    async def stats(self) -> dict[str, Any]:
        return await self.store.stats()

    async def sample_active(self, limit: int = 5) -> list[NewsletterSubscriber]:
        """First ``limit`` active subscribers in keyset order."""
        async for batch in self.store.iter_active(limit):
            return batch
        return []

    async def active_count(self) -> int:
        """Number of active subscribers, served from cache when warm."""
        cached = await self.cache.get_count()
        if cached is not None:
            return cached
        count = await self.store.count_active()
        await self.cache.set_count(count)
        return count

    # --- Subscribe ---

    async def subscribe(
        self,
        *,
        name: str,
        email: str,
        source: str,
        client_ip: str,
        user_agent: str | None = None,
        consent: ConsentOptions | None = None,
    ) -> SubscriptionOutcome:
        """Create or reactivate a subscription for a sanitized ``email``."""
        if await self.cache.get_status(email) == SubscriberStatus.ACTIVE.value:
            return self._already_subscribed(email, client_ip, user_agent)

        existing = await self.get_subscriber(email)
        if existing is None:
            candidate = NewsletterSubscriber(
                id=uuid.uuid4(),
                email=email,
                name=name,
                status=SubscriberStatus.ACTIVE,
                source=source,
                subscribed_at=datetime.now(UTC),
                unsubscribe_token=self.token_service.generate(email),
                ip_hash=hash_ip(client_ip),
                user_agent=user_agent,
            )
            stored, created = await self.store.create_if_absent(candidate)
            if created:
                outcome = SubscriptionOutcome(
                    email=email, subscription_id=stored.id, created=True
                )
                await self.cache.invalidate(email)
                log_security_event(
                    "NEWSLETTER_SUBSCRIPTION_SUCCESS",
                    subscriptionId=str(outcome.subscription_id),
                    email=email,
                    source=source,
                    ip=client_ip,
                )
                await self._after_activation(
                    outcome, name, source, client_ip, user_agent, consent, stored.unsubscribe_token
                )
                return outcome
            existing = stored

        if existing.status == SubscriberStatus.ACTIVE:
            return self._already_subscribed(email, client_ip, user_agent)
        return await self._reactivate(
            existing, name, source, client_ip, user_agent, consent
        )

    def _already_subscribed(
        self, email: str, client_ip: str, user_agent: str | None
    ) -> SubscriptionOutcome:
        log_security_event(
            "DUPLICATE_NEWSLETTER_SUBSCRIPTION",
            email=email,
            ip=client_ip,
            userAgent=user_agent,
        )
        return SubscriptionOutcome(email=email, already_subscribed=True)

    async def _reactivate(
        self,
        subscriber: NewsletterSubscriber,
        name: str,
        source: str,
        client_ip: str,
        user_agent: str | None,
        consent: ConsentOptions | None,
    ) -> SubscriptionOutcome:
        email = subscriber.email
        previous_status = subscriber.status.value
        token = self.token_service.generate(email)
        subscriber = await self.store.reactivate(
            subscriber,
            name=name,
            source=source,
            ip_hash=hash_ip(client_ip),
            user_agent=user_agent,
            unsubscribe_token=token,
        )
        outcome = SubscriptionOutcome(email=email, subscription_id=subscriber.id, reactivated=True)
        await self.cache.invalidate(email)
        log_security_event(
            "NEWSLETTER_RESUBSCRIPTION",
            email=email,
            previousStatus=previous_status,
            ip=client_ip,
        )
        await self._after_activation(outcome, name, source, client_ip, user_agent, consent, token)
        return outcome

    async def _after_activation(
        self,
        outcome: SubscriptionOutcome,
        name: str,
        source: str,
        client_ip: str,
        user_agent: str | None,
        consent: ConsentOptions | None,
        token: str | None,
    ) -> list[BestEffortResult]:
        """Record consent and send the welcome email. Never raises."""
        results = []
        if self.consent_service is not None:
            consent = consent or ConsentOptions()
            results.append(
                await run_best_effort(
                    "consent_recording",
                    self.consent_service.record_consent(
                        outcome.email,
                        consent_method=ConsentMethod(consent.consent_method),
                        consent_source=source,
                        ip_address=client_ip,
                        user_agent=user_agent,
                        purposes=consent.data_processing_purposes,
                        gdpr_applies=consent.gdpr_applies,
                        ccpa_applies=consent.ccpa_applies,
                    ),
                    failure_event="CONSENT_RECORDING_FAILED",
                    subscriptionId=str(outcome.subscription_id),
                    email=outcome.email,
                )
            )
        if self.email_service is not None and self.send_welcome_email:
            token = token or self.token_service.generate(outcome.email)
            results.append(
                await run_best_effort(
                    "welcome_email",
                    self.email_service.send_welcome_email(
                        to_email=outcome.email,
                        subscriber_name=name,
                        unsubscribe_url=build_unsubscribe_url(outcome.email, token),
                    ),
                )
            )
        return results

    # --- Unsubscribe ---

    def verify_token(self, token: str, email: str) -> bool:
        return self.token_service.verify(token, email)

    async def unsubscribe(
        self,
        subscriber: NewsletterSubscriber,
        *,
        method: str,
        client_ip: str,
        user_agent: str | None = None,
        send_confirmation: bool = True,
    ) -> UnsubscribeOutcome:
        """Mark ``subscriber`` unsubscribed.

        Callers authorize the request first (valid token or direct request).
        An already-unsubscribed subscriber is reported without side effects.
        """
        email = subscriber.email
        name = subscriber.name
        previous_status = subscriber.status.value
        if subscriber.status == SubscriberStatus.UNSUBSCRIBED:
            return UnsubscribeOutcome(
                email=email, already_unsubscribed=True, previous_status=previous_status
            )

        await self.store.mark_unsubscribed(subscriber, ip_hash=hash_ip(client_ip))
        await self.cache.invalidate(email)

        if self.consent_service is not None:
            await run_best_effort(
                "consent_withdrawal",
                self.consent_service.withdraw_consent(
                    email,
                    withdrawal_method=method,
                    ip_address=client_ip,
                    user_agent=user_agent,
                ),
                failure_event="CONSENT_WITHDRAWAL_FAILED",
                email=email,
            )
        if send_confirmation and self.email_service is not None:
            await run_best_effort(
                "unsubscribe_confirmation_email",
                self.email_service.send_unsubscribe_confirmation(
                    to_email=email, subscriber_name=name
                ),
            )

        log_security_event(
            "NEWSLETTER_UNSUBSCRIBE",
            email=email,
            previousStatus=previous_status,
            method=method,
            ip=client_ip,
            userAgent=user_agent,
        )
        return UnsubscribeOutcome(email=email, previous_status=previous_status)
