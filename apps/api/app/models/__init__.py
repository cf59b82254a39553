"""SQLAlchemy models."""

from app.models.base import Base
from app.models.consent_record import ConsentMethod, ConsentRecord, ConsentType, LegalBasis
from app.models.newsletter_subscriber import NewsletterSubscriber, SubscriberStatus

__all__ = [
    # Base
    "Base",
    # Subscribers
    "NewsletterSubscriber",
    "SubscriberStatus",
    # Consent
    "ConsentRecord",
    "ConsentType",
    "ConsentMethod",
    "LegalBasis",
]
