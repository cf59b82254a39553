"""Consent recording for GDPR/CCPA compliance."""

import logging
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging_config import log_security_event
from app.core.security import hash_ip
from app.models.consent_record import ConsentMethod, ConsentRecord, ConsentType, LegalBasis

logger = logging.getLogger(__name__)

PRIVACY_POLICY_VERSION = "2024.1"
CONSENT_VERSION = "1.0"

DEFAULT_PURPOSES = [
    "newsletter_delivery",
    "content_personalization",
    "service_improvement",
]


class ConsentService:
    """Appends consent and withdrawal events to the audit trail."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def record_consent(
        self,
        email: str,
        *,
        consent_type: ConsentType = ConsentType.NEWSLETTER_SUBSCRIPTION,
        consent_given: bool = True,
        consent_method: ConsentMethod = ConsentMethod.OPT_IN,
        consent_source: str = "newsletter-form",
        ip_address: str | None = None,
        user_agent: str | None = None,
        legal_basis: LegalBasis = LegalBasis.CONSENT,
        purposes: list[str] | None = None,
        gdpr_applies: bool | None = None,
        ccpa_applies: bool | None = None,
    ) -> ConsentRecord:
        """Persist a consent event and return it.

        The raw IP is hashed before storage. Database failures roll back the
        session and propagate.
        """
        record = ConsentRecord(
            email=email.strip().lower(),
            consent_type=consent_type,
            consent_given=consent_given,
            consent_method=consent_method,
            consent_source=consent_source,
            consented_at=datetime.now(UTC),
            ip_hash=hash_ip(ip_address) if ip_address else None,
            user_agent=user_agent[:512] if user_agent else None,
            legal_basis=legal_basis,
            purposes=list(DEFAULT_PURPOSES) if purposes is None else list(purposes),
            # Applicability is assumed unless the client says otherwise
            gdpr_applies=True if gdpr_applies is None else gdpr_applies,
            ccpa_applies=True if ccpa_applies is None else ccpa_applies,
            privacy_policy_version=PRIVACY_POLICY_VERSION,
            consent_version=CONSENT_VERSION,
        )
        self.db.add(record)
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        log_security_event(
            "CONSENT_RECORDED",
            consentId=str(record.id),
            email=record.email,
            consentType=consent_type.value,
            consentGiven=consent_given,
            consentMethod=consent_method.value,
            consentSource=consent_source,
        )
        return record

    async def withdraw_consent(
        self,
        email: str,
        *,
        consent_type: ConsentType = ConsentType.NEWSLETTER_SUBSCRIPTION,
        withdrawal_method: str = "user_request",
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ConsentRecord:
        """Mark the latest given consent withdrawn and append a withdrawal record."""
        email = email.strip().lower()
        stmt = (
            select(ConsentRecord)
            .where(
                ConsentRecord.email == email,
                ConsentRecord.consent_type == consent_type,
                ConsentRecord.consent_given.is_(True),
                ConsentRecord.withdrawn_at.is_(None),
            )
            .order_by(ConsentRecord.consented_at.desc())
            .limit(1)
        )
        latest = (await self.db.execute(stmt)).scalar_one_or_none()
        if latest is not None:
            latest.consent_given = False
            latest.withdrawn_at = datetime.now(UTC)
            latest.withdrawal_method = withdrawal_method
            latest.withdrawal_ip_hash = hash_ip(ip_address) if ip_address else None
            log_security_event(
                "CONSENT_WITHDRAWN",
                consentId=str(latest.id),
                email=email,
                consentType=consent_type.value,
                withdrawalMethod=withdrawal_method,
            )

        # record_consent commits the pending withdrawal update as well
        return await self.record_consent(
            email,
            consent_type=consent_type,
            consent_given=False,
            consent_method=ConsentMethod.OPT_IN,
            consent_source=withdrawal_method,
            ip_address=ip_address,
            user_agent=user_agent,
            purposes=[],
        )

    async def get_consent_status(
        self,
        email: str,
        consent_type: ConsentType = ConsentType.NEWSLETTER_SUBSCRIPTION,
    ) -> ConsentRecord | None:
        """Most recent consent event for ``email`` and ``consent_type``."""
        stmt = (
            select(ConsentRecord)
            .where(
                ConsentRecord.email == email.strip().lower(),
                ConsentRecord.consent_type == consent_type,
            )
            .order_by(ConsentRecord.consented_at.desc())
            .limit(1)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()
