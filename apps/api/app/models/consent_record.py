"""ConsentRecord model: GDPR/CCPA audit trail for data-processing consent."""

import enum
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Enum, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class ConsentType(str, enum.Enum):
    NEWSLETTER_SUBSCRIPTION = "newsletter_subscription"
    DATA_PROCESSING = "data_processing"
    MARKETING_COMMUNICATIONS = "marketing_communications"


class ConsentMethod(str, enum.Enum):
    CHECKBOX = "checkbox"
    OPT_IN = "opt_in"
    DOUBLE_OPT_IN = "double_opt_in"
    IMPLIED = "implied"


class LegalBasis(str, enum.Enum):
    CONSENT = "consent"
    LEGITIMATE_INTEREST = "legitimate_interest"
    CONTRACT = "contract"
    LEGAL_OBLIGATION = "legal_obligation"


def _enum(enum_cls: type[enum.Enum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


class ConsentRecord(Base):
    """A single consent (or withdrawal) event.

    Withdrawals update the latest given record and append a new record with
    ``consent_given=False`` so the history is never rewritten.
    """

    __tablename__ = "consent_records"
    __table_args__ = (
        Index("ix_consent_records_email_type", "email", "consent_type"),
    )

    email: Mapped[str] = mapped_column(String(254), nullable=False)
    consent_type: Mapped[ConsentType] = mapped_column(
        _enum(ConsentType, "consent_type"),
        nullable=False,
    )
    consent_given: Mapped[bool] = mapped_column(Boolean, nullable=False)
    consent_method: Mapped[ConsentMethod] = mapped_column(
        _enum(ConsentMethod, "consent_method"),
        nullable=False,
    )
    consent_source: Mapped[str] = mapped_column(String(100), nullable=False)
    consented_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ip_hash: Mapped[str | None] = mapped_column(String(16), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    legal_basis: Mapped[LegalBasis] = mapped_column(
        _enum(LegalBasis, "legal_basis"),
        default=LegalBasis.CONSENT,
        nullable=False,
    )
    purposes: Mapped[list[str]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        default=list,
        nullable=False,
    )
    gdpr_applies: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    ccpa_applies: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    privacy_policy_version: Mapped[str] = mapped_column(String(20), nullable=False)
    consent_version: Mapped[str] = mapped_column(String(20), nullable=False)

    # Withdrawal
    withdrawn_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    withdrawal_method: Mapped[str | None] = mapped_column(String(100), nullable=True)
    withdrawal_ip_hash: Mapped[str | None] = mapped_column(String(16), nullable=True)

    def __repr__(self) -> str:
        return f"<ConsentRecord {self.email} {self.consent_type.value} given={self.consent_given}>"
