"""Newsletter subscribers and consent records.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # Create enum types
    op.execute("CREATE TYPE subscriber_status AS ENUM ('active', 'unsubscribed', 'bounced')")
    op.execute(
        "CREATE TYPE consent_type AS ENUM "
        "('newsletter_subscription', 'data_processing', 'marketing_communications')"
    )
    op.execute(
        "CREATE TYPE consent_method AS ENUM ('checkbox', 'opt_in', 'double_opt_in', 'implied')"
    )
    op.execute(
        "CREATE TYPE legal_basis AS ENUM "
        "('consent', 'legitimate_interest', 'contract', 'legal_obligation')"
    )

    # Create newsletter_subscribers table
    op.create_table(
        "newsletter_subscribers",
        sa.Column("id", sa.UUID(), nullable=False, server_default=sa.text("uuid_generate_v4()")),
        sa.Column("email", sa.String(254), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "status",
            postgresql.ENUM(name="subscriber_status", create_type=False),
            nullable=False,
            server_default="active",
        ),
        sa.Column("source", sa.String(50), nullable=False, server_default="newsletter-form"),
        sa.Column("subscribed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("unsubscribe_token", sa.String(255), nullable=True),
        sa.Column("ip_hash", sa.String(16), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("unsubscribed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("unsubscribe_ip_hash", sa.String(16), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.PrimaryKeyConstraint("id", name="pk_newsletter_subscribers"),
    )
    op.create_index(
        "ix_newsletter_subscribers_email", "newsletter_subscribers", ["email"], unique=True
    )
    op.create_index("ix_newsletter_subscribers_source", "newsletter_subscribers", ["source"])
    op.create_index(
        "ix_newsletter_subscribers_status_subscribed_at",
        "newsletter_subscribers",
        ["status", "subscribed_at"],
    )

    # Create consent_records table
    op.create_table(
        "consent_records",
        sa.Column("id", sa.UUID(), nullable=False, server_default=sa.text("uuid_generate_v4()")),
        sa.Column("email", sa.String(254), nullable=False),
        sa.Column(
            "consent_type",
            postgresql.ENUM(name="consent_type", create_type=False),
            nullable=False,
        ),
        sa.Column("consent_given", sa.Boolean(), nullable=False),
        sa.Column(
            "consent_method",
            postgresql.ENUM(name="consent_method", create_type=False),
            nullable=False,
        ),
        sa.Column("consent_source", sa.String(100), nullable=False),
        sa.Column("consented_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ip_hash", sa.String(16), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column(
            "legal_basis",
            postgresql.ENUM(name="legal_basis", create_type=False),
            nullable=False,
            server_default="consent",
        ),
        sa.Column(
            "purposes",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("gdpr_applies", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("ccpa_applies", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("privacy_policy_version", sa.String(20), nullable=False),
        sa.Column("consent_version", sa.String(20), nullable=False),
        sa.Column("withdrawn_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("withdrawal_method", sa.String(100), nullable=True),
        sa.Column("withdrawal_ip_hash", sa.String(16), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.PrimaryKeyConstraint("id", name="pk_consent_records"),
    )
    op.create_index(
        "ix_consent_records_email_type", "consent_records", ["email", "consent_type"]
    )


def downgrade() -> None:
    op.drop_index("ix_consent_records_email_type", table_name="consent_records")
    op.drop_table("consent_records")

    op.drop_index("ix_newsletter_subscribers_status_subscribed_at", table_name="newsletter_subscribers")
    op.drop_index("ix_newsletter_subscribers_source", table_name="newsletter_subscribers")
    op.drop_index("ix_newsletter_subscribers_email", table_name="newsletter_subscribers")
    op.drop_table("newsletter_subscribers")

    op.execute("DROP TYPE IF EXISTS legal_basis")
    op.execute("DROP TYPE IF EXISTS consent_method")
    op.execute("DROP TYPE IF EXISTS consent_type")
    op.execute("DROP TYPE IF EXISTS subscriber_status")
