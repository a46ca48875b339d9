"""Create orgs, users, borrowers, loans and audit_logs"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            server_onupdate=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "orgs",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="ACTIVE"),
        sa.Column("contact_email", sa.String(length=255), nullable=True),
        sa.Column("contact_phone", sa.String(length=50), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("slug", name="uq_orgs_slug"),
        sa.CheckConstraint("status IN ('ACTIVE', 'SUSPENDED')", name="ck_orgs_status"),
    )

    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(), sa.ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="ORG_STAFF"),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_superuser", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("token_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_active_at", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("org_id", "email", name="uq_users_org_email"),
        sa.CheckConstraint("role IN ('ORG_ADMIN', 'ORG_STAFF')", name="ck_users_role"),
    )
    op.create_index("ix_users_org_id", "users", ["org_id"])

    op.create_table(
        "borrowers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(), sa.ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("preferred_language", sa.String(length=2), nullable=False, server_default="en"),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("ssn", sa.LargeBinary(), nullable=True),
        sa.Column("address_line1", sa.String(length=255), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("state", sa.String(length=2), nullable=True),
        sa.Column("zip_code", sa.String(length=10), nullable=True),
        sa.Column("employment_status", sa.String(length=50), nullable=True),
        sa.Column("annual_income", sa.Numeric(12, 2), nullable=True),
        sa.Column("current_employer_name", sa.String(length=255), nullable=True),
        sa.Column("time_with_employment", sa.String(length=100), nullable=True),
        *[
            sa.Column(f"reference{index}_{suffix}", sa.String(length=length), nullable=True)
            for index in (1, 2, 3)
            for suffix, length in (("name", 255), ("phone", 50), ("email", 255))
        ],
        sa.Column("consent_to_contact", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("consent_to_text", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("consent_to_call", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("communication_preferences", sa.String(length=50), nullable=True),
        sa.Column("kyc_status", sa.String(length=30), nullable=False, server_default="not_started"),
        *_timestamps(),
        sa.UniqueConstraint("org_id", "email", name="uq_borrowers_org_email"),
        sa.CheckConstraint("preferred_language IN ('en', 'es')", name="ck_borrowers_language"),
        sa.CheckConstraint("annual_income IS NULL OR annual_income > 0", name="ck_borrowers_income_positive"),
    )
    op.create_index("ix_borrowers_org_id", "borrowers", ["org_id"])

    op.create_table(
        "loans",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(), sa.ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "borrower_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("borrowers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("loan_number", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="new"),
        sa.Column("principal_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("interest_rate", sa.Numeric(7, 4), nullable=False),
        sa.Column("term_weeks", sa.Integer(), nullable=False),
        sa.Column("weekly_payment", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_payment", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_interest", sa.Numeric(12, 2), nullable=False),
        sa.Column("remaining_balance", sa.Numeric(12, 2), nullable=False),
        sa.Column("purpose", sa.String(length=255), nullable=True),
        sa.Column("vehicle_year", sa.Integer(), nullable=True),
        sa.Column("vehicle_make", sa.String(length=100), nullable=True),
        sa.Column("vehicle_model", sa.String(length=100), nullable=True),
        sa.Column("vehicle_vin", sa.String(length=17), nullable=True),
        sa.Column("funding_date", sa.Date(), nullable=True),
        sa.Column("application_step", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("phone_verification_status", sa.String(length=30), nullable=False, server_default="not_started"),
        sa.Column("phone_verification_session_id", sa.String(length=64), nullable=True),
        sa.Column("verified_phone_number", sa.String(length=20), nullable=True),
        sa.Column("stripe_verification_session_id", sa.String(length=255), nullable=True),
        sa.Column("stripe_verification_status", sa.String(length=30), nullable=False, server_default="not_started"),
        sa.Column(
            "created_by",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("application_sent_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("application_completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("loan_number", name="uq_loans_loan_number"),
        sa.CheckConstraint("principal_amount > 0", name="ck_loans_principal_positive"),
        sa.CheckConstraint("interest_rate >= 0", name="ck_loans_rate_nonneg"),
        sa.CheckConstraint("term_weeks IN (4, 6, 8, 12, 16)", name="ck_loans_term_weeks"),
        sa.CheckConstraint("weekly_payment >= 0", name="ck_loans_weekly_payment_nonneg"),
        sa.CheckConstraint("remaining_balance >= 0", name="ck_loans_remaining_balance_nonneg"),
        sa.CheckConstraint(
            "status IN ('new', 'application_sent', 'application_in_progress', "
            "'application_completed', 'funded', 'active', 'paid_off', 'cancelled')",
            name="ck_loans_status",
        ),
        sa.CheckConstraint("application_step BETWEEN -1 AND 10", name="ck_loans_application_step"),
    )
    op.create_index("ix_loans_org_id", "loans", ["org_id"])
    op.create_index("ix_loans_borrower_id", "loans", ["borrower_id"])
    op.create_index("ix_loans_status", "loans", ["status"])
    op.create_index("ix_loans_vehicle_vin", "loans", ["vehicle_vin"])

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("resource_type", sa.String(length=50), nullable=False),
        sa.Column("resource_id", sa.String(length=64), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_resource", "audit_logs", ["org_id", "resource_type", "resource_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_resource", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_loans_vehicle_vin", table_name="loans")
    op.drop_index("ix_loans_status", table_name="loans")
    op.drop_index("ix_loans_borrower_id", table_name="loans")
    op.drop_index("ix_loans_org_id", table_name="loans")
    op.drop_table("loans")
    op.drop_index("ix_borrowers_org_id", table_name="borrowers")
    op.drop_table("borrowers")
    op.drop_index("ix_users_org_id", table_name="users")
    op.drop_table("users")
    op.drop_table("orgs")
