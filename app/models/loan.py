import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base


class Loan(Base):
    __tablename__ = "loans"
    __table_args__ = (
        CheckConstraint("principal_amount > 0", name="ck_loans_principal_positive"),
        CheckConstraint("interest_rate >= 0", name="ck_loans_rate_nonneg"),
        CheckConstraint("term_weeks IN (4, 6, 8, 12, 16)", name="ck_loans_term_weeks"),
        CheckConstraint("weekly_payment >= 0", name="ck_loans_weekly_payment_nonneg"),
        CheckConstraint("remaining_balance >= 0", name="ck_loans_remaining_balance_nonneg"),
        CheckConstraint(
            "status IN ('new', 'application_sent', 'application_in_progress', "
            "'application_completed', 'funded', 'active', 'paid_off', 'cancelled')",
            name="ck_loans_status",
        ),
        CheckConstraint(
            "application_step BETWEEN -1 AND 10",
            name="ck_loans_application_step",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    borrower_id = Column(
        UUID(as_uuid=True),
        ForeignKey("borrowers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    loan_number = Column(String(32), nullable=False, unique=True)
    status = Column(String(30), nullable=False, default="new", index=True)

    # interest_rate is an annual fraction (0.30 == 30%)
    principal_amount = Column(Numeric(12, 2), nullable=False)
    interest_rate = Column(Numeric(7, 4), nullable=False)
    term_weeks = Column(Integer, nullable=False)
    weekly_payment = Column(Numeric(12, 2), nullable=False)
    total_payment = Column(Numeric(12, 2), nullable=False)
    total_interest = Column(Numeric(12, 2), nullable=False)
    remaining_balance = Column(Numeric(12, 2), nullable=False)
    purpose = Column(String(255), nullable=True)

    vehicle_year = Column(Integer, nullable=True)
    vehicle_make = Column(String(100), nullable=True)
    vehicle_model = Column(String(100), nullable=True)
    vehicle_vin = Column(String(17), nullable=True, index=True)

    funding_date = Column(Date, nullable=True)
    application_step = Column(Integer, nullable=False, default=1)
    phone_verification_status = Column(String(30), nullable=False, default="not_started")
    phone_verification_session_id = Column(String(64), nullable=True)
    verified_phone_number = Column(String(20), nullable=True)
    stripe_verification_session_id = Column(String(255), nullable=True)
    stripe_verification_status = Column(String(30), nullable=False, default="not_started")

    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    application_sent_at = Column(DateTime(timezone=True), nullable=True)
    application_completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    borrower = relationship("Borrower", lazy="selectin")
    org = relationship("Org", lazy="selectin")
