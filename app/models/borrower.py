import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.models.types import EncryptedString


class Borrower(Base):
    __tablename__ = "borrowers"
    __table_args__ = (
        UniqueConstraint("org_id", "email", name="uq_borrowers_org_email"),
        CheckConstraint("preferred_language IN ('en', 'es')", name="ck_borrowers_language"),
        CheckConstraint("annual_income IS NULL OR annual_income > 0", name="ck_borrowers_income_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    preferred_language = Column(String(2), nullable=False, default="en")

    date_of_birth = Column(Date, nullable=True)
    ssn = Column(EncryptedString(), nullable=True)
    address_line1 = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(2), nullable=True)
    zip_code = Column(String(10), nullable=True)

    employment_status = Column(String(50), nullable=True)
    annual_income = Column(Numeric(12, 2), nullable=True)
    current_employer_name = Column(String(255), nullable=True)
    time_with_employment = Column(String(100), nullable=True)

    reference1_name = Column(String(255), nullable=True)
    reference1_phone = Column(String(50), nullable=True)
    reference1_email = Column(String(255), nullable=True)
    reference2_name = Column(String(255), nullable=True)
    reference2_phone = Column(String(50), nullable=True)
    reference2_email = Column(String(255), nullable=True)
    reference3_name = Column(String(255), nullable=True)
    reference3_phone = Column(String(50), nullable=True)
    reference3_email = Column(String(255), nullable=True)

    consent_to_contact = Column(Boolean, nullable=False, default=False)
    consent_to_text = Column(Boolean, nullable=False, default=False)
    consent_to_call = Column(Boolean, nullable=False, default=False)
    communication_preferences = Column(String(50), nullable=True)

    kyc_status = Column(String(30), nullable=False, default="not_started")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
