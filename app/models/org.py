from sqlalchemy import CheckConstraint, Column, DateTime, String, func

from app.db.base import Base


ORG_STATUSES = ("ACTIVE", "SUSPENDED")


class Org(Base):
    """A dealership. Every staff user, borrower and loan belongs to exactly one."""

    __tablename__ = "orgs"
    __table_args__ = (
        CheckConstraint(f"status IN {ORG_STATUSES!r}", name="ck_orgs_status"),
    )

    # Human-chosen id ("main-street-motors"), also used as the X-Tenant-ID value.
    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    status = Column(String(20), nullable=False, default="ACTIVE", server_default="ACTIVE")
    contact_email = Column(String(255))
    contact_phone = Column(String(50))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
