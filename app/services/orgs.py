from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.models.org import Org
from app.models.user import User
from app.schemas.orgs import OrgCreateRequest
from app.services.audit import model_snapshot, record_audit_log


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrgError(ValueError):
    code: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


async def create_org(
    db: AsyncSession,
    *,
    payload: OrgCreateRequest,
    creator: User | None = None,
) -> Org:
    existing_stmt = select(Org).where(or_(Org.id == payload.org_id, Org.slug == payload.slug))
    existing = (await db.execute(existing_stmt)).scalar_one_or_none()
    if existing:
        raise OrgError(
            code="org_exists",
            message="Org with same id or slug already exists",
            details={"org_id": payload.org_id, "slug": payload.slug},
        )

    org = Org(
        id=payload.org_id,
        name=payload.name,
        slug=payload.slug,
        status="ACTIVE",
        contact_email=payload.contact_email,
        contact_phone=payload.contact_phone,
    )
    db.add(org)
    record_audit_log(
        db,
        deps.TenantContext(org_id=payload.org_id),
        actor_id=creator.id if creator else None,
        action="org.created",
        resource_type="org",
        resource_id=payload.org_id,
        new_value=model_snapshot(org),
    )
    await db.commit()
    await db.refresh(org)
    logger.info("Created org %s", org.id)
    return org


async def list_orgs(db: AsyncSession, *, offset: int = 0, limit: int = 50) -> tuple[list[Org], int]:
    total = (await db.execute(select(func.count()).select_from(Org))).scalar_one()
    stmt = select(Org).order_by(Org.created_at.desc()).offset(offset).limit(limit)
    rows = (await db.execute(stmt)).scalars().all()
    return list(rows), int(total or 0)
