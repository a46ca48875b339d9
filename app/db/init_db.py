import asyncio
import logging

from sqlalchemy import select

from app.core.security import get_password_hash
from app.core.settings import settings
from app.core.tenant import org_slug
from app.db.session import AsyncSessionLocal
from app.models.org import Org
from app.models.user import User

logger = logging.getLogger(__name__)


async def init_db() -> None:
    """Seed the default dealership and its first superuser when missing."""
    async with AsyncSessionLocal() as session:
        org = (await session.execute(select(Org).where(Org.id == settings.default_org_id))).scalar_one_or_none()
        if org is None:
            logger.info("Creating default org %s", settings.default_org_id)
            session.add(
                Org(
                    id=settings.default_org_id,
                    name=settings.default_org_name,
                    slug=org_slug(settings.default_org_name),
                    status="ACTIVE",
                )
            )
            await session.flush()

        stmt = select(User).where(
            User.org_id == settings.default_org_id,
            User.email == settings.seed_admin_email.lower(),
        )
        user = (await session.execute(stmt)).scalar_one_or_none()
        if user is None:
            logger.info("Creating admin user %s", settings.seed_admin_email)
            session.add(
                User(
                    org_id=settings.default_org_id,
                    email=settings.seed_admin_email.lower(),
                    hashed_password=get_password_hash(settings.seed_admin_password),
                    is_active=True,
                    is_superuser=True,
                    role="ORG_ADMIN",
                    token_version=0,
                    full_name=settings.seed_admin_full_name,
                )
            )
        else:
            logger.info("Admin user already exists")
        await session.commit()


if __name__ == "__main__":
    asyncio.run(init_db())
