from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.settings import settings
from app.db.session import get_db
from app.models.user import User
from app.schemas.orgs import OrgCreateRequest, OrgDTO, OrgListResponse
from app.services import orgs as org_service


router = APIRouter(prefix="/orgs", tags=["orgs"])


@router.post(
    "",
    response_model=OrgDTO,
    status_code=status.HTTP_201_CREATED,
    summary="Create a dealership organization (super admin only)",
)
async def create_org(
    payload: OrgCreateRequest,
    current_user: User = Depends(deps.require_superuser),
    db: AsyncSession = Depends(get_db),
) -> OrgDTO:
    if settings.tenancy_mode != "multi":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "single_tenant_mode",
                "message": "Org creation is disabled in single-tenant mode",
                "details": {},
            },
        )
    try:
        org = await org_service.create_org(db, payload=payload, creator=current_user)
    except org_service.OrgError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": exc.code, "message": exc.message, "details": exc.details},
        ) from exc
    return OrgDTO.model_validate(org)


@router.get("", response_model=OrgListResponse, summary="List organizations (super admin only)")
async def list_orgs(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    current_user: User = Depends(deps.require_superuser),
    db: AsyncSession = Depends(get_db),
) -> OrgListResponse:
    orgs, total = await org_service.list_orgs(db, offset=(page - 1) * page_size, limit=page_size)
    return OrgListResponse(items=[OrgDTO.model_validate(org) for org in orgs], total=total)
