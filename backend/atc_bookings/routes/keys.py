"""Admin management of organizations and their API keys."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from .. import schemas
from ..auth import AdminPrincipal, require_admin
from ..database import get_session
from ..services import organizations as organization_service

router = APIRouter(prefix="/api/keys", tags=["keys"])


@router.get("", response_model=schemas.Envelope[list[schemas.OrganizationRead]])
async def list_keys(
    session: AsyncSession = Depends(get_session),
    _admin: AdminPrincipal = Depends(require_admin),
) -> schemas.Envelope[list[schemas.OrganizationRead]]:
    rows = await organization_service.list_organizations(session)
    return schemas.Envelope(
        data=[
            organization_service.organization_to_schema(organization, booking_count=count)
            for organization, count in rows
        ]
    )


@router.get("/{key_id}", response_model=schemas.Envelope[schemas.OrganizationRead])
async def get_key(
    key_id: int,
    session: AsyncSession = Depends(get_session),
    _admin: AdminPrincipal = Depends(require_admin),
) -> schemas.Envelope[schemas.OrganizationRead]:
    organization, count = await organization_service.get_organization_with_count(session, key_id)
    return schemas.Envelope(data=organization_service.organization_to_schema(organization, booking_count=count))


@router.post("", response_model=schemas.Envelope[schemas.OrganizationRead], status_code=201)
async def create_key(
    payload: schemas.OrganizationCreate,
    session: AsyncSession = Depends(get_session),
    _admin: AdminPrincipal = Depends(require_admin),
) -> schemas.Envelope[schemas.OrganizationRead]:
    organization = await organization_service.create_organization(session, payload)
    return schemas.Envelope(
        data=organization_service.organization_to_schema(organization, booking_count=0),
        message="API key created",
    )


@router.put("/{key_id}", response_model=schemas.Envelope[schemas.OrganizationRead])
async def update_key(
    key_id: int,
    payload: schemas.OrganizationUpdate,
    session: AsyncSession = Depends(get_session),
    _admin: AdminPrincipal = Depends(require_admin),
) -> schemas.Envelope[schemas.OrganizationRead]:
    organization = await organization_service.update_organization(session, key_id, payload)
    return schemas.Envelope(data=organization_service.organization_to_schema(organization))


@router.delete("/{key_id}", status_code=204, response_class=Response)
async def delete_key(
    key_id: int,
    session: AsyncSession = Depends(get_session),
    _admin: AdminPrincipal = Depends(require_admin),
) -> Response:
    await organization_service.delete_organization(session, key_id)
    return Response(status_code=204)
