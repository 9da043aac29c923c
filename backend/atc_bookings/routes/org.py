"""Endpoints for an organization authenticated by its bearer API key."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from .. import schemas
from ..auth import OrganizationPrincipal, require_api_key
from ..database import get_session
from ..services import bookings as booking_service
from ..utils import ensure_utc

router = APIRouter(prefix="/api/org", tags=["org"])


@router.get("/me", response_model=schemas.Envelope[schemas.OrganizationProfile])
async def get_my_organization(
    session: AsyncSession = Depends(get_session),
    principal: OrganizationPrincipal = Depends(require_api_key),
) -> schemas.Envelope[schemas.OrganizationProfile]:
    organization = principal.organization
    count = await booking_service.count_organization_bookings(session, organization.id)
    return schemas.Envelope(
        data=schemas.OrganizationProfile(
            id=organization.id,
            name=organization.name,
            division=organization.division,
            subdivision=organization.subdivision,
            created_at=ensure_utc(organization.created_at),
            booking_count=count,
        )
    )


@router.get("/bookings", response_model=schemas.Envelope[list[schemas.BookingRead]])
async def get_my_bookings(
    session: AsyncSession = Depends(get_session),
    principal: OrganizationPrincipal = Depends(require_api_key),
) -> schemas.Envelope[list[schemas.BookingRead]]:
    rows = await booking_service.list_organization_bookings(session, principal.organization.id)
    return schemas.Envelope(data=[booking_service.booking_to_schema(row) for row in rows])
