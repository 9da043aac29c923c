"""Organization (API key) management."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models, schemas
from ..errors import NotFoundError
from ..utils import ensure_utc, generate_token

logger = logging.getLogger(__name__)


def organization_to_schema(
    organization: models.Organization, *, booking_count: Optional[int] = None
) -> schemas.OrganizationRead:
    return schemas.OrganizationRead(
        id=organization.id,
        name=organization.name,
        key=organization.key,
        division=organization.division,
        subdivision=organization.subdivision,
        portal_enabled=organization.portal_enabled,
        created_at=ensure_utc(organization.created_at),
        updated_at=ensure_utc(organization.updated_at),
        booking_count=booking_count,
    )


def _booking_count_query():
    return (
        select(models.Organization, func.count(models.Booking.id))
        .outerjoin(models.Booking, models.Booking.organization_id == models.Organization.id)
        .group_by(models.Organization.id)
    )


async def list_organizations(db: AsyncSession) -> Sequence[tuple[models.Organization, int]]:
    result = await db.execute(
        _booking_count_query().order_by(models.Organization.created_at.desc(), models.Organization.id.desc())
    )
    return [(organization, int(count)) for organization, count in result.all()]


async def get_organization_with_count(db: AsyncSession, organization_id: int) -> tuple[models.Organization, int]:
    result = await db.execute(
        _booking_count_query()
        .where(models.Organization.id == organization_id)
        .execution_options(populate_existing=True)
    )
    row = result.first()
    if row is None:
        raise NotFoundError("API key not found")
    return row[0], int(row[1])


async def get_organization(db: AsyncSession, organization_id: int) -> models.Organization:
    organization = await db.get(models.Organization, organization_id)
    if organization is None:
        raise NotFoundError("API key not found")
    return organization


async def create_organization(db: AsyncSession, payload: schemas.OrganizationCreate) -> models.Organization:
    organization = models.Organization(
        name=payload.name,
        key=generate_token(),
        division=payload.division,
        subdivision=payload.subdivision,
        portal_enabled=True if payload.portal_enabled is None else payload.portal_enabled,
    )
    db.add(organization)
    await db.flush()
    await db.commit()
    await db.refresh(organization)

    logger.info("Created organization id=%s name=%s", organization.id, organization.name)
    return organization


async def update_organization(
    db: AsyncSession, organization_id: int, payload: schemas.OrganizationUpdate
) -> models.Organization:
    organization = await get_organization(db, organization_id)
    changes = payload.model_dump(exclude_unset=True)

    if changes.get("name"):
        organization.name = changes["name"]
    if changes.get("division"):
        organization.division = changes["division"]
    if "subdivision" in changes:
        organization.subdivision = changes["subdivision"]
    if changes.get("portal_enabled") is not None:
        organization.portal_enabled = changes["portal_enabled"]

    await db.flush()
    await db.commit()
    await db.refresh(organization)
    return organization


async def delete_organization(db: AsyncSession, organization_id: int) -> None:
    """Delete an organization; its bookings and memberships go with it."""

    organization = await get_organization(db, organization_id)
    await db.delete(organization)
    await db.commit()
    logger.info("Deleted organization id=%s", organization_id)
