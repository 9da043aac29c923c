"""Lifecycle of portal sessions created by the VATSIM login."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .. import models, schemas
from ..auth import get_membership
from ..errors import AuthorizationError, BadRequestError
from ..utils import generate_token, utcnow
from .vatsim import VatsimProfile

logger = logging.getLogger(__name__)


async def memberships_for_cid(db: AsyncSession, cid: str) -> Sequence[models.OrgMember]:
    result = await db.execute(
        select(models.OrgMember)
        .options(selectinload(models.OrgMember.organization))
        .where(models.OrgMember.cid == cid)
        .order_by(models.OrgMember.created_at.asc(), models.OrgMember.id.asc())
    )
    return result.scalars().all()


async def start_session(
    db: AsyncSession, profile: VatsimProfile, *, ttl_hours: int
) -> Optional[models.PortalSession]:
    """Create a session bound to the first portal-enabled organization.

    Returns ``None`` when ``profile`` belongs to no such organization.
    """

    candidates = [m for m in await memberships_for_cid(db, profile.cid) if m.organization.portal_enabled]
    if not candidates:
        logger.info("VATSIM login for cid=%s has no portal-enabled organization", profile.cid)
        return None

    portal_session = models.PortalSession(
        id=generate_token(),
        cid=profile.cid,
        name=profile.name,
        organization_id=candidates[0].organization_id,
        expires_at=utcnow() + timedelta(hours=ttl_hours),
    )
    db.add(portal_session)
    await db.commit()

    logger.info(
        "Portal session started for cid=%s organization_id=%s",
        profile.cid,
        portal_session.organization_id,
    )
    return portal_session


async def describe_session(db: AsyncSession, portal_session: models.PortalSession) -> schemas.SessionInfo:
    memberships = await memberships_for_cid(db, portal_session.cid)

    current = next(
        (m for m in memberships if m.organization_id == portal_session.organization_id),
        None,
    )
    return schemas.SessionInfo(
        cid=portal_session.cid,
        name=portal_session.name,
        current_org=schemas.CurrentOrganization.model_validate(current.organization) if current else None,
        organizations=[
            schemas.SessionOrganization(
                id=m.organization.id,
                name=m.organization.name,
                division=m.organization.division,
                subdivision=m.organization.subdivision,
                role=m.role,
            )
            for m in memberships
        ],
    )


async def switch_organization(
    db: AsyncSession, portal_session: models.PortalSession, organization_id: int
) -> None:
    membership = await get_membership(db, portal_session.cid, organization_id)
    if membership is None:
        raise BadRequestError("You are not a member of this organization")

    organization = await db.get(models.Organization, organization_id)
    if organization is None or not organization.portal_enabled:
        raise AuthorizationError("Portal access is disabled for this organization")

    portal_session.organization_id = organization_id
    await db.commit()


async def end_session(db: AsyncSession, session_id: Optional[str]) -> None:
    if not session_id:
        return
    portal_session = await db.get(models.PortalSession, session_id)
    if portal_session is None:
        return
    await db.delete(portal_session)
    await db.commit()
