"""Helpers for managing organization memberships.

Admin-secret callers manage any organization without restriction. Portal
callers (``actor``) are confined to their own organization and the role rules
below: managers may only add or remove plain members, only admins change
roles, and nobody changes or removes their own membership.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .. import models, schemas
from ..auth import MemberPrincipal, get_membership
from ..errors import AuthorizationError, BadRequestError, NotFoundError
from ..utils import ensure_utc

logger = logging.getLogger(__name__)


def member_to_schema(
    membership: models.OrgMember, *, include_organization: bool = False
) -> schemas.OrgMemberRead:
    organization = None
    if include_organization:
        organization = schemas.OrganizationSummary.model_validate(membership.organization)
    return schemas.OrgMemberRead(
        id=membership.id,
        cid=membership.cid,
        organization_id=membership.organization_id,
        role=membership.role,
        created_at=ensure_utc(membership.created_at),
        updated_at=ensure_utc(membership.updated_at),
        organization=organization,
    )


async def list_members(db: AsyncSession, organization_id: int) -> Sequence[models.OrgMember]:
    result = await db.execute(
        select(models.OrgMember)
        .where(models.OrgMember.organization_id == organization_id)
        .order_by(models.OrgMember.created_at.desc(), models.OrgMember.id.desc())
    )
    return result.scalars().all()


async def list_all_members(db: AsyncSession) -> Sequence[models.OrgMember]:
    result = await db.execute(
        select(models.OrgMember)
        .options(selectinload(models.OrgMember.organization))
        .order_by(models.OrgMember.created_at.desc(), models.OrgMember.id.desc())
    )
    return result.scalars().all()


async def get_member(db: AsyncSession, member_id: int, *, actor: Optional[MemberPrincipal] = None) -> models.OrgMember:
    result = await db.execute(
        select(models.OrgMember)
        .options(selectinload(models.OrgMember.organization))
        .where(models.OrgMember.id == member_id)
        .execution_options(populate_existing=True)
    )
    membership = result.scalar_one_or_none()
    if membership is None:
        raise NotFoundError("Member not found")
    if actor is not None and membership.organization_id != actor.organization.id:
        raise NotFoundError("Member not found")
    return membership


async def add_member(
    db: AsyncSession,
    organization_id: int,
    cid: str,
    role: models.OrgRole,
    *,
    actor: Optional[MemberPrincipal] = None,
) -> models.OrgMember:
    if actor is not None and actor.role == models.OrgRole.manager.value and role != models.OrgRole.member:
        raise AuthorizationError("Managers can only add members with the member role")

    organization = await db.get(models.Organization, organization_id)
    if organization is None:
        raise NotFoundError("Organization not found")

    if await get_membership(db, cid, organization_id) is not None:
        raise BadRequestError("Member already exists in this organization")

    membership = models.OrgMember(cid=cid, organization_id=organization_id, role=role.value)
    db.add(membership)
    await db.flush()
    await db.commit()

    logger.info("Added cid=%s to organization_id=%s as %s", cid, organization_id, role.value)
    return await get_member(db, membership.id)


async def change_member_role(
    db: AsyncSession,
    member_id: int,
    role: models.OrgRole,
    *,
    actor: Optional[MemberPrincipal] = None,
) -> models.OrgMember:
    membership = await get_member(db, member_id, actor=actor)
    if actor is not None and membership.cid == actor.cid:
        raise BadRequestError("You cannot change your own role")

    membership.role = role.value
    await db.flush()
    await db.commit()
    return await get_member(db, membership.id)


async def remove_member(
    db: AsyncSession, member_id: int, *, actor: Optional[MemberPrincipal] = None
) -> None:
    membership = await get_member(db, member_id, actor=actor)
    if actor is not None:
        if membership.cid == actor.cid:
            raise BadRequestError("You cannot remove yourself")
        if actor.role == models.OrgRole.manager.value and membership.role != models.OrgRole.member.value:
            raise AuthorizationError("Managers can only remove members with the member role")

    await db.delete(membership)
    await db.commit()
    logger.info("Removed cid=%s from organization_id=%s", membership.cid, membership.organization_id)
