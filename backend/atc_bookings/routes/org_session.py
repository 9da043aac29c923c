"""Self-service portal endpoints for VATSIM-authenticated members."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models, schemas
from ..auth import MemberPrincipal, require_org_session, require_session_roles
from ..database import get_session
from ..errors import UpstreamError
from ..services import bookings as booking_service
from ..services import memberships
from ..services.roster_sync import sync_roster
from ..services.vatsim import VatsimError, VatsimRosterClient, VatsimSettings, get_vatsim_settings

router = APIRouter(prefix="/api/org/session", tags=["org-session"])

logger = logging.getLogger(__name__)

_ADMIN = models.OrgRole.admin.value
_MANAGER = models.OrgRole.manager.value


def get_roster_client(settings: VatsimSettings = Depends(get_vatsim_settings)) -> VatsimRosterClient:
    return VatsimRosterClient.from_settings(settings)


@router.get("/me", response_model=schemas.Envelope[schemas.SessionPrincipalRead])
async def get_me(
    principal: MemberPrincipal = Depends(require_org_session),
) -> schemas.Envelope[schemas.SessionPrincipalRead]:
    return schemas.Envelope(
        data=schemas.SessionPrincipalRead(
            cid=principal.cid,
            name=principal.name,
            role=principal.role,
            organization=schemas.OrganizationSummary.model_validate(principal.organization),
        )
    )


# Bookings ------------------------------------------------------------------


@router.get("/bookings", response_model=schemas.Envelope[list[schemas.BookingRead]])
async def list_bookings(
    session: AsyncSession = Depends(get_session),
    principal: MemberPrincipal = Depends(require_org_session),
) -> schemas.Envelope[list[schemas.BookingRead]]:
    cid = principal.cid if principal.role == models.OrgRole.member.value else None
    rows = await booking_service.list_organization_bookings(session, principal.organization.id, cid=cid)
    return schemas.Envelope(data=[booking_service.booking_to_schema(row) for row in rows])


@router.post("/bookings", response_model=schemas.Envelope[schemas.BookingRead], status_code=201)
async def create_booking(
    payload: schemas.BookingCreate,
    session: AsyncSession = Depends(get_session),
    principal: MemberPrincipal = Depends(require_org_session),
) -> schemas.Envelope[schemas.BookingRead]:
    booking = await booking_service.create_booking(session, principal, payload)
    return schemas.Envelope(data=booking_service.booking_to_schema(booking), message="Booking created")


@router.put("/bookings/{booking_id}", response_model=schemas.Envelope[schemas.BookingRead])
async def update_booking(
    booking_id: int,
    payload: schemas.BookingUpdate,
    session: AsyncSession = Depends(get_session),
    principal: MemberPrincipal = Depends(require_org_session),
) -> schemas.Envelope[schemas.BookingRead]:
    booking = await booking_service.update_booking(session, principal, booking_id, payload)
    return schemas.Envelope(data=booking_service.booking_to_schema(booking), message="Booking updated")


@router.delete("/bookings/{booking_id}", status_code=204, response_class=Response)
async def delete_booking(
    booking_id: int,
    session: AsyncSession = Depends(get_session),
    principal: MemberPrincipal = Depends(require_org_session),
) -> Response:
    await booking_service.delete_booking(session, principal, booking_id)
    return Response(status_code=204)


# Members -------------------------------------------------------------------


@router.get("/members", response_model=schemas.Envelope[list[schemas.OrgMemberRead]])
async def list_members(
    session: AsyncSession = Depends(get_session),
    principal: MemberPrincipal = Depends(require_session_roles(_ADMIN, _MANAGER)),
) -> schemas.Envelope[list[schemas.OrgMemberRead]]:
    rows = await memberships.list_members(session, principal.organization.id)
    return schemas.Envelope(data=[memberships.member_to_schema(row) for row in rows])


@router.post("/members", response_model=schemas.Envelope[schemas.OrgMemberRead], status_code=201)
async def add_member(
    payload: schemas.SessionMemberCreate,
    session: AsyncSession = Depends(get_session),
    principal: MemberPrincipal = Depends(require_session_roles(_ADMIN, _MANAGER)),
) -> schemas.Envelope[schemas.OrgMemberRead]:
    membership = await memberships.add_member(
        session, principal.organization.id, payload.cid, payload.role, actor=principal
    )
    return schemas.Envelope(data=memberships.member_to_schema(membership))


@router.put("/members/{member_id}", response_model=schemas.Envelope[schemas.OrgMemberRead])
async def update_member_role(
    member_id: int,
    payload: schemas.OrgMemberRoleUpdate,
    session: AsyncSession = Depends(get_session),
    principal: MemberPrincipal = Depends(require_session_roles(_ADMIN)),
) -> schemas.Envelope[schemas.OrgMemberRead]:
    membership = await memberships.change_member_role(session, member_id, payload.role, actor=principal)
    return schemas.Envelope(data=memberships.member_to_schema(membership))


@router.delete("/members/{member_id}", status_code=204, response_class=Response)
async def remove_member(
    member_id: int,
    session: AsyncSession = Depends(get_session),
    principal: MemberPrincipal = Depends(require_session_roles(_ADMIN, _MANAGER)),
) -> Response:
    await memberships.remove_member(session, member_id, actor=principal)
    return Response(status_code=204)


@router.post("/members/sync", response_model=schemas.Envelope[schemas.RosterSyncRead])
async def sync_members(
    session: AsyncSession = Depends(get_session),
    principal: MemberPrincipal = Depends(require_session_roles(_ADMIN)),
    client: VatsimRosterClient = Depends(get_roster_client),
) -> schemas.Envelope[schemas.RosterSyncRead]:
    organization = principal.organization
    try:
        result = await sync_roster(
            session, organization.id, organization.division, organization.subdivision, client
        )
    except VatsimError as exc:
        logger.error("Roster sync failed for organization_id=%s: %s", organization.id, exc.message)
        raise UpstreamError(f"Failed to sync roster: {exc.message}") from exc

    return schemas.Envelope(
        data=schemas.RosterSyncRead(added=result.added, existing=result.existing, total=result.total),
        message=f"Roster synced: {result.added} added, {result.existing} existing, {result.total} total",
    )
