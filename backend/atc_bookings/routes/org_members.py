"""Admin management of organization memberships."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from .. import schemas
from ..auth import AdminPrincipal, require_admin
from ..database import get_session
from ..services import memberships

router = APIRouter(prefix="/api/org-members", tags=["org-members"])


@router.get("", response_model=schemas.Envelope[list[schemas.OrgMemberRead]])
async def list_members(
    org_id: int = Query(..., alias="orgId", gt=0),
    session: AsyncSession = Depends(get_session),
    _admin: AdminPrincipal = Depends(require_admin),
) -> schemas.Envelope[list[schemas.OrgMemberRead]]:
    rows = await memberships.list_members(session, org_id)
    return schemas.Envelope(data=[memberships.member_to_schema(row) for row in rows])


@router.get("/all", response_model=schemas.Envelope[list[schemas.OrgMemberRead]])
async def list_all_members(
    session: AsyncSession = Depends(get_session),
    _admin: AdminPrincipal = Depends(require_admin),
) -> schemas.Envelope[list[schemas.OrgMemberRead]]:
    rows = await memberships.list_all_members(session)
    return schemas.Envelope(
        data=[memberships.member_to_schema(row, include_organization=True) for row in rows]
    )


@router.post("", response_model=schemas.Envelope[schemas.OrgMemberRead], status_code=201)
async def add_member(
    payload: schemas.OrgMemberCreate,
    session: AsyncSession = Depends(get_session),
    _admin: AdminPrincipal = Depends(require_admin),
) -> schemas.Envelope[schemas.OrgMemberRead]:
    membership = await memberships.add_member(session, payload.organization_id, payload.cid, payload.role)
    return schemas.Envelope(data=memberships.member_to_schema(membership, include_organization=True))


@router.put("/{member_id}", response_model=schemas.Envelope[schemas.OrgMemberRead])
async def update_member_role(
    member_id: int,
    payload: schemas.OrgMemberRoleUpdate,
    session: AsyncSession = Depends(get_session),
    _admin: AdminPrincipal = Depends(require_admin),
) -> schemas.Envelope[schemas.OrgMemberRead]:
    membership = await memberships.change_member_role(session, member_id, payload.role)
    return schemas.Envelope(data=memberships.member_to_schema(membership, include_organization=True))


@router.delete("/{member_id}", status_code=204, response_class=Response)
async def remove_member(
    member_id: int,
    session: AsyncSession = Depends(get_session),
    _admin: AdminPrincipal = Depends(require_admin),
) -> Response:
    await memberships.remove_member(session, member_id)
    return Response(status_code=204)
