"""Booking engine: validation, overlap checks and persistence."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import Select, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .. import models, schemas
from ..auth import AdminPrincipal, MemberPrincipal, OrganizationPrincipal, Principal, can_act_on
from ..errors import AuthorizationError, BadRequestError, ConflictError, NotFoundError, ValidationError
from ..utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

OVERLAP_CONSTRAINT = "ex_bookings_no_overlap"


@dataclass(frozen=True)
class BookingFilters:
    callsign: Optional[str] = None
    division: Optional[str] = None
    subdivision: Optional[str] = None
    type: Optional[models.BookingType] = None
    order: Optional[str] = None  # "current" | "past" | "future"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


def booking_to_schema(booking: models.Booking) -> schemas.BookingRead:
    return schemas.BookingRead(
        id=booking.id,
        organization_id=booking.organization_id,
        cid=booking.cid,
        callsign=booking.callsign,
        type=booking.type,
        start=ensure_utc(booking.start_at),
        end=ensure_utc(booking.end_at),
        division=booking.division,
        subdivision=booking.subdivision,
        created_at=ensure_utc(booking.created_at),
        updated_at=ensure_utc(booking.updated_at),
        organization=schemas.OrganizationSummary.model_validate(booking.organization),
    )


def validate_booking_times(start: datetime, end: datetime, *, now: Optional[datetime] = None) -> None:
    if start >= end:
        raise ValidationError.for_field("time", "End time must be after start time")
    if end < (now or utcnow()):
        raise ValidationError.for_field("time", "Booking end time cannot be in the past")


async def has_overlap(
    db: AsyncSession,
    callsign: str,
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[int] = None,
) -> bool:
    """Return whether ``[start, end)`` intersects a stored booking for ``callsign``."""

    query = select(models.Booking.id).where(
        models.Booking.callsign == callsign.upper(),
        models.Booking.start_at < ensure_utc(end),
        models.Booking.end_at > ensure_utc(start),
    )
    if exclude_booking_id is not None:
        query = query.where(models.Booking.id != exclude_booking_id)

    result = await db.execute(query.limit(1))
    return result.first() is not None


def _with_organization(query: Select) -> Select:
    return query.options(selectinload(models.Booking.organization))


async def get_booking(db: AsyncSession, booking_id: int) -> models.Booking:
    result = await db.execute(
        _with_organization(select(models.Booking))
        .where(models.Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if booking is None:
        raise NotFoundError("Booking not found")
    return booking


async def _flush_booking(db: AsyncSession, booking: models.Booking) -> None:
    """Flush ``booking``; an exclusion-constraint race surfaces as an overlap."""

    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        if OVERLAP_CONSTRAINT in str(exc.orig):
            logger.info("Concurrent overlap rejected by the database for callsign=%s", booking.callsign)
            raise ConflictError() from exc
        raise


async def _resolve_owner(
    db: AsyncSession, principal: Principal, payload: schemas.BookingCreate
) -> models.Organization:
    if isinstance(principal, AdminPrincipal):
        if payload.organization_id is None:
            raise ValidationError.for_field("organizationId", "Organization is required for admin bookings")
        organization = await db.get(models.Organization, payload.organization_id)
        if organization is None:
            raise NotFoundError("Organization not found")
        return organization
    return principal.organization


def _resolve_cid(principal: Principal, requested: Optional[str]) -> str:
    if isinstance(principal, MemberPrincipal) and principal.role == models.OrgRole.member.value:
        if requested is not None and requested != principal.cid:
            raise AuthorizationError("You can only create bookings for your own CID")
        return principal.cid
    if requested is None:
        raise ValidationError.for_field("cid", "CID is required")
    return requested


async def create_booking(
    db: AsyncSession, principal: Principal, payload: schemas.BookingCreate
) -> models.Booking:
    cid = _resolve_cid(principal, payload.cid)
    start = ensure_utc(payload.start)
    end = ensure_utc(payload.end)

    validate_booking_times(start, end)
    if await has_overlap(db, payload.callsign, start, end):
        raise ConflictError()

    organization = await _resolve_owner(db, principal, payload)
    booking = models.Booking(
        organization_id=organization.id,
        cid=cid,
        callsign=payload.callsign.upper(),
        type=payload.type,
        start_at=start,
        end_at=end,
        division=payload.division,
        subdivision=payload.subdivision,
    )
    db.add(booking)
    await _flush_booking(db, booking)
    await db.commit()

    logger.info(
        "Created booking id=%s callsign=%s organization_id=%s",
        booking.id,
        booking.callsign,
        booking.organization_id,
    )
    return await get_booking(db, booking.id)


def _ensure_can_act_on(principal: Principal, booking: models.Booking, action: str) -> None:
    if can_act_on(principal, booking):
        return
    if isinstance(principal, OrganizationPrincipal):
        raise BadRequestError(f"You can only {action} your own bookings")
    if booking.organization_id != principal.organization.id:
        # Session routes hide bookings that belong to other organizations.
        raise NotFoundError("Booking not found")
    raise AuthorizationError(f"You can only {action} your own bookings")


async def update_booking(
    db: AsyncSession, principal: Principal, booking_id: int, payload: schemas.BookingUpdate
) -> models.Booking:
    booking = await get_booking(db, booking_id)
    _ensure_can_act_on(principal, booking, "update")

    changes = payload.model_dump(exclude_unset=True)
    if (
        isinstance(principal, MemberPrincipal)
        and principal.role == models.OrgRole.member.value
        and changes.get("cid") not in (None, principal.cid)
    ):
        raise AuthorizationError("You cannot change the booking CID")

    start = ensure_utc(changes["start"]) if changes.get("start") else ensure_utc(booking.start_at)
    end = ensure_utc(changes["end"]) if changes.get("end") else ensure_utc(booking.end_at)
    callsign = changes["callsign"].upper() if changes.get("callsign") else booking.callsign

    if changes.get("start") or changes.get("end"):
        validate_booking_times(start, end)
    if changes.get("start") or changes.get("end") or changes.get("callsign"):
        if await has_overlap(db, callsign, start, end, exclude_booking_id=booking.id):
            raise ConflictError()

    if changes.get("cid"):
        booking.cid = changes["cid"]
    if changes.get("callsign"):
        booking.callsign = callsign
    if changes.get("type"):
        booking.type = changes["type"]
    booking.start_at = start
    booking.end_at = end
    if changes.get("division"):
        booking.division = changes["division"]
    if "subdivision" in changes:
        booking.subdivision = changes["subdivision"]

    await _flush_booking(db, booking)
    await db.commit()
    return await get_booking(db, booking.id)


async def delete_booking(db: AsyncSession, principal: Principal, booking_id: int) -> None:
    booking = await get_booking(db, booking_id)
    _ensure_can_act_on(principal, booking, "delete")

    await db.delete(booking)
    await db.commit()
    logger.info("Deleted booking id=%s callsign=%s", booking_id, booking.callsign)


def _apply_filters(query: Select, filters: BookingFilters, now: datetime) -> Select:
    if filters.callsign:
        query = query.where(models.Booking.callsign.contains(filters.callsign.upper()))
    if filters.division:
        query = query.where(models.Booking.division == filters.division)
    if filters.subdivision:
        query = query.where(models.Booking.subdivision == filters.subdivision)
    if filters.type:
        query = query.where(models.Booking.type == filters.type)

    if filters.order == "current":
        query = query.where(models.Booking.start_at <= now, models.Booking.end_at >= now)
    elif filters.order == "past":
        query = query.where(models.Booking.end_at < now)
    elif filters.order == "future":
        query = query.where(models.Booking.start_at > now)

    if filters.start_date:
        query = query.where(models.Booking.start_at >= ensure_utc(filters.start_date))
    if filters.end_date:
        query = query.where(models.Booking.end_at <= ensure_utc(filters.end_date))
    return query


async def list_bookings(db: AsyncSession, filters: BookingFilters) -> Sequence[models.Booking]:
    query = _apply_filters(_with_organization(select(models.Booking)), filters, utcnow())
    result = await db.execute(query.order_by(models.Booking.start_at.asc(), models.Booking.id.asc()))
    return result.scalars().all()


async def list_organization_bookings(
    db: AsyncSession, organization_id: int, *, cid: Optional[str] = None
) -> Sequence[models.Booking]:
    query = _with_organization(select(models.Booking)).where(
        models.Booking.organization_id == organization_id
    )
    if cid is not None:
        query = query.where(models.Booking.cid == cid)
    result = await db.execute(query.order_by(models.Booking.start_at.asc(), models.Booking.id.asc()))
    return result.scalars().all()


async def count_organization_bookings(db: AsyncSession, organization_id: int) -> int:
    result = await db.execute(
        select(func.count(models.Booking.id)).where(models.Booking.organization_id == organization_id)
    )
    return int(result.scalar_one())
