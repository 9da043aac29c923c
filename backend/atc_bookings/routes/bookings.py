"""Public booking listing and bearer/admin booking management."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional, Union

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models, schemas
from ..auth import AdminPrincipal, OrganizationPrincipal, optional_api_key, require_booking_writer
from ..database import get_session
from ..services import bookings as booking_service

router = APIRouter(prefix="/api/bookings", tags=["bookings"])

BookingWriter = Union[OrganizationPrincipal, AdminPrincipal]


@router.get("", response_model=schemas.Envelope[list[schemas.BookingRead]])
async def list_bookings(
    callsign: Optional[str] = Query(None),
    division: Optional[str] = Query(None),
    subdivision: Optional[str] = Query(None),
    type: Optional[models.BookingType] = Query(None),
    order: Optional[Literal["current", "past", "future"]] = Query(None),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    session: AsyncSession = Depends(get_session),
    _caller: Optional[OrganizationPrincipal] = Depends(optional_api_key),
) -> schemas.Envelope[list[schemas.BookingRead]]:
    filters = booking_service.BookingFilters(
        callsign=callsign,
        division=division,
        subdivision=subdivision,
        type=type,
        order=order,
        start_date=start_date,
        end_date=end_date,
    )
    rows = await booking_service.list_bookings(session, filters)
    return schemas.Envelope(data=[booking_service.booking_to_schema(row) for row in rows])


@router.post("", response_model=schemas.Envelope[schemas.BookingRead], status_code=201)
async def create_booking(
    payload: schemas.BookingCreate,
    session: AsyncSession = Depends(get_session),
    principal: BookingWriter = Depends(require_booking_writer),
) -> schemas.Envelope[schemas.BookingRead]:
    booking = await booking_service.create_booking(session, principal, payload)
    return schemas.Envelope(data=booking_service.booking_to_schema(booking), message="Booking created")


@router.get("/{booking_id}", response_model=schemas.Envelope[schemas.BookingRead])
async def get_booking(
    booking_id: int,
    session: AsyncSession = Depends(get_session),
    _principal: BookingWriter = Depends(require_booking_writer),
) -> schemas.Envelope[schemas.BookingRead]:
    booking = await booking_service.get_booking(session, booking_id)
    return schemas.Envelope(data=booking_service.booking_to_schema(booking))


@router.put("/{booking_id}", response_model=schemas.Envelope[schemas.BookingRead])
async def update_booking(
    booking_id: int,
    payload: schemas.BookingUpdate,
    session: AsyncSession = Depends(get_session),
    principal: BookingWriter = Depends(require_booking_writer),
) -> schemas.Envelope[schemas.BookingRead]:
    booking = await booking_service.update_booking(session, principal, booking_id, payload)
    return schemas.Envelope(data=booking_service.booking_to_schema(booking), message="Booking updated")


@router.delete("/{booking_id}", status_code=204, response_class=Response)
async def delete_booking(
    booking_id: int,
    session: AsyncSession = Depends(get_session),
    principal: BookingWriter = Depends(require_booking_writer),
) -> Response:
    await booking_service.delete_booking(session, principal, booking_id)
    return Response(status_code=204)
