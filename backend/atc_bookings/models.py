"""SQLAlchemy ORM models for the ATC booking backend."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class BookingType(enum.Enum):
    standard = "standard"
    event = "event"
    exam = "exam"
    training = "training"


class OrgRole(enum.Enum):
    member = "member"
    manager = "manager"
    admin = "admin"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class Organization(Base, TimestampMixin):
    """A tenant (FIR, vARTCC or division) identified by its API key."""

    __tablename__ = "organizations"
    __table_args__ = (UniqueConstraint("key", name="uq_organizations_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    key: Mapped[str] = mapped_column(String(128), nullable=False)
    division: Mapped[str] = mapped_column(String, nullable=False)
    subdivision: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    portal_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    bookings: Mapped[list["Booking"]] = relationship(
        back_populates="organization", cascade="all, delete-orphan", passive_deletes=True
    )
    members: Mapped[list["OrgMember"]] = relationship(
        back_populates="organization", cascade="all, delete-orphan", passive_deletes=True
    )


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("start_at < end_at", name="ck_bookings_time_order"),
        Index("idx_bookings_callsign_start", "callsign", "start_at"),
        Index("idx_bookings_organization_id", "organization_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    cid: Mapped[str] = mapped_column(String(16), nullable=False)
    callsign: Mapped[str] = mapped_column(String(32), nullable=False)
    type: Mapped[BookingType] = mapped_column(
        Enum(BookingType, name="booking_type", native_enum=False),
        default=BookingType.standard,
        nullable=False,
    )
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    division: Mapped[str] = mapped_column(String, nullable=False)
    subdivision: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    organization: Mapped[Organization] = relationship(back_populates="bookings")


class OrgMember(Base, TimestampMixin):
    __tablename__ = "org_members"
    __table_args__ = (
        UniqueConstraint("cid", "organization_id", name="uq_org_member"),
        CheckConstraint("role IN ('member','manager','admin')", name="ck_org_member_role"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cid: Mapped[str] = mapped_column(String(16), nullable=False)
    organization_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String, default=OrgRole.member.value, nullable=False)

    organization: Mapped[Organization] = relationship(back_populates="members")


class PortalSession(Base):
    """Server-side record behind the ``org_session`` cookie."""

    __tablename__ = "sessions"
    __table_args__ = (Index("idx_sessions_cid", "cid"),)
    __mapper_args__ = {"confirm_deleted_rows": False}

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    cid: Mapped[str] = mapped_column(String(16), nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    organization_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
