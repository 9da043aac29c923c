"""Pydantic models for API requests and responses."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import BookingType, OrgRole

CALLSIGN_SUFFIXES = ("_DEL", "_GND", "_TWR", "_APP", "_DEP", "_CTR", "_FSS")
CID_PATTERN = re.compile(r"[0-9]{1,10}")

DataT = TypeVar("DataT")


def _to_camel(string: str) -> str:
    """Convert ``snake_case`` strings to ``camelCase``."""

    parts = string.split("_")
    return parts[0] + "".join(word.capitalize() for word in parts[1:])


class CamelModel(BaseModel):
    """Base model that renders JSON keys using ``camelCase``."""

    model_config = ConfigDict(
        alias_generator=_to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class Envelope(CamelModel, Generic[DataT]):
    """Successful response wrapper: ``{success, data, message}``."""

    success: bool = True
    data: DataT
    message: Optional[str] = None


def is_valid_callsign(callsign: str) -> bool:
    return callsign.upper().endswith(CALLSIGN_SUFFIXES)


def _check_cid(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    if not CID_PATTERN.fullmatch(value):
        raise ValueError("CID must be a valid numeric VATSIM CID")
    return value


def _check_callsign(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not value:
        raise ValueError("Callsign is required")
    if not is_valid_callsign(value):
        raise ValueError(
            "Callsign must end with: " + ", ".join(CALLSIGN_SUFFIXES[:-1]) + f", or {CALLSIGN_SUFFIXES[-1]}"
        )
    return value


# Organizations -------------------------------------------------------------


class OrganizationSummary(CamelModel):
    id: int
    name: str
    division: str
    subdivision: Optional[str] = None


class OrganizationCreate(CamelModel):
    name: str = Field(..., min_length=1)
    division: str = Field(..., min_length=1)
    subdivision: Optional[str] = None
    portal_enabled: Optional[bool] = None


class OrganizationUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    division: Optional[str] = Field(None, min_length=1)
    subdivision: Optional[str] = None
    portal_enabled: Optional[bool] = None


class OrganizationRead(OrganizationSummary):
    key: str
    portal_enabled: bool
    created_at: datetime
    updated_at: datetime
    booking_count: Optional[int] = None


class OrganizationProfile(OrganizationSummary):
    """Organization details exposed to its own bearer key (no secret)."""

    created_at: datetime
    booking_count: int


# Bookings ------------------------------------------------------------------


class BookingCreate(CamelModel):
    # Optional here so session routes can default it to the caller's cid.
    cid: Optional[str] = None
    callsign: str
    type: BookingType = BookingType.standard
    start: datetime
    end: datetime
    division: str = Field(..., min_length=1)
    subdivision: Optional[str] = None
    organization_id: Optional[int] = Field(None, description="Owning organization; admin callers only")

    @field_validator("cid")
    @classmethod
    def validate_cid(cls, value: Optional[str]) -> Optional[str]:
        return _check_cid(value)

    @field_validator("callsign")
    @classmethod
    def validate_callsign(cls, value: Optional[str]) -> Optional[str]:
        return _check_callsign(value)


class BookingUpdate(CamelModel):
    cid: Optional[str] = None
    callsign: Optional[str] = None
    type: Optional[BookingType] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    division: Optional[str] = Field(None, min_length=1)
    subdivision: Optional[str] = None

    @field_validator("cid")
    @classmethod
    def validate_cid(cls, value: Optional[str]) -> Optional[str]:
        return _check_cid(value)

    @field_validator("callsign")
    @classmethod
    def validate_callsign(cls, value: Optional[str]) -> Optional[str]:
        return _check_callsign(value)


class BookingRead(CamelModel):
    id: int
    organization_id: int
    cid: str
    callsign: str
    type: BookingType
    start: datetime
    end: datetime
    division: str
    subdivision: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    organization: OrganizationSummary


# Membership ----------------------------------------------------------------


class OrgMemberRead(CamelModel):
    id: int
    cid: str
    organization_id: int
    role: str
    created_at: datetime
    updated_at: datetime
    organization: Optional[OrganizationSummary] = None


class OrgMemberCreate(CamelModel):
    cid: str
    organization_id: int = Field(..., gt=0)
    role: OrgRole = OrgRole.manager

    @field_validator("cid")
    @classmethod
    def validate_cid(cls, value: str) -> str:
        return _check_cid(value)


class SessionMemberCreate(CamelModel):
    cid: str
    role: OrgRole = OrgRole.member

    @field_validator("cid")
    @classmethod
    def validate_cid(cls, value: str) -> str:
        return _check_cid(value)


class OrgMemberRoleUpdate(CamelModel):
    role: OrgRole


class RosterSyncRead(CamelModel):
    added: int
    existing: int
    total: int


# Authentication ------------------------------------------------------------


class SecretKeyLogin(CamelModel):
    secret_key: str = Field(..., min_length=1)


class AuthenticatedFlag(CamelModel):
    authenticated: bool


class LoggedOutFlag(CamelModel):
    logged_out: bool


class SwitchOrganization(CamelModel):
    org_id: int


class SwitchedFlag(CamelModel):
    switched: bool


class SessionOrganization(OrganizationSummary):
    role: str


class CurrentOrganization(OrganizationSummary):
    """Selected organization as shown to a portal session (no API key)."""

    portal_enabled: bool


class SessionInfo(CamelModel):
    cid: str
    name: str
    current_org: Optional[CurrentOrganization] = None
    organizations: list[SessionOrganization]


class SessionPrincipalRead(CamelModel):
    cid: str
    name: str
    role: str
    organization: OrganizationSummary


class HealthRead(BaseModel):
    status: str
    timestamp: datetime
    uptime: float
