"""Principal resolution for the three credential schemes.

* Admin secret: a shared ``SECRET_KEY`` presented as the ``secret_key`` cookie
  (set by ``POST /api/auth/secret-key``) or the ``X-Secret-Key`` header.
* Bearer API key: an organization's ``key`` in the ``Authorization`` header.
* Portal session: the ``org_session`` cookie issued after VATSIM OAuth, bound to
  a selected organization and re-checked against ``org_members`` on every use.

Each scheme is a :class:`PrincipalResolver`; the FastAPI dependencies at the
bottom of this module compose them per route and hand handlers a typed
principal instead of mutating the request.
"""

from __future__ import annotations

import hmac
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Union

from dotenv import find_dotenv, load_dotenv
from fastapi import Depends, Request
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from .database import get_session
from .errors import AuthenticationError, AuthorizationError
from .utils import ensure_utc, utcnow

_DOTENV_PATH = find_dotenv(filename=".env", raise_error_if_not_found=False, usecwd=True)
if _DOTENV_PATH:
    load_dotenv(_DOTENV_PATH)


logger = logging.getLogger(__name__)

ADMIN_COOKIE = "secret_key"
ADMIN_HEADER = "X-Secret-Key"
SESSION_COOKIE = "org_session"
COOKIE_MAX_AGE_SECONDS = 24 * 60 * 60


class AuthSettings(BaseSettings):
    """Configuration for the admin secret and portal sessions."""

    model_config = SettingsConfigDict(extra="ignore")

    secret_key: Optional[str] = None
    environment: str = "development"
    session_ttl_hours: int = 24

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")


@lru_cache
def get_auth_settings() -> AuthSettings:
    return AuthSettings()


@dataclass(frozen=True)
class AdminPrincipal:
    """Holder of the shared admin secret; may act on every organization."""


@dataclass(frozen=True)
class OrganizationPrincipal:
    """Caller authenticated with an organization's bearer API key."""

    organization: models.Organization


@dataclass(frozen=True)
class MemberPrincipal:
    """Portal session user acting within their selected organization."""

    organization: models.Organization
    cid: str
    name: str
    role: str
    session_id: str

    def has_any_role(self, roles: tuple[str, ...]) -> bool:
        return self.role.lower() in {role.lower() for role in roles}


Principal = Union[AdminPrincipal, OrganizationPrincipal, MemberPrincipal]


def can_act_on(principal: Principal, booking: models.Booking) -> bool:
    """Return whether ``principal`` may modify or delete ``booking``."""

    if isinstance(principal, AdminPrincipal):
        return True
    if booking.organization_id != principal.organization.id:
        return False
    if isinstance(principal, MemberPrincipal) and principal.role == models.OrgRole.member.value:
        return booking.cid == principal.cid
    return True


def secrets_match(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def _bearer_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("Authorization")
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class PrincipalResolver(ABC):
    """Turns request credentials into a principal.

    ``resolve`` returns ``None`` when the request carries no credential for this
    scheme and raises :class:`AuthenticationError` when it carries a bad one.
    """

    @abstractmethod
    async def resolve(self, request: Request, db: AsyncSession) -> Optional[Principal]:
        raise NotImplementedError


class AdminSecretResolver(PrincipalResolver):
    def __init__(self, settings: AuthSettings) -> None:
        self._settings = settings

    async def resolve(self, request: Request, db: AsyncSession) -> Optional[AdminPrincipal]:
        provided = request.cookies.get(ADMIN_COOKIE) or request.headers.get(ADMIN_HEADER)
        if not provided:
            return None

        expected = self._settings.secret_key
        if not expected or not secrets_match(provided, expected):
            logger.warning("Admin auth failed: secret key mismatch (configured=%s)", bool(expected))
            raise AuthenticationError("Invalid or missing secret key", clear_cookies=(ADMIN_COOKIE,))
        return AdminPrincipal()


class ApiKeyResolver(PrincipalResolver):
    async def resolve(self, request: Request, db: AsyncSession) -> Optional[OrganizationPrincipal]:
        token = _bearer_token(request)
        if token is None:
            return None

        result = await db.execute(select(models.Organization).where(models.Organization.key == token))
        organization = result.scalar_one_or_none()
        if organization is None:
            logger.warning("API key auth failed: unknown key")
            raise AuthenticationError("Invalid API key")
        return OrganizationPrincipal(organization=organization)


async def get_active_portal_session(db: AsyncSession, session_id: Optional[str]) -> models.PortalSession:
    """Load an unexpired portal session, deleting it if it has expired."""

    if not session_id:
        raise AuthenticationError("Session required")

    portal_session = await db.get(models.PortalSession, session_id)
    if portal_session is None:
        raise AuthenticationError("Invalid session", clear_cookies=(SESSION_COOKIE,))

    if ensure_utc(portal_session.expires_at) < utcnow():
        logger.info("Portal session expired for cid=%s; removing", portal_session.cid)
        await db.delete(portal_session)
        await db.commit()
        raise AuthenticationError("Session expired", clear_cookies=(SESSION_COOKIE,))

    return portal_session


async def get_membership(
    db: AsyncSession, cid: str, organization_id: int
) -> Optional[models.OrgMember]:
    result = await db.execute(
        select(models.OrgMember).where(
            models.OrgMember.cid == cid,
            models.OrgMember.organization_id == organization_id,
        )
    )
    return result.scalar_one_or_none()


class OrgSessionResolver(PrincipalResolver):
    async def resolve(self, request: Request, db: AsyncSession) -> MemberPrincipal:
        portal_session = await get_active_portal_session(db, request.cookies.get(SESSION_COOKIE))

        if portal_session.organization_id is None:
            raise AuthenticationError("No organization selected")

        organization = await db.get(models.Organization, portal_session.organization_id)
        if organization is None:
            raise AuthenticationError("Organization not found")

        if not organization.portal_enabled:
            logger.warning(
                "Portal session rejected: portal disabled for organization_id=%s (cid=%s)",
                organization.id,
                portal_session.cid,
            )
            raise AuthorizationError("Portal access is disabled for this organization")

        membership = await get_membership(db, portal_session.cid, organization.id)
        if membership is None:
            logger.warning(
                "Portal session rejected: cid=%s is no longer a member of organization_id=%s",
                portal_session.cid,
                organization.id,
            )
            raise AuthenticationError("You are no longer a member of this organization")

        return MemberPrincipal(
            organization=organization,
            cid=portal_session.cid,
            name=portal_session.name,
            role=membership.role,
            session_id=portal_session.id,
        )


async def require_admin(
    request: Request,
    db: AsyncSession = Depends(get_session),
    settings: AuthSettings = Depends(get_auth_settings),
) -> AdminPrincipal:
    principal = await AdminSecretResolver(settings).resolve(request, db)
    if principal is None:
        raise AuthenticationError("Invalid or missing secret key")
    return principal


async def require_api_key(
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> OrganizationPrincipal:
    principal = await ApiKeyResolver().resolve(request, db)
    if principal is None:
        raise AuthenticationError("Authorization token required")
    return principal


async def optional_api_key(
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> Optional[OrganizationPrincipal]:
    """Resolve a bearer key when present; unknown keys are ignored."""

    try:
        return await ApiKeyResolver().resolve(request, db)
    except AuthenticationError:
        return None


async def require_booking_writer(
    request: Request,
    db: AsyncSession = Depends(get_session),
    settings: AuthSettings = Depends(get_auth_settings),
) -> Union[OrganizationPrincipal, AdminPrincipal]:
    """Bearer key, or the admin secret acting on behalf of any organization."""

    if _bearer_token(request) is not None:
        return await require_api_key(request, db)

    principal = await AdminSecretResolver(settings).resolve(request, db)
    if principal is None:
        raise AuthenticationError("Authorization token required")
    return principal


async def require_org_session(
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> MemberPrincipal:
    return await OrgSessionResolver().resolve(request, db)


def require_session_roles(*roles: str):
    """Factory that returns a dependency enforcing one of ``roles`` on the session."""

    if not roles:
        raise ValueError("At least one role must be provided to require_session_roles")

    async def dependency(principal: MemberPrincipal = Depends(require_org_session)) -> MemberPrincipal:
        if not principal.has_any_role(roles):
            logger.warning(
                "Portal auth failed: cid=%s missing required role (required=%s, role=%s)",
                principal.cid,
                roles,
                principal.role,
            )
            raise AuthorizationError("You do not have permission to perform this action")
        return principal

    return dependency
