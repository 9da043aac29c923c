"""VATSIM Connect login and portal session endpoints."""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import schemas
from ..auth import (
    COOKIE_MAX_AGE_SECONDS,
    SESSION_COOKIE,
    AuthSettings,
    get_active_portal_session,
    get_auth_settings,
)
from ..database import get_session
from ..errors import UpstreamError
from ..services import portal_sessions
from ..services.oauth_state import OAuthStateStore, state_store
from ..services.vatsim import VatsimError, VatsimOAuthClient, VatsimSettings, get_vatsim_settings

router = APIRouter(prefix="/api/oauth", tags=["oauth"])

logger = logging.getLogger(__name__)


def get_state_store() -> OAuthStateStore:
    return state_store


def get_oauth_client(settings: VatsimSettings = Depends(get_vatsim_settings)) -> VatsimOAuthClient:
    return VatsimOAuthClient(settings)


def _login_error(settings: VatsimSettings, code: str) -> RedirectResponse:
    return RedirectResponse(f"{settings.frontend_url}/org/login?error={code}", status_code=302)


@router.get("/vatsim")
async def redirect_to_vatsim(
    settings: VatsimSettings = Depends(get_vatsim_settings),
    client: VatsimOAuthClient = Depends(get_oauth_client),
    store: OAuthStateStore = Depends(get_state_store),
) -> RedirectResponse:
    if not settings.oauth_configured:
        raise UpstreamError("VATSIM OAuth not configured")
    return RedirectResponse(client.authorize_url(store.issue()), status_code=302)


@router.get("/vatsim/callback")
async def vatsim_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
    settings: VatsimSettings = Depends(get_vatsim_settings),
    auth_settings: AuthSettings = Depends(get_auth_settings),
    client: VatsimOAuthClient = Depends(get_oauth_client),
    store: OAuthStateStore = Depends(get_state_store),
) -> RedirectResponse:
    if error:
        return _login_error(settings, "access_denied")
    if not code or not state:
        return _login_error(settings, "invalid_request")
    if not store.consume(state):
        logger.warning("VATSIM callback rejected: unknown or expired state token")
        return _login_error(settings, "invalid_state")

    try:
        access_token = await client.exchange_code(code)
    except (VatsimError, httpx.HTTPError) as exc:
        logger.error("VATSIM token exchange failed: %s", exc)
        return _login_error(settings, "token_exchange_failed")

    try:
        profile = await client.fetch_profile(access_token)
    except (VatsimError, httpx.HTTPError) as exc:
        logger.error("VATSIM user fetch failed: %s", exc)
        return _login_error(settings, "user_fetch_failed")

    try:
        portal_session = await portal_sessions.start_session(
            session, profile, ttl_hours=auth_settings.session_ttl_hours
        )
    except SQLAlchemyError:
        logger.exception("OAuth callback failed while creating a session for cid=%s", profile.cid)
        return _login_error(settings, "server_error")

    if portal_session is None:
        return _login_error(settings, "no_organization")

    response = RedirectResponse(f"{settings.frontend_url}/org", status_code=302)
    response.set_cookie(
        SESSION_COOKIE,
        portal_session.id,
        max_age=COOKIE_MAX_AGE_SECONDS,
        httponly=True,
        secure=auth_settings.is_production,
        samesite="lax",
    )
    return response


@router.get("/session", response_model=schemas.Envelope[schemas.SessionInfo])
async def get_session_info(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> schemas.Envelope[schemas.SessionInfo]:
    portal_session = await get_active_portal_session(session, request.cookies.get(SESSION_COOKIE))
    info = await portal_sessions.describe_session(session, portal_session)
    return schemas.Envelope(data=info)


@router.post("/session/org", response_model=schemas.Envelope[schemas.SwitchedFlag])
async def switch_organization(
    payload: schemas.SwitchOrganization,
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> schemas.Envelope[schemas.SwitchedFlag]:
    portal_session = await get_active_portal_session(session, request.cookies.get(SESSION_COOKIE))
    await portal_sessions.switch_organization(session, portal_session, payload.org_id)
    return schemas.Envelope(data=schemas.SwitchedFlag(switched=True))


@router.post("/logout", response_model=schemas.Envelope[schemas.LoggedOutFlag])
async def logout(
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_session),
) -> schemas.Envelope[schemas.LoggedOutFlag]:
    await portal_sessions.end_session(session, request.cookies.get(SESSION_COOKIE))
    response.delete_cookie(SESSION_COOKIE)
    return schemas.Envelope(data=schemas.LoggedOutFlag(logged_out=True))
