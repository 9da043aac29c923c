"""Admin secret-key login."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response

from .. import schemas
from ..auth import (
    ADMIN_COOKIE,
    COOKIE_MAX_AGE_SECONDS,
    AuthSettings,
    get_auth_settings,
    secrets_match,
)
from ..errors import BadRequestError

router = APIRouter(prefix="/api/auth", tags=["auth"])

logger = logging.getLogger(__name__)


@router.post("/secret-key", response_model=schemas.Envelope[schemas.AuthenticatedFlag])
async def login_with_secret_key(
    payload: schemas.SecretKeyLogin,
    response: Response,
    settings: AuthSettings = Depends(get_auth_settings),
) -> schemas.Envelope[schemas.AuthenticatedFlag]:
    if not settings.secret_key or not secrets_match(payload.secret_key, settings.secret_key):
        logger.warning("Admin login rejected: invalid secret key")
        raise BadRequestError("Invalid secret key")

    response.set_cookie(
        ADMIN_COOKIE,
        payload.secret_key,
        max_age=COOKIE_MAX_AGE_SECONDS,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )
    return schemas.Envelope(data=schemas.AuthenticatedFlag(authenticated=True))


@router.post("/logout", response_model=schemas.Envelope[schemas.LoggedOutFlag])
async def logout(response: Response) -> schemas.Envelope[schemas.LoggedOutFlag]:
    response.delete_cookie(ADMIN_COOKIE)
    return schemas.Envelope(data=schemas.LoggedOutFlag(logged_out=True))
