from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, Iterable, Optional
from urllib.parse import urlsplit

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import schemas
from .auth import get_auth_settings
from .database import lifespan as database_lifespan
from .errors import AppError, AuthenticationError
from .routes import auth, bookings, keys, oauth, org, org_members, org_session
from .services.oauth_state import state_reaper
from .utils import utcnow

logger = logging.getLogger(__name__)

_STARTED_AT = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - FastAPI hook
    async with database_lifespan(app):
        async with state_reaper():
            yield


app = FastAPI(title="ATC Booking API", lifespan=lifespan)


def _normalize_origin(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    parsed = urlsplit(trimmed)
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


def _collect_cors_origins() -> list[str]:
    origin_keys: Iterable[str] = ("FRONTEND_URL", "CORS_ORIGIN")
    origins = {
        origin
        for origin in (
            _normalize_origin(os.getenv(key))
            for key in origin_keys
        )
        if origin
    }

    extra_origins = os.getenv("ADDITIONAL_CORS_ORIGINS")
    if extra_origins:
        for candidate in extra_origins.split(","):
            normalized = _normalize_origin(candidate)
            if normalized:
                origins.add(normalized)

    if not origins:
        # Fall back to local development defaults when nothing is configured.
        origins.update(
            {
                "http://localhost:5173",
                "http://localhost:3000",
                "http://127.0.0.1:3000",
            }
        )
        logger.debug(
            "CORS origins not configured; defaulting to local development origins: %s",
            sorted(origins),
        )
    else:
        logger.debug("Configured CORS origins: %s", sorted(origins))

    return sorted(origins)


allowed_origins = _collect_cors_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)


def _cors_headers(request: Request) -> dict[str, str]:
    headers = {}
    origin = request.headers.get("origin")
    if origin and origin in allowed_origins:
        headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Credentials"] = "true"
    return headers


def _error_body(message: Optional[str], errors: Optional[dict[str, list[str]]] = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False}
    if message:
        body["message"] = message
    if errors:
        body["errors"] = errors
    return body


def _field_path(loc: Iterable[Any]) -> str:
    parts = [str(part) for part in loc if part not in ("body", "query", "path", "header", "cookie")]
    return ".".join(parts) or "request"


def _field_errors(exc: RequestValidationError) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    for error in exc.errors():
        message = error.get("msg", "Invalid value")
        ctx_error = (error.get("ctx") or {}).get("error")
        if error.get("type") == "value_error" and ctx_error is not None:
            message = str(ctx_error)
        errors.setdefault(_field_path(error.get("loc", ())), []).append(message)
    return errors


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Render application errors into the response envelope."""
    response = JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.message, exc.errors or None),
        headers=_cors_headers(request),
    )
    if isinstance(exc, AuthenticationError):
        for cookie in exc.clear_cookies:
            response.delete_cookie(cookie)
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Ensure CORS headers are included in HTTP exception responses."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(str(exc.detail)),
        headers=_cors_headers(request),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Render request validation failures as a ``{field: [messages]}`` map."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body("Validation failed", _field_errors(exc)),
        headers=_cors_headers(request),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Ensure CORS headers are included in general exception responses."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )

    if get_auth_settings().is_production:
        message = f"Internal server error: {type(exc).__name__}"
    else:
        message = str(exc) or type(exc).__name__

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(message),
        headers=_cors_headers(request),
    )


app.include_router(auth.router)
app.include_router(bookings.router)
app.include_router(keys.router)
app.include_router(org.router)
app.include_router(org_members.router)
app.include_router(oauth.router)
app.include_router(org_session.router)


@app.get("/health", response_model=schemas.HealthRead)
async def health() -> schemas.HealthRead:
    return schemas.HealthRead(status="ok", timestamp=utcnow(), uptime=time.monotonic() - _STARTED_AT)
