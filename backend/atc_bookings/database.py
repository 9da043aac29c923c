"""Database configuration for the booking backend.

This module provides a SQLAlchemy async engine and session factory configured
from the ``DATABASE_URL`` environment variable. Hosted Postgres providers issue
DSNs with the ``postgres``/``postgresql`` scheme; to take advantage of
SQLAlchemy's async support we convert them to the ``postgresql+asyncpg``
driver. Other async URLs (``sqlite+aiosqlite`` for local runs) are used as-is,
and their tables are created from the ORM metadata at startup.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from dotenv import find_dotenv, load_dotenv
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from . import migrations
from .models import Base

logger = logging.getLogger(__name__)

# ``find_dotenv`` walks up from the current working directory, so the
# repository-level ``.env`` is found even when imported from nested packages.
_DOTENV_PATH = find_dotenv(filename=".env", raise_error_if_not_found=False, usecwd=True)
if _DOTENV_PATH:
    load_dotenv(_DOTENV_PATH)

_DATABASE_URL_ENV = "DATABASE_URL"


def _build_async_database_url(raw_url: str) -> str:
    """Ensure Postgres URLs use the asyncpg driver."""

    if raw_url.startswith("postgresql+asyncpg://"):
        return raw_url
    if raw_url.startswith("postgres://"):
        raw_url = raw_url.replace("postgres://", "postgresql://", 1)
    if raw_url.startswith("postgresql://"):
        return raw_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return raw_url


def _is_postgres(url: str) -> bool:
    return url.startswith("postgresql")


def get_database_url() -> str:
    try:
        raw_url = os.environ[_DATABASE_URL_ENV]
    except KeyError as exc:  # pragma: no cover - configuration error should be explicit
        raise RuntimeError("DATABASE_URL environment variable must be set") from exc
    return _build_async_database_url(raw_url)


def get_engine_kwargs(url: str) -> dict:
    """Get engine configuration based on the database backend."""

    kwargs: dict = {"echo": False}
    if not _is_postgres(url):
        logger.info("Database configured without connection pool tuning (url scheme=%s)", url.split(":", 1)[0])
        return kwargs

    kwargs.update(
        {
            "pool_size": 5,
            "max_overflow": 10,
            "pool_pre_ping": True,
            "pool_recycle": 3600,
        }
    )
    # Transaction mode poolers (port 6543) cannot use prepared statements.
    if ":6543" in url or "pgbouncer=true" in url:
        logger.info("Using transaction mode pooled connection - disabling prepared statements")
        kwargs["connect_args"] = {"statement_cache_size": 0}
    return kwargs


_database_url = get_database_url()
ASYNC_ENGINE = create_async_engine(_database_url, **get_engine_kwargs(_database_url))
ASYNC_SESSION_FACTORY = async_sessionmaker(
    ASYNC_ENGINE, expire_on_commit=False, class_=AsyncSession
)


async def prepare_schema(engine: AsyncEngine, url: str) -> None:
    """Apply ``schema.sql`` on Postgres; create tables from the models elsewhere."""

    if not _is_postgres(url):
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Created tables from model metadata (url scheme=%s)", url.split(":", 1)[0])
        return

    try:
        applied, _ = await migrations.ensure_schema(engine)
        if applied:
            logger.info("Database schema applied during startup")
    except RuntimeError:
        logger.exception("Failed to apply database schema during startup")
        raise


@asynccontextmanager
async def lifespan(app):  # pragma: no cover - FastAPI hook
    """Apply the schema on startup and dispose the engine on shutdown."""

    await prepare_schema(ASYNC_ENGINE, _database_url)
    yield
    await ASYNC_ENGINE.dispose()


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an ``AsyncSession``."""

    async with ASYNC_SESSION_FACTORY() as session:
        yield session
