from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["ENVIRONMENT"] = "test"
os.environ["FRONTEND_URL"] = "http://frontend.test"
os.environ.pop("VATSIM_API_KEY", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from atc_bookings import models
from atc_bookings.database import get_session
from atc_bookings.main import app
from atc_bookings.utils import generate_token, utcnow


def hours_from_now(hours: float) -> datetime:
    return (utcnow() + timedelta(hours=hours)).replace(microsecond=0)


def iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


class Seeder:
    """Inserts fixture rows through a dedicated session."""

    def __init__(self, factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = factory

    def add(self, *objects):
        async def _add():
            async with self._factory() as session:
                session.add_all(objects)
                await session.commit()
                for obj in objects:
                    await session.refresh(obj)

        asyncio.run(_add())
        return objects[0] if len(objects) == 1 else objects

    def organization(self, name: str = "Europe Control", **overrides) -> models.Organization:
        values = {"name": name, "key": generate_token(), "division": "EUD", "subdivision": None}
        values.update(overrides)
        return self.add(models.Organization(**values))

    def member(self, organization: models.Organization, cid: str, role: str = "member") -> models.OrgMember:
        return self.add(models.OrgMember(cid=cid, organization_id=organization.id, role=role))

    def portal_session(
        self,
        organization: Optional[models.Organization],
        cid: str,
        *,
        name: str = "Test Controller",
        expires_in_hours: float = 24,
    ) -> models.PortalSession:
        return self.add(
            models.PortalSession(
                id=generate_token(),
                cid=cid,
                name=name,
                organization_id=organization.id if organization else None,
                expires_at=utcnow() + timedelta(hours=expires_in_hours),
            )
        )

    def booking(
        self,
        organization: models.Organization,
        *,
        callsign: str = "EDDF_TWR",
        cid: str = "1234567",
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> models.Booking:
        start = start or hours_from_now(1)
        end = end or start + timedelta(hours=2)
        return self.add(
            models.Booking(
                organization_id=organization.id,
                cid=cid,
                callsign=callsign,
                type=models.BookingType.standard,
                start_at=start,
                end_at=end,
                division=organization.division,
                subdivision=organization.subdivision,
            )
        )

    def run(self, func):
        """Run ``func(session)`` in a fresh session and return its result."""

        async def _run():
            async with self._factory() as session:
                return await func(session)

        return asyncio.run(_run())


@pytest.fixture
def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}", poolclass=NullPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async def _create_tables() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(models.Base.metadata.create_all)

    asyncio.run(_create_tables())
    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    async def _override_session():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_session] = _override_session
    try:
        yield factory
    finally:
        app.dependency_overrides.clear()
        asyncio.run(engine.dispose())


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture
def client(session_factory) -> TestClient:
    return TestClient(app)
