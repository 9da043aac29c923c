import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from atc_bookings import models
from atc_bookings.auth import SESSION_COOKIE
from atc_bookings.main import app
from atc_bookings.routes.org_session import get_roster_client
from atc_bookings.services.roster_sync import sync_roster, vatsim_subdivision_code
from atc_bookings.services.vatsim import VatsimError, VatsimRosterClient


def _member(cid: int, subdivision: str = "GER") -> dict:
    return {"id": cid, "name_first": "Test", "name_last": str(cid), "subdivision_id": subdivision}


class FakeRoster:
    """Serves ``/v2/orgs/...`` pages from in-memory rosters."""

    def __init__(self, rosters: dict[str, list[dict]], failing: tuple[str, ...] = ()) -> None:
        self.rosters = rosters
        self.failing = failing
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path in self.failing:
            return httpx.Response(503, text="<html>upstream down</html>")
        roster = self.rosters.get(request.url.path)
        if roster is None:
            return httpx.Response(404, json={"detail": "not found"})
        limit = int(request.url.params["limit"])
        offset = int(request.url.params["offset"])
        return httpx.Response(200, json={"items": roster[offset : offset + limit], "count": len(roster)})

    def client(self) -> VatsimRosterClient:
        return VatsimRosterClient("core-api-key", transport=httpx.MockTransport(self))


def _sync(seed, org, fake: FakeRoster):
    return seed.run(
        lambda session: sync_roster(session, org.id, org.division, org.subdivision, fake.client())
    )


def _member_cids(seed, org) -> list[str]:
    async def _query(session):
        result = await session.execute(
            select(models.OrgMember.cid).where(models.OrgMember.organization_id == org.id)
        )
        return sorted(result.scalars().all())

    return seed.run(_query)


def test_subdivision_codes_are_translated() -> None:
    assert vatsim_subdivision_code("CZE") == "CZCH"
    assert vatsim_subdivision_code("lva") == "LATVIA"
    assert vatsim_subdivision_code("GER") == "GER"


def test_pagination_follows_declared_count() -> None:
    roster = [_member(1000000 + i) for i in range(230)]
    fake = FakeRoster({"/v2/orgs/subdivision/GER": roster})

    members = asyncio.run(fake.client().fetch_subdivision("GER"))

    assert len(members) == 230
    assert [int(r.url.params["offset"]) for r in fake.requests] == [0, 100, 200]
    assert fake.requests[0].headers["X-API-Key"] == "core-api-key"
    assert fake.requests[0].headers["User-Agent"] == "ATC-BookingSystem/1.0"


def test_short_page_ends_pagination_even_if_count_is_larger() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"items": [_member(1), _member(2)], "count": 500})

    client = VatsimRosterClient("k", transport=httpx.MockTransport(handler))

    assert len(asyncio.run(client.fetch_division("EUD"))) == 2


def test_sync_adds_missing_members_and_is_idempotent(seed) -> None:
    org = seed.organization(subdivision="GER")
    seed.member(org, "1000001", role="admin")
    fake = FakeRoster({"/v2/orgs/subdivision/GER": [_member(1000001), _member(1000002), _member(1000002), _member(1000003)]})

    first = _sync(seed, org, fake)
    second = _sync(seed, org, fake)

    assert (first.added, first.existing, first.total) == (2, 1, 3)
    assert (second.added, second.existing, second.total) == (0, 3, 3)
    assert _member_cids(seed, org) == ["1000001", "1000002", "1000003"]

    async def _admin_role(session):
        result = await session.execute(
            select(models.OrgMember.role).where(models.OrgMember.cid == "1000001")
        )
        return result.scalar_one()

    assert seed.run(_admin_role) == "admin"


def test_sync_without_subdivision_uses_division_listing(seed) -> None:
    org = seed.organization(division="EUD", subdivision=None)
    fake = FakeRoster({"/v2/orgs/division/EUD": [_member(1), _member(2, "FRA")]})

    result = _sync(seed, org, fake)

    assert result.total == 2
    assert [r.url.path for r in fake.requests] == ["/v2/orgs/division/EUD"]


def test_failed_subdivision_listing_falls_back_to_filtered_division(seed) -> None:
    org = seed.organization(division="EUD", subdivision="CZE")
    fake = FakeRoster(
        {"/v2/orgs/division/EUD": [_member(1, "CZCH"), _member(2, "GER"), _member(3, "CZCH")]},
        failing=("/v2/orgs/subdivision/CZCH",),
    )

    result = _sync(seed, org, fake)

    assert (result.added, result.total) == (2, 2)
    assert _member_cids(seed, org) == ["1", "3"]


def test_failed_fallback_aborts_without_writes(seed) -> None:
    org = seed.organization(division="EUD", subdivision="GER")
    fake = FakeRoster({}, failing=("/v2/orgs/subdivision/GER", "/v2/orgs/division/EUD"))

    with pytest.raises(VatsimError):
        _sync(seed, org, fake)

    assert _member_cids(seed, org) == []


def test_sync_endpoint_reports_counts_and_sanitizes_failures(session_factory, seed) -> None:
    org = seed.organization(subdivision="GER")
    seed.member(org, "1000001", role="admin")
    portal_session = seed.portal_session(org, "1000001")
    client = TestClient(app, cookies={SESSION_COOKIE: portal_session.id})

    healthy = FakeRoster({"/v2/orgs/subdivision/GER": [_member(1000001), _member(1000002)]})
    app.dependency_overrides[get_roster_client] = healthy.client
    ok = client.post("/api/org/session/members/sync")

    broken = FakeRoster({}, failing=("/v2/orgs/subdivision/GER", "/v2/orgs/division/EUD"))
    app.dependency_overrides[get_roster_client] = broken.client
    failed = client.post("/api/org/session/members/sync")

    assert ok.status_code == 200
    assert ok.json()["data"] == {"added": 1, "existing": 1, "total": 2}
    assert ok.json()["message"] == "Roster synced: 1 added, 1 existing, 2 total"
    assert failed.status_code == 500
    assert failed.json()["message"] == "Failed to sync roster: VATSIM API returned 503"
    assert "<html>" not in failed.text


def test_unparseable_subdivision_page_falls_back_to_division(seed) -> None:
    org = seed.organization(division="EUD", subdivision="GER")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v2/orgs/subdivision/GER":
            return httpx.Response(200, text="<html>maintenance</html>")
        return httpx.Response(200, json={"items": [_member(1, "GER"), _member(2, "FRA")], "count": 2})

    client = VatsimRosterClient("k", transport=httpx.MockTransport(handler))

    with pytest.raises(VatsimError, match="invalid payload"):
        asyncio.run(client.fetch_subdivision("GER"))

    result = seed.run(lambda session: sync_roster(session, org.id, org.division, org.subdivision, client))

    assert (result.added, result.total) == (1, 1)
    assert _member_cids(seed, org) == ["1"]


def test_items_without_ids_are_an_invalid_payload() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"items": [{"name_first": "No", "name_last": "Id"}], "count": 1})

    client = VatsimRosterClient("k", transport=httpx.MockTransport(handler))

    with pytest.raises(VatsimError, match="invalid payload"):
        asyncio.run(client.fetch_division("EUD"))
