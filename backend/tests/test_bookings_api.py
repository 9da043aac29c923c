from datetime import timedelta

import pytest

from atc_bookings import models

from conftest import hours_from_now, iso


def _bearer(org) -> dict[str, str]:
    return {"Authorization": f"Bearer {org.key}"}


def _payload(start, end, **overrides) -> dict:
    payload = {
        "cid": "1234567",
        "callsign": "eddf_twr",
        "type": "standard",
        "start": iso(start),
        "end": iso(end),
        "division": "EUD",
    }
    payload.update(overrides)
    return payload


def test_create_booking_with_bearer_key(client, seed) -> None:
    org = seed.organization()
    start = hours_from_now(1)

    response = client.post("/api/bookings", json=_payload(start, start + timedelta(hours=2)), headers=_bearer(org))

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["callsign"] == "EDDF_TWR"
    assert body["data"]["organizationId"] == org.id
    assert body["data"]["organization"] == {
        "id": org.id,
        "name": org.name,
        "division": "EUD",
        "subdivision": None,
    }


def test_create_booking_requires_a_credential(client, seed) -> None:
    start = hours_from_now(1)
    response = client.post("/api/bookings", json=_payload(start, start + timedelta(hours=1)))

    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Authorization token required"}


def test_create_booking_rejects_unknown_key(client, seed) -> None:
    start = hours_from_now(1)
    response = client.post(
        "/api/bookings",
        json=_payload(start, start + timedelta(hours=1)),
        headers={"Authorization": "Bearer not-a-key"},
    )

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid API key"


def test_overlapping_booking_is_rejected_across_organizations(client, seed) -> None:
    first = seed.organization("First")
    second = seed.organization("Second")
    start = hours_from_now(2)
    seed.booking(first, callsign="EDDF_TWR", start=start, end=start + timedelta(hours=2))

    response = client.post(
        "/api/bookings",
        json=_payload(start + timedelta(hours=1), start + timedelta(hours=3)),
        headers=_bearer(second),
    )

    assert response.status_code == 422
    assert response.json()["errors"] == {
        "booking": ["This callsign already has a booking during this time period"]
    }


def test_back_to_back_bookings_are_accepted(client, seed) -> None:
    org = seed.organization()
    start = hours_from_now(2)
    seed.booking(org, callsign="EDDF_TWR", start=start, end=start + timedelta(hours=2))

    response = client.post(
        "/api/bookings",
        json=_payload(start + timedelta(hours=2), start + timedelta(hours=4)),
        headers=_bearer(org),
    )

    assert response.status_code == 201


def test_time_validation_errors_use_the_time_field(client, seed) -> None:
    org = seed.organization()
    start = hours_from_now(2)

    inverted = client.post("/api/bookings", json=_payload(start, start), headers=_bearer(org))
    past = client.post(
        "/api/bookings",
        json=_payload(hours_from_now(-3), hours_from_now(-2)),
        headers=_bearer(org),
    )

    assert inverted.status_code == 422
    assert inverted.json()["errors"] == {"time": ["End time must be after start time"]}
    assert past.status_code == 422
    assert past.json()["errors"] == {"time": ["Booking end time cannot be in the past"]}


def test_schema_validation_reports_field_messages(client, seed) -> None:
    org = seed.organization()
    start = hours_from_now(1)

    response = client.post(
        "/api/bookings",
        json=_payload(start, start + timedelta(hours=1), callsign="EDDF_XYZ", cid="abc"),
        headers=_bearer(org),
    )

    assert response.status_code == 422
    errors = response.json()["errors"]
    assert errors["callsign"] == ["Callsign must end with: _DEL, _GND, _TWR, _APP, _DEP, _CTR, or _FSS"]
    assert errors["cid"] == ["CID must be a valid numeric VATSIM CID"]


def test_admin_secret_can_book_for_any_organization(client, seed) -> None:
    org = seed.organization()
    start = hours_from_now(1)
    headers = {"X-Secret-Key": "test-secret"}

    missing_org = client.post("/api/bookings", json=_payload(start, start + timedelta(hours=1)), headers=headers)
    created = client.post(
        "/api/bookings",
        json=_payload(start, start + timedelta(hours=1), organizationId=org.id),
        headers=headers,
    )

    assert missing_org.status_code == 422
    assert "organizationId" in missing_org.json()["errors"]
    assert created.status_code == 201
    assert created.json()["data"]["organizationId"] == org.id


def test_bearer_cannot_modify_another_organizations_booking(client, seed) -> None:
    owner = seed.organization("Owner")
    other = seed.organization("Other")
    booking = seed.booking(owner)

    update = client.put(f"/api/bookings/{booking.id}", json={"cid": "7654321"}, headers=_bearer(other))
    delete = client.delete(f"/api/bookings/{booking.id}", headers=_bearer(other))

    assert update.status_code == 400
    assert update.json()["message"] == "You can only update your own bookings"
    assert delete.status_code == 400
    assert delete.json()["message"] == "You can only delete your own bookings"


def test_update_rechecks_overlap_excluding_itself(client, seed) -> None:
    org = seed.organization()
    start = hours_from_now(2)
    booking = seed.booking(org, callsign="EDDF_TWR", start=start, end=start + timedelta(hours=2))
    seed.booking(org, callsign="EDDF_TWR", start=start + timedelta(hours=3), end=start + timedelta(hours=4))

    extended = client.put(
        f"/api/bookings/{booking.id}",
        json={"end": iso(start + timedelta(hours=3))},
        headers=_bearer(org),
    )
    clashing = client.put(
        f"/api/bookings/{booking.id}",
        json={"end": iso(start + timedelta(hours=3, minutes=30))},
        headers=_bearer(org),
    )

    assert extended.status_code == 200
    assert extended.json()["data"]["end"].startswith(iso(start + timedelta(hours=3))[:19])
    assert clashing.status_code == 422
    assert "booking" in clashing.json()["errors"]


def test_update_without_time_or_callsign_skips_overlap(client, seed) -> None:
    org = seed.organization()
    booking = seed.booking(org)

    response = client.put(f"/api/bookings/{booking.id}", json={"type": "exam"}, headers=_bearer(org))

    assert response.status_code == 200
    assert response.json()["data"]["type"] == "exam"


def test_delete_booking_returns_no_content(client, seed) -> None:
    org = seed.organization()
    booking = seed.booking(org)

    response = client.delete(f"/api/bookings/{booking.id}", headers=_bearer(org))
    missing = client.get(f"/api/bookings/{booking.id}", headers=_bearer(org))

    assert response.status_code == 204
    assert response.content == b""
    assert missing.status_code == 404


def test_public_listing_ignores_invalid_tokens_and_filters(client, seed) -> None:
    org = seed.organization()
    seed.booking(org, callsign="EDDF_TWR", start=hours_from_now(5), end=hours_from_now(6))
    seed.booking(org, callsign="EGLL_APP", start=hours_from_now(1), end=hours_from_now(2))
    seed.booking(org, callsign="EDDM_GND", start=hours_from_now(-1), end=hours_from_now(1))

    everything = client.get("/api/bookings", headers={"Authorization": "Bearer bogus"})
    by_callsign = client.get("/api/bookings", params={"callsign": "eddf"})
    current = client.get("/api/bookings", params={"order": "current"})
    future = client.get("/api/bookings", params={"order": "future"})

    assert everything.status_code == 200
    assert [b["callsign"] for b in everything.json()["data"]] == ["EDDM_GND", "EGLL_APP", "EDDF_TWR"]
    assert [b["callsign"] for b in by_callsign.json()["data"]] == ["EDDF_TWR"]
    assert [b["callsign"] for b in current.json()["data"]] == ["EDDM_GND"]
    assert [b["callsign"] for b in future.json()["data"]] == ["EGLL_APP", "EDDF_TWR"]


def test_organization_profile_and_bookings(client, seed) -> None:
    org = seed.organization()
    other = seed.organization("Other")
    seed.booking(org, callsign="EDDF_TWR")
    seed.booking(other, callsign="EGLL_APP")

    me = client.get("/api/org/me", headers=_bearer(org))
    mine = client.get("/api/org/bookings", headers=_bearer(org))

    assert me.status_code == 200
    assert me.json()["data"]["bookingCount"] == 1
    assert "key" not in me.json()["data"]
    assert [b["callsign"] for b in mine.json()["data"]] == ["EDDF_TWR"]


def test_booking_type_defaults_to_standard(client, seed) -> None:
    org = seed.organization()
    start = hours_from_now(1)
    payload = _payload(start, start + timedelta(hours=1))
    payload.pop("type")

    response = client.post("/api/bookings", json=payload, headers=_bearer(org))

    assert response.status_code == 201
    assert response.json()["data"]["type"] == models.BookingType.standard.value


@pytest.mark.parametrize("cid", ["١٢٣٤٥٦٧", "¹²³", " 123", "123 ", "12345678901"])
def test_cid_must_be_ascii_digits_without_padding(client, seed, cid) -> None:
    org = seed.organization()
    start = hours_from_now(1)

    response = client.post(
        "/api/bookings",
        json=_payload(start, start + timedelta(hours=1), cid=cid),
        headers=_bearer(org),
    )

    assert response.status_code == 422
    assert response.json()["errors"]["cid"] == ["CID must be a valid numeric VATSIM CID"]
