from fastapi.testclient import TestClient

from atc_bookings.auth import ADMIN_COOKIE
from atc_bookings.main import app


def test_secret_key_login_sets_http_only_cookie(client) -> None:
    response = client.post("/api/auth/secret-key", json={"secretKey": "test-secret"})

    assert response.status_code == 200
    assert response.json()["data"] == {"authenticated": True}
    set_cookie = response.headers["set-cookie"]
    assert set_cookie.startswith(f"{ADMIN_COOKIE}=test-secret")
    assert "HttpOnly" in set_cookie
    assert "SameSite=strict" in set_cookie

    keys = client.get("/api/keys")
    assert keys.status_code == 200


def test_secret_key_login_rejects_wrong_secret(client) -> None:
    response = client.post("/api/auth/secret-key", json={"secretKey": "nope"})

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Invalid secret key"}


def test_secret_key_login_validates_payload(client) -> None:
    response = client.post("/api/auth/secret-key", json={})

    assert response.status_code == 422
    assert "secretKey" in response.json()["errors"]


def test_logout_clears_the_admin_cookie(client) -> None:
    client.post("/api/auth/secret-key", json={"secretKey": "test-secret"})

    response = client.post("/api/auth/logout")

    assert response.status_code == 200
    assert response.json()["data"] == {"loggedOut": True}
    assert client.get("/api/keys").status_code == 401


def test_admin_routes_require_the_secret(client) -> None:
    assert client.get("/api/keys").status_code == 401
    assert client.get("/api/org-members/all").status_code == 401


def test_stale_admin_cookie_is_cleared(session_factory) -> None:
    client = TestClient(app, cookies={ADMIN_COOKIE: "rotated-away"})

    response = client.get("/api/keys")

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid or missing secret key"
    assert f'{ADMIN_COOKIE}=""' in response.headers["set-cookie"]


def test_admin_header_is_accepted(client) -> None:
    response = client.get("/api/keys", headers={"X-Secret-Key": "test-secret"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "data": [], "message": None}
