"""Integration tests for the credential HTTP flow.

Tests the complete flow including:
- Sign-up and the post-sign-up landing route
- Email verification
- Sign-in
- Current user lookup via either token header
- Sign-out and rejection of the revoked token
- Store outages surfacing as 503
"""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from authcore import app as app_module
from authcore.service.runtime import get_runtime
from authcore.storage.errors import StoreUnavailable

PASSWORD = "CorrectHorse1"


@pytest.fixture
def client():
    return TestClient(app_module.app)


def _signup(client, username="alice", email="alice@example.com", password=PASSWORD):
    return client.post(
        "/api/users/signup",
        json={"username": username, "email": email, "password": password},
    )


def _verify_key(username):
    return get_runtime().store.find_by_username(username).verify_key


def _verified_token(client, username="alice", email="alice@example.com"):
    assert _signup(client, username, email).status_code == 201
    assert client.get("/api/users/signup", params={"verify_key": _verify_key(username)}).status_code == 200
    response = client.post("/api/users/signin", json={"username": username, "password": PASSWORD})
    assert response.status_code == 200
    return response.json()["data"]["token"]


class TestSignupFlow:
    def test_signup_creates_pending_account(self, client):
        response = _signup(client)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "ok"
        assert body["data"] == {
            "username": "alice",
            "email": "alice@example.com",
            "email_sent": True,
        }
        account = get_runtime().store.find_by_username("alice")
        assert account.is_verified is False
        assert account.verify_key

    def test_signup_rejects_duplicates(self, client):
        _signup(client)
        response = _signup(client, username="alice2")

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "conflict"
        assert response.json()["error"]["message"] == "Email or Username in use"

    @pytest.mark.parametrize(
        "payload",
        [
            {"username": "abc", "email": "a@example.com", "password": PASSWORD},
            {"username": "a" * 21, "email": "a@example.com", "password": PASSWORD},
            {"username": "alice", "email": "a@example.com", "password": "short"},
            {"username": "alice", "email": "a@example.com", "password": "p" * 21},
            {"username": "alice", "email": "not-an-email", "password": PASSWORD},
            {"username": "alice", "password": PASSWORD},
        ],
    )
    def test_signup_validation(self, client, payload):
        response = client.post("/api/users/signup", json=payload)

        assert response.status_code == 422
        assert response.json()["status"] == "error"
        assert response.json()["error"]["code"] == "validation_error"

    def test_landing_route_without_key(self, client):
        response = client.get("/api/users/signup")

        assert response.status_code == 201
        assert response.json()["data"] == {"message": "Email has been sent"}

    def test_verify_with_unknown_key(self, client):
        response = client.get("/api/users/signup", params={"verify_key": "nope"})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_verify_key_is_single_use(self, client):
        _signup(client)
        key = _verify_key("alice")

        first = client.get("/api/users/signup", params={"verify_key": key})
        second = client.get("/api/users/signup", params={"verify_key": key})

        assert first.status_code == 200
        assert first.json()["data"] == {"status": "verified"}
        assert second.status_code == 404

    def test_signup_disabled(self, client):
        get_runtime().settings.allow_signup = False
        response = _signup(client)
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "forbidden"


class TestSignin:
    def test_signin_returns_bearer_token(self, client):
        token = _verified_token(client)
        claims = get_runtime().codec.verify(token)

        assert claims.username == "alice"
        assert claims.id == get_runtime().store.find_by_username("alice").id

    def test_signin_response_shape(self, client):
        _signup(client)
        client.get("/api/users/signup", params={"verify_key": _verify_key("alice")})

        response = client.post("/api/users/signin", json={"username": "alice", "password": PASSWORD})

        data = response.json()["data"]
        assert data["token_type"] == "bearer"
        assert data["expires_at"]
        assert data["token"].count(".") == 2

    def test_unverified_account_rejected(self, client):
        _signup(client)

        response = client.post("/api/users/signin", json={"username": "alice", "password": PASSWORD})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"
        assert "token" not in (response.json()["data"] or {})

    def test_wrong_password_and_unknown_user_look_identical(self, client):
        _verified_token(client)

        wrong = client.post("/api/users/signin", json={"username": "alice", "password": "WrongHorse1"})
        unknown = client.post("/api/users/signin", json={"username": "nobody", "password": PASSWORD})

        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json()["error"] == unknown.json()["error"]
        assert wrong.json()["error"]["message"] == "invalid credentials"


class TestSessionLifecycle:
    def test_current_user_with_either_header(self, client):
        token = _verified_token(client)

        via_header = client.get("/api/users/currentuser", headers={"x-access-token": token})
        via_bearer = client.get("/api/users/currentuser", headers={"Authorization": f"Bearer {token}"})

        assert via_header.status_code == via_bearer.status_code == 200
        assert via_header.json()["data"] == via_bearer.json()["data"]
        assert via_header.json()["data"]["username"] == "alice"

    def test_current_user_requires_token(self, client):
        response = client.get("/api/users/currentuser")

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "authentication required"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_tampered_token_rejected(self, client):
        token = _verified_token(client)
        tampered = token[:-1] + ("A" if token[-1] != "A" else "B")

        response = client.get("/api/users/currentuser", headers={"x-access-token": tampered})

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "invalid token signature"

    def test_signout_revokes_token(self, client):
        token = _verified_token(client)
        headers = {"x-access-token": token}

        assert client.get("/api/users/currentuser", headers=headers).status_code == 200
        signout = client.post("/api/users/signout", headers=headers)
        assert signout.status_code == 200
        assert signout.json()["data"] == {}

        after = client.get("/api/users/currentuser", headers=headers)
        assert after.status_code == 401
        assert after.json()["error"]["message"] == "token revoked"

        bearer = client.get("/api/users/currentuser", headers={"Authorization": f"Bearer {token}"})
        assert bearer.status_code == 401

    def test_repeated_signout_succeeds(self, client):
        token = _verified_token(client)
        headers = {"x-access-token": token}

        first = client.post("/api/users/signout", headers=headers)
        second = client.post("/api/users/signout", headers={"Authorization": f"Bearer {token}"})

        assert first.status_code == second.status_code == 200
        assert second.json()["data"] == {}
        assert client.get("/api/users/currentuser", headers=headers).status_code == 401

    def test_signout_still_requires_valid_token(self, client):
        token = _verified_token(client)
        tampered = token[:-1] + ("A" if token[-1] != "A" else "B")

        missing = client.post("/api/users/signout")
        forged = client.post("/api/users/signout", headers={"x-access-token": tampered})

        assert missing.status_code == forged.status_code == 401
        assert forged.json()["error"]["message"] == "invalid token signature"

    def test_signout_entry_ttl_matches_remaining_lifetime(self, client):
        token = _verified_token(client)
        runtime = get_runtime()
        claims = runtime.codec.verify(token)

        client.post("/api/users/signout", headers={"x-access-token": token})

        store = runtime.revocation_store
        remaining = asyncio.run(store.ttl(claims.revocation_key()))
        assert abs(remaining - (claims.exp - time.time())) <= 2

    def test_token_expired_after_25_hours(self, client):
        token = _verified_token(client)
        runtime = get_runtime()
        runtime.codec._clock = lambda: time.time() + 25 * 3600

        response = client.get("/api/users/currentuser", headers={"x-access-token": token})

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "token expired"

    def test_revocation_store_outage_returns_503(self, client):
        token = _verified_token(client)

        class DownStore:
            async def set_with_ttl(self, key, value, ttl_seconds):
                raise StoreUnavailable("redis", "redis set timed out")

            async def get(self, key):
                raise StoreUnavailable("redis", "redis get timed out")

            async def close(self):
                pass

        get_runtime().revocations.store = DownStore()

        current = client.get("/api/users/currentuser", headers={"x-access-token": token})
        signout = client.post("/api/users/signout", headers={"x-access-token": token})

        for response in (current, signout):
            assert response.status_code == 503
            assert response.json()["error"]["code"] == "unavailable"
            assert response.headers["Retry-After"] == "1"


class TestHealth:
    def test_healthz_reports_stores(self, client):
        response = client.get("/healthz")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"] == {"account_store": "ok", "revocation_store": "ok"}

    def test_request_id_echoed(self, client):
        response = client.get("/healthz", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
