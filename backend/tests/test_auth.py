"""Tests for sign-in, sign-up fallback, sessions, and token refresh."""

import pytest
from jose import JWTError

from eduadmin.auth.jwt import create_id_token, decode_id_token
from eduadmin.auth.navigation import NAV_ITEMS
from tests.conftest import LIMITED_EMAIL, OWNER_EMAIL, PASSWORD, login, session_of


# ── Id token utility tests ───────────────────────────────────────────────────

class TestIdTokens:
    def test_custom_claims_round_trip(self):
        token = create_id_token("uid-1", "user@example.com", {"role": "limited", "appRoleId": "role-fees"})
        claims = decode_id_token(token)
        assert claims["sub"] == "uid-1"
        assert claims["email"] == "user@example.com"
        assert claims["role"] == "limited"
        assert claims["appRoleId"] == "role-fees"
        assert claims["type"] == "id"

    def test_custom_claims_cannot_shadow_reserved(self):
        token = create_id_token("uid-1", "user@example.com", {"sub": "uid-2", "email": "x@example.com"})
        claims = decode_id_token(token)
        assert claims["sub"] == "uid-1"
        assert claims["email"] == "user@example.com"

    def test_decode_invalid_token_raises(self):
        with pytest.raises(JWTError):
            decode_id_token("invalid.token.here")


# ── Login endpoint tests ─────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestLogin:
    async def test_owner_login(self, state, anon_client):
        resp = await anon_client.post("/api/auth/login", json={"email": OWNER_EMAIL, "password": PASSWORD})

        assert resp.status_code == 200
        data = resp.json()
        assert data["redirect"] == "/dashboard"
        assert data["id_token"]
        assert data["user"]["role"] == "owner"
        assert data["user"]["app_role_id"] is None
        assert len(data["user"]["navigation"]) == len(NAV_ITEMS)
        assert anon_client.cookies.get(state.settings.session_cookie_name)

    async def test_unknown_email_is_signed_up(self, state, anon_client):
        await login(anon_client, "newcomer@example.com")
        assert state.identity.get_user_by_email("newcomer@example.com")

    async def test_second_login_replaces_cookie_session(self, state, anon_client):
        await login(anon_client, LIMITED_EMAIL)
        first = anon_client.cookies.get(state.settings.session_cookie_name)

        await login(anon_client, LIMITED_EMAIL)
        second = anon_client.cookies.get(state.settings.session_cookie_name)

        assert first != second
        assert state.sessions.get(first) is None
        assert state.sessions.get(second) is not None
        assert len(state.sessions) == 1

    async def test_signed_up_user_without_role_sees_nothing(self, anon_client):
        data = await login(anon_client, "newcomer@example.com")
        assert data["user"]["role"] is None
        assert data["user"]["resolved"] is True
        assert data["user"]["navigation"] == []

    async def test_wrong_password(self, anon_client):
        await login(anon_client, LIMITED_EMAIL)
        resp = await anon_client.post("/api/auth/login", json={"email": LIMITED_EMAIL, "password": "not-it-at-all"})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Sign in failed: The password is invalid"

    async def test_weak_password_on_sign_up(self, anon_client):
        resp = await anon_client.post("/api/auth/login", json={"email": "short@example.com", "password": "abc"})
        assert resp.status_code == 400
        assert resp.json()["detail"].startswith("Sign up failed:")

    async def test_invalid_email_rejected(self, anon_client):
        resp = await anon_client.post("/api/auth/login", json={"email": "not-an-email", "password": PASSWORD})
        assert resp.status_code == 422

    async def test_next_target_is_honoured(self, anon_client):
        resp = await anon_client.post("/api/auth/login", json={
            "email": LIMITED_EMAIL, "password": PASSWORD, "next": "/dashboard/students?page=2",
        })
        assert resp.json()["redirect"] == "/dashboard/students?page=2"

    @pytest.mark.parametrize("target", ["//evil.example.com/", "https://evil.example.com/", "dashboard"])
    async def test_offsite_next_is_ignored(self, anon_client, target):
        resp = await anon_client.post("/api/auth/login", json={
            "email": LIMITED_EMAIL, "password": PASSWORD, "next": target,
        })
        assert resp.json()["redirect"] == "/dashboard"


# ── Session endpoints ────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestSession:
    async def test_me_requires_session(self, anon_client):
        resp = await anon_client.get("/api/auth/me")
        assert resp.status_code == 401

    async def test_me_for_frontdesk(self, limited_client):
        resp = await limited_client.get("/api/auth/me")
        assert resp.status_code == 200
        data = resp.json()
        assert data["role"] == "limited"
        assert data["app_role_id"] == "role-frontdesk"
        assert data["permission_source"] == "baseline"
        assert data["permissions"]["Students"] == {"view": True, "add": False, "edit": False, "delete": False}
        assert [n["path"] for n in data["navigation"]] == ["/dashboard/students"]

    async def test_logout_ends_session(self, state, limited_client):
        session = session_of(state, limited_client)
        resp = await limited_client.post("/api/auth/logout")
        assert resp.status_code == 200
        assert resp.json()["redirect"] == "/login"

        assert state.sessions.get(session.id) is None
        assert session.permissions is None
        resp = await limited_client.get("/dashboard/students")
        assert resp.status_code == 307
        assert resp.headers["location"].startswith("/login?next=")

    async def test_claim_change_is_picked_up_on_next_request(self, state, limited_client):
        account = state.identity.get_user_by_email(LIMITED_EMAIL)
        state.identity.set_custom_claims(account.uid, {"role": "limited", "appRoleId": "role-campus-head"})

        resp = await limited_client.get("/dashboard/courses")

        assert resp.status_code == 200
        assert resp.json()["actions"]["delete"] is True
        assert session_of(state, limited_client).app_role_id == "role-campus-head"

    async def test_forced_refresh_reissues_token(self, state, limited_client):
        old_token = session_of(state, limited_client).id_token
        account = state.identity.get_user_by_email(LIMITED_EMAIL)
        state.identity.set_custom_claims(account.uid, {"role": "owner"})

        resp = await limited_client.post("/api/auth/refresh")

        assert resp.status_code == 200
        data = resp.json()
        assert data["id_token"] != old_token
        assert data["user"]["role"] == "owner"

    async def test_refresh_requires_session(self, anon_client):
        resp = await anon_client.post("/api/auth/refresh")
        assert resp.status_code == 401

    async def test_session_cookie_is_http_only(self, state, anon_client):
        resp = await anon_client.post("/api/auth/login", json={"email": OWNER_EMAIL, "password": PASSWORD})
        cookie = resp.headers["set-cookie"]
        assert cookie.startswith(f"{state.settings.session_cookie_name}=")
        assert "httponly" in cookie.lower()

    async def test_private_responses_are_not_cached(self, limited_client):
        resp = await limited_client.get("/api/auth/me")
        assert resp.headers["cache-control"] == "no-store"
        assert resp.headers["x-content-type-options"] == "nosniff"
        assert resp.headers["x-request-id"]
