"""
End-to-end HTTP flows: sign-in, profile access, admin routes and error envelopes.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from api.main import create_app
from conftest import SITE_ORIGIN, sign
from datasource.connections.sqlite_connection import StoreUnavailable

CHALLENGE = "/api/v1/public/auth/challenge"
VERIFY = "/api/v1/public/auth/verify"
SESSION = "/api/v1/public/auth/session"
LOGOUT = "/api/v1/public/auth/logout"
PROFILE = "/api/v1/profile"
USERS = "/api/v1/admin/users"


def _challenge(client, account):
    r = client.post(CHALLENGE, json={"address": account.address})
    assert r.status_code == 200, r.text
    return r.json()["data"]


# ---------- sign-in ----------
def test_challenge_binds_site_domain(client, user_account):
    data = _challenge(client, user_account)
    assert data["message"].startswith("runes.example wants you to sign in")
    assert user_account.address in data["message"]
    assert f"URI: {SITE_ORIGIN}" in data["message"]
    assert data["nonce"] in data["message"]


def test_challenge_rejects_bad_address(client):
    r = client.post(CHALLENGE, json={"address": "not-an-address"})
    assert r.status_code == 400
    body = r.json()
    assert body["kind"] == "InvalidInput"
    assert body["data"]["issues"][0]["field"] == "address"


def test_login_flow_sets_session(client, login, user_account, deps):
    data = login(user_account)
    assert data["address"] == user_account.address.lower()
    assert data["role"] == "user"
    assert deps.identity_manager.get_profile(user_account.address) is not None

    # cookie session
    r = client.get(SESSION)
    assert r.status_code == 200
    assert r.json()["data"]["address"] == user_account.address.lower()

    # bearer session
    fresh = TestClient(client.app)
    r = fresh.get(SESSION, headers={"Authorization": f"Bearer {data['token']}"})
    assert r.status_code == 200


def test_verify_twice_is_replay(client, user_account):
    message = _challenge(client, user_account)["message"]
    signature = sign(user_account, message)
    assert client.post(VERIFY, json={"message": message, "signature": signature}).status_code == 200

    r = client.post(VERIFY, json={"message": message, "signature": signature})
    assert r.status_code == 401
    assert r.json()["kind"] == "NonceReplayed"


def test_verify_wrong_signer(client, user_account, admin_account):
    message = _challenge(client, user_account)["message"]
    r = client.post(VERIFY, json={"message": message, "signature": sign(admin_account, message)})
    assert r.status_code == 401
    assert r.json()["kind"] == "InvalidSignature"
    assert "set-cookie" not in r.headers


def test_verify_expired_challenge(client, clock, user_account, settings):
    message = _challenge(client, user_account)["message"]
    clock.advance(settings.challenge_ttl_ms)
    r = client.post(VERIFY, json={"message": message, "signature": sign(user_account, message)})
    assert r.status_code == 401
    assert r.json()["kind"] == "ChallengeExpired"


def test_verify_foreign_domain(client, user_account):
    message = _challenge(client, user_account)["message"].replace("runes.example", "evil.example", 1)
    r = client.post(VERIFY, json={"message": message, "signature": sign(user_account, message)})
    assert r.status_code == 401
    assert r.json()["kind"] == "DomainMismatch"


def test_session_expires(client, clock, login, user_account, settings):
    login(user_account)
    clock.advance(settings.session_ttl_ms - 1)
    assert client.get(SESSION).status_code == 200
    clock.advance(1)
    r = client.get(SESSION)
    assert r.status_code == 401
    assert r.json()["kind"] == "Unauthenticated"


def test_logout_clears_cookie(client, login, user_account, settings):
    login(user_account)
    r = client.post(LOGOUT)
    assert r.status_code == 200
    assert settings.session_cookie_name in r.headers.get("set-cookie", "")
    assert client.get(SESSION).status_code == 401


def test_logout_revokes_bearer_token(client, login, user_account):
    token = login(user_account)["token"]
    bearer = {"Authorization": f"Bearer {token}"}
    client.cookies.clear()
    assert client.get(SESSION, headers=bearer).status_code == 200

    assert client.post(LOGOUT, headers=bearer).status_code == 200
    r = client.get(SESSION, headers=bearer)
    assert r.status_code == 401
    assert r.json()["kind"] == "Unauthenticated"


def test_logout_leaves_other_sessions_alone(client, login, user_account):
    first = login(user_account)["token"]
    second = login(user_account)["token"]
    client.cookies.clear()
    client.post(LOGOUT, headers={"Authorization": f"Bearer {first}"})
    assert client.get(SESSION, headers={"Authorization": f"Bearer {second}"}).status_code == 200


# ---------- profile ----------
def test_profile_requires_session(client):
    r = client.get(PROFILE, headers={"Origin": "https://elsewhere.example"})
    assert r.status_code == 401
    body = r.json()
    assert body["kind"] == "Unauthenticated"
    assert body["code"] == 401
    assert r.headers.get("access-control-allow-origin") in ("*", "https://elsewhere.example")


def test_forged_token_is_unauthenticated(client):
    r = client.get(PROFILE, headers={"Authorization": "Bearer forged.token.value"})
    assert r.status_code == 401
    assert r.json()["kind"] == "Unauthenticated"


def test_profile_read_and_update(client, login, user_account):
    login(user_account)
    r = client.get(PROFILE)
    assert r.status_code == 200
    assert r.json()["data"]["name"] is None

    r = client.put(
        PROFILE,
        json={"name": "Wizard", "twitter": "@forgottenrunes", "website": "https://runes.example/me"},
    )
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["name"] == "Wizard"
    assert data["twitter"] == "forgottenrunes"
    assert "role" not in data

    assert client.get(PROFILE).json()["data"]["website"] == "https://runes.example/me"


def test_profile_update_cannot_change_role(client, login, user_account, deps):
    login(user_account)
    r = client.put(PROFILE, json={"name": "Sneaky", "role": "admin"})
    assert r.status_code == 400
    assert r.json()["kind"] == "InvalidInput"

    profile = deps.identity_manager.get_profile(user_account.address)
    assert profile.role.value == "user"
    assert profile.name is None


def test_profile_update_validation(client, login, user_account):
    login(user_account)
    r = client.put(PROFILE, json={"email": "nope"})
    assert r.status_code == 400
    assert r.json()["data"]["issues"][0]["field"] == "email"

    assert client.put(PROFILE, json={}).status_code == 400

    r = client.put(PROFILE, content=b"{not json", headers={"Content-Type": "application/json"})
    assert r.status_code == 400
    assert r.json()["kind"] == "InvalidInput"


def test_profile_rejects_unsafe_urls_and_markup(client, login, user_account, deps):
    login(user_account)
    rejected = [
        {"avatar_url": "javascript:alert(document.cookie)"},
        {"website": "https://x.example/\"><script>alert(1)</script>"},
        {"website": "https://x.example/'onload"},
        {"name": "<b>Wizard</b>"},
        {"description": "hi <img src=x onerror=alert(1)>"},
    ]
    for payload in rejected:
        r = client.put(PROFILE, json=payload)
        assert r.status_code == 400, payload
        assert r.json()["kind"] == "InvalidInput"

    profile = deps.identity_manager.get_profile(user_account.address)
    assert profile.avatar_url is None
    assert profile.website is None
    assert profile.name is None


def test_profile_accepts_relative_avatar_and_lowercases_email(client, login, user_account):
    login(user_account)
    r = client.put(PROFILE, json={"avatar_url": "/avatars/wizard.png", "email": "Wizard@Runes.Example"})
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["avatar_url"] == "/avatars/wizard.png"
    assert data["email"] == "wizard@runes.example"


def test_no_profile_without_provisioning(settings_factory, clock, user_account):
    from api.deps import build_deps

    deps = build_deps(settings_factory(auto_provision_profiles=False), clock=clock)
    client = TestClient(create_app(deps=deps))
    try:
        message = _challenge(client, user_account)["message"]
        r = client.post(VERIFY, json={"message": message, "signature": sign(user_account, message)})
        assert r.status_code == 200
        assert r.json()["data"]["role"] is None

        r = client.get(PROFILE)
        assert r.status_code == 403
        assert r.json()["kind"] == "NoProfile"
    finally:
        deps.datasource.close()


# ---------- admin ----------
def test_user_cannot_use_admin_routes(client, login, user_account):
    login(user_account)
    r = client.get(USERS)
    assert r.status_code == 403
    assert r.json()["kind"] == "Forbidden"


def test_admin_manages_users(client, login, admin_account, user_account):
    data = login(admin_account)
    assert data["role"] == "admin"

    r = client.post(USERS, json={"address": user_account.address, "role": "editor", "name": "Apprentice"})
    assert r.status_code == 200, r.text
    assert r.json()["data"]["role"] == "editor"

    r = client.post(USERS, json={"address": user_account.address})
    assert r.status_code == 400

    r = client.get(USERS, params={"role": "editor"})
    assert r.status_code == 200
    listing = r.json()["data"]
    assert listing["total"] == 1
    assert listing["items"][0]["eth_address"] == user_account.address.lower()

    r = client.put(f"{USERS}/{user_account.address}/role", json={"role": "admin"})
    assert r.status_code == 200
    assert r.json()["data"]["role"] == "admin"

    missing = "0x" + "11" * 20
    assert client.put(f"{USERS}/{missing}/role", json={"role": "user"}).status_code == 404
    assert client.get(USERS, params={"limit": 0}).status_code == 400


def test_admin_cannot_demote_self(client, login, admin_account):
    login(admin_account)
    r = client.put(f"{USERS}/{admin_account.address}/role", json={"role": "user"})
    assert r.status_code == 403
    assert r.json()["kind"] == "Forbidden"


# ---------- infrastructure ----------
def test_store_unavailable_is_retryable(client, login, user_account, deps, monkeypatch):
    login(user_account)

    def unavailable(*args, **kwargs):
        raise StoreUnavailable("database is locked")

    monkeypatch.setattr(deps.datasource.profiles, "get_by_address", unavailable)
    r = client.get(PROFILE)
    assert r.status_code == 503
    body = r.json()
    assert body["kind"] == "UpstreamUnavailable"
    assert "locked" not in body["message"]
    assert r.headers["Retry-After"] == "1"


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["data"]["store"] is True
