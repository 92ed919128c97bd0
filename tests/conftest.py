"""
Pytest fixtures for the auth service. Each test gets its own SQLite file,
a controllable clock and a FastAPI TestClient wired to both.
"""

from __future__ import annotations

import time

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

SITE_ORIGIN = "https://runes.example"


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, start_ms: int | None = None) -> None:
        self.now = int(start_ms if start_ms is not None else time.time() * 1000)

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += int(ms)


def sign(account, message: str) -> str:
    signed = Account.sign_message(encode_defunct(text=message), private_key=account.key)
    return "0x" + bytes(signed.signature).hex()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def user_account():
    return Account.create()


@pytest.fixture
def admin_account():
    return Account.create()


@pytest.fixture
def settings_factory(tmp_path, admin_account):
    from settings.config import Settings

    def make(**overrides):
        values = dict(
            site_origin=SITE_ORIGIN,
            sqlite_path=str(tmp_path / "auth.sqlite3"),
            jwt_secret="test-secret",
            session_ttl_ms=60 * 60 * 1000,
            challenge_ttl_ms=5 * 60 * 1000,
            cors_allow_origins=["*"],
            rate_limit_default="1000/60000",
            rate_limits={},
            super_admin_wallet_id=admin_account.address,
            auto_provision_profiles=True,
        )
        values.update(overrides)
        return Settings(**values)

    return make


@pytest.fixture
def settings(settings_factory):
    return settings_factory()


@pytest.fixture
def deps(settings, clock):
    from api.deps import build_deps

    d = build_deps(settings, clock=clock)
    yield d
    d.datasource.close()


@pytest.fixture
def client(deps):
    from fastapi.testclient import TestClient

    from api.main import create_app

    return TestClient(create_app(deps=deps))


@pytest.fixture
def login(client):
    """Sign in `account` through the HTTP flow; the client keeps the session cookie."""

    def do_login(account):
        r = client.post("/api/v1/public/auth/challenge", json={"address": account.address})
        assert r.status_code == 200, r.text
        message = r.json()["data"]["message"]
        r = client.post(
            "/api/v1/public/auth/verify",
            json={"message": message, "signature": sign(account, message)},
        )
        assert r.status_code == 200, r.text
        return r.json()["data"]

    return do_login
