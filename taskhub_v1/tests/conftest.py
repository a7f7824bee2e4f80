"""Shared test fixtures for TaskHub tests."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from taskhub_v1.core.api.server import create_app
from taskhub_v1.core.api.settings import load_settings
from taskhub_v1.core.security.guard import AccessGuard
from taskhub_v1.core.security.tokens import issue_token
from taskhub_v1.core.teams.models import Actor
from taskhub_v1.core.teams.roles import GlobalRole
from taskhub_v1.core.teams.store import MembershipStore, membership_store

TEST_SECRET = "test-secret-do-not-use"


@pytest.fixture
def store():
    return MembershipStore()


@pytest.fixture
def guard(store):
    return AccessGuard(store)


@pytest.fixture
def admin():
    return Actor("root", GlobalRole.ADMIN)


@pytest.fixture
def alice():
    return Actor("alice")


@pytest.fixture
def bob():
    return Actor("bob")


@pytest.fixture
def carol():
    return Actor("carol")


@pytest.fixture
def make_client(monkeypatch):
    """Build a TestClient over a fresh app; returns (client, auth_headers_fn)."""

    def _make(**overrides):
        monkeypatch.delenv("TASKHUB_STORE_PERSIST", raising=False)
        monkeypatch.delenv("TASKHUB_STORE_PATH", raising=False)
        overrides.setdefault("token_secret", TEST_SECRET)
        settings = load_settings(**overrides)
        client = TestClient(create_app(settings))

        def auth(actor_id: str, role: str = "employee"):
            token = issue_token(settings.token_secret, actor_id, role)
            return {"Authorization": f"Bearer {token}"}

        return client, auth

    yield _make
    membership_store.reset()
