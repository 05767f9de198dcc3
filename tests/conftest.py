"""
Shared test fixtures.

Provides:
  • ``database`` – an aiosqlite store in a temporary file, for service tests
  • ``clock`` / ``dispatcher`` – a frozen clock and an in-memory OTP sender
  • ``client`` – a FastAPI TestClient running the full app lifespan
    against a temporary database, with the clock and dispatcher
    dependencies swapped for the fakes and rate limiting disabled

Async tests run under pytest-asyncio's auto mode.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app import config
from app.db import Database
from app.dependencies import get_clock, get_dispatcher
from app.main import app
from app.services.credentials import CredentialVerifier, hash_password
from app.services.devices import DeviceTrustRegistry
from app.services.login import LoginOrchestrator
from app.services.otp import OtpManager
from app.services.policy import AccessPolicy
from tests.mocks.models import EMAIL, NOON, PASSWORD
from tests.mocks.services import FakeDispatcher, FrozenClock


@pytest.fixture(autouse=True)
def _fast_hashing(monkeypatch):
    """bcrypt at its minimum cost keeps the suite fast."""
    monkeypatch.setattr(config, "BCRYPT_ROUNDS", 4)


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock(NOON)


@pytest.fixture()
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


# ── Service-level fixtures ─────────────────────────────────────────────────


@pytest.fixture()
async def database(tmp_path):
    db = Database(str(tmp_path / "test.db"))
    await db.connect()
    yield db
    await db.close()


@pytest.fixture()
async def account(database, clock):
    """A registered account with the default test credentials."""
    return await database.create_account(EMAIL, hash_password(PASSWORD), clock(), name="Player")


@pytest.fixture()
def otp_manager(database, dispatcher, clock) -> OtpManager:
    return OtpManager(database, dispatcher, clock, ttl_seconds=300, max_attempts=3)


@pytest.fixture()
def registry(database, clock) -> DeviceTrustRegistry:
    return DeviceTrustRegistry(database, clock)


@pytest.fixture()
def orchestrator(database, registry, otp_manager, clock) -> LoginOrchestrator:
    return LoginOrchestrator(
        database,
        CredentialVerifier(database),
        registry,
        otp_manager,
        AccessPolicy(start_hour=6, end_hour=18),
        clock,
    )


# ── HTTP fixtures ──────────────────────────────────────────────────────────


@pytest.fixture()
def _test_env(monkeypatch, tmp_path, clock, dispatcher):
    """
    Point the app lifespan at a temp database, swap in the fake clock and
    dispatcher, and turn rate limiting off.
    """
    monkeypatch.setattr("app.main.DB_PATH", str(tmp_path / "test.db"))

    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    from app.rate_limit import limiter as _limiter
    monkeypatch.setattr(_limiter, "enabled", False)

    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def client(_test_env) -> TestClient:
    """
    FastAPI TestClient with fakes wired in.

    Uses a context manager so the lifespan runs (DB init/shutdown).
    """
    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc


@pytest.fixture()
def registered(client) -> TestClient:
    """``client`` with the default test account already registered."""
    resp = client.post("/register", json={"email": EMAIL, "password": PASSWORD})
    assert resp.status_code == 201
    return client
