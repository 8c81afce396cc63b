"""Shared fixtures: in-memory database, controllable clock, HTTP client."""

from datetime import timedelta

import bcrypt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import ekman.models  # noqa: F401  registers tables
from ekman.api.deps import get_clock
from ekman.database import get_session
from ekman.main import app
from ekman.services.auth import AuthService
from ekman.services.credentials import CredentialStore
from ekman.services.otp import OTPVerifier
from ekman.services.sessions import SessionManager

# Start of a 30s step: 1_800_000_000 / 30 == 60_000_000
T0 = 1_800_000_000


class FakeClock:
    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """Minimum bcrypt cost so the suite stays quick."""
    real_gensalt = bcrypt.gensalt
    monkeypatch.setattr(bcrypt, "gensalt", lambda rounds=4, prefix=b"2b": real_gensalt(4, prefix))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(session):
    return CredentialStore(session)


@pytest.fixture
def sessions(session, clock):
    return SessionManager(session, ttl=timedelta(hours=24), clock=clock)


@pytest.fixture
def verifier():
    return OTPVerifier(period=30, digits=6, window_steps=1)


@pytest.fixture
def auth(store, sessions, verifier, clock):
    return AuthService(store, sessions, verifier, issuer="ekman", clock=clock)


@pytest.fixture
def client(engine, clock):
    def _get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_clock] = lambda: clock
    # https so the Secure session cookie is stored and sent back
    yield TestClient(app, base_url="https://testserver")
    app.dependency_overrides.clear()
