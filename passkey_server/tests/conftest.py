from __future__ import annotations

from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
TESTS_ROOT = Path(__file__).resolve().parent
if str(TESTS_ROOT) not in sys.path:
    sys.path.insert(0, str(TESTS_ROOT))

from passkey_server.app import create_app
from passkey_server.ceremony import CeremonyEngine
from passkey_server.challenges import ChallengeStore
from passkey_server.config import RPSettings
from passkey_server.credentials import CredentialStore
from passkey_server.database import Database
from passkey_server.services import AuthOrchestrator
from passkey_server.sessions import SessionIssuer
from passkey_server.users import UserDirectory
from softauth import SoftwareAuthenticator

ORIGIN = "http://localhost:3000"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path: Path) -> RPSettings:
    return RPSettings(
        database_url=f"sqlite:///{tmp_path / 'rp.db'}",
        rp_id="localhost",
        rp_name="Test RP",
        origin=ORIGIN,
        extra_origins=["https://passkeys.example.com"],
    )


@pytest.fixture
def db(settings: RPSettings) -> Database:
    database = Database(settings)
    database.create_all()
    yield database
    database.engine.dispose()


@pytest.fixture
def challenge_store(db, clock) -> ChallengeStore:
    return ChallengeStore(db, ttl_seconds=300, clock=clock)


@pytest.fixture
def credential_store(db, clock) -> CredentialStore:
    return CredentialStore(db, clock=clock)


@pytest.fixture
def session_issuer(db, clock) -> SessionIssuer:
    return SessionIssuer(db, clock=clock)


@pytest.fixture
def users(db, clock) -> UserDirectory:
    return UserDirectory(db, clock=clock)


@pytest.fixture
def engine(settings) -> CeremonyEngine:
    return CeremonyEngine(settings)


@pytest.fixture
def orchestrator(engine, challenge_store, credential_store, session_issuer, users) -> AuthOrchestrator:
    return AuthOrchestrator(
        engine=engine,
        challenges=challenge_store,
        credentials=credential_store,
        sessions=session_issuer,
        users=users,
    )


@pytest.fixture
def authenticator() -> SoftwareAuthenticator:
    return SoftwareAuthenticator(origin=ORIGIN)


@pytest.fixture
def app(settings, orchestrator):
    flask_app = create_app(settings, orchestrator=orchestrator)
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()
