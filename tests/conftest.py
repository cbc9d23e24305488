"""Shared pytest fixtures."""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from notes_backend.api.main import create_app
from notes_backend.auth.codec import CredentialCodec
from notes_backend.auth.passwords import create_password_context
from notes_backend.auth.sessions import CookieOptions, SessionStore
from notes_backend.config import Settings
from notes_backend.db.db import create_db_engine, create_session_factory
from notes_backend.db.migrations import migrate
from notes_backend.services import users

from helpers import MutableClock

TEST_KEY = "test-session-key"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'notes.db'}",
        session_secret_keys=[TEST_KEY],
        session_reap_interval=0,
        password_rounds=4,
        db_timeout=30.0,
    )


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings)
    migrate(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return MutableClock(datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def pwd_context():
    return create_password_context(4)


@pytest.fixture
def codec():
    return CredentialCodec([TEST_KEY])


@pytest.fixture
def store(session_factory, codec, clock):
    return SessionStore(session_factory, codec, CookieOptions(max_age=3600), clock=clock)


@pytest.fixture
def make_user(db, pwd_context):
    """Register accounts through the registrar; the first one is admin."""

    def _make_user(username, password="secret-pw", email=None):
        return users.register(db, pwd_context, username, password, email or f"{username}@example.com")

    return _make_user


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client
