from __future__ import annotations

import os

os.environ.setdefault("ENV", "dev")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("REFRESH_HASH_ROUNDS", "4")
os.environ.setdefault("NAC_BASE_URL", "https://nac.test")
os.environ.setdefault("NAC_CLIENT_ID", "client-id")
os.environ.setdefault("NAC_CLIENT_SECRET", "client-secret")
os.environ.setdefault("NAC_REDIRECT_URI", "https://api.test/auth/onboard/callback")
os.environ.setdefault("ALLOWED_HOSTS", "testserver")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from phoneauth.api.deps import get_nac_client
from phoneauth.db.base import Base
from phoneauth.db.session import get_db
from phoneauth.main import app
import phoneauth.models  # noqa: F401
from phoneauth.services.nac_provider import ClientCredentials, NacClient

from tests.testkit import ApiClient, FakeNacTransport, PhoneFactory, make_engine


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite+pysqlite:///{tmp_path / 'phoneauth.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def transport() -> FakeNacTransport:
    return FakeNacTransport()


@pytest.fixture
def nac_client(transport) -> NacClient:
    return NacClient(transport=transport, credentials=lambda: ClientCredentials("client-id", "client-secret"))


@pytest.fixture
def api(session_factory, nac_client):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_nac_client] = lambda: nac_client
    try:
        with TestClient(app) as client:
            yield ApiClient(client)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def phones() -> PhoneFactory:
    return PhoneFactory()
