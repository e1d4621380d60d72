"""
Pytest configuration and fixtures

The public schema runs on an in-memory SQLite database; tenant schema tests
swap the per-organization engine for a SQLite engine holding the tenant tables.
"""
import pytest
import os
import sys
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

# Add src to path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Set test environment variables before importing
os.environ["ENV"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key-for-podcastflow-tests-only-min-32-chars"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["EMAIL_PROVIDER"] = "dev"
os.environ["LOG_LEVEL"] = "WARNING"

# Import after setting env vars
from podcastflow.db import Base, Organization, User  # noqa: E402
from podcastflow.db.engine import SessionLocal, set_engine  # noqa: E402
from podcastflow.tenancy.tables import tenant_metadata  # noqa: E402


def _sqlite_engine():
    return create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture(scope="session")
def test_engine():
    """Public schema engine shared by the session factory and the app"""
    engine = _sqlite_engine()
    set_engine(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db(test_engine):
    """Database session; every table is emptied after the test"""
    session = SessionLocal()
    yield session
    session.rollback()
    session.close()

    with test_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(scope="function")
def tenant_engine(monkeypatch):
    """SQLite stand-in for an org_<slug> schema, returned for every tenant"""
    engine = _sqlite_engine()
    tenant_metadata.create_all(engine)
    monkeypatch.setattr("podcastflow.tenancy.schema.get_schema_engine", lambda org_slug: engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def organization(db):
    org = Organization(slug="acme", name="Acme Media", is_active=True, settings={})
    db.add(org)
    db.commit()
    db.refresh(org)
    return org


@pytest.fixture(scope="function")
def make_user(db, organization):
    """Factory for users in the default organization (or another one)"""
    from podcastflow.auth import get_password_hash

    def _make_user(email, role="admin", org=None, password="password123", is_active=True, name=None):
        user = User(
            email=email,
            hashed_password=get_password_hash(password),
            name=name or email.split("@")[0].title(),
            role=role,
            organization_id=(org or organization).id,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture(scope="function")
def auth_headers(db):
    """Open a session for a user and return the bearer header"""
    from podcastflow.auth import create_session

    def _auth_headers(user):
        token = create_session(db, user)
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


@pytest.fixture(scope="function")
def dev_provider(monkeypatch):
    """Capture outgoing mail in memory"""
    from podcastflow.services import email_provider

    provider = email_provider.DevEmailProvider()
    monkeypatch.setattr(email_provider, "_email_provider", provider)
    return provider


@pytest.fixture(scope="function")
def client(test_engine):
    """Create test client"""
    from fastapi.testclient import TestClient
    from podcastflow.app import app

    return TestClient(app)


@pytest.fixture(scope="function", autouse=True)
def reset_state():
    """Fresh metrics, provider and tenant pools for every test"""
    from podcastflow.services.email_provider import reset_email_provider
    from podcastflow.services.metrics import get_metrics_collector
    from podcastflow.tenancy.schema import close_schema_pools

    get_metrics_collector().reset()
    reset_email_provider()
    yield
    close_schema_pools()
    reset_email_provider()
