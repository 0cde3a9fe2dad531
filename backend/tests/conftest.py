"""
Shared test fixtures for MfgPlan tests

Provides database setup, client creation and a clean explosion cache per test
"""
import os

# Must be set before anything under mfgplan reads settings
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mfgplan.db.base import Base
from mfgplan.db.session import get_db
from mfgplan.core.limiter import limiter
from mfgplan.services.explosion_cache import get_explosion_cache

# Disable rate limiting for tests
limiter.enabled = False


# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_tables(engine):
    """Create all tables for testing using SQLAlchemy metadata"""
    # Registers every model on Base.metadata
    import mfgplan.models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def drop_tables(engine):
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_explosion_cache():
    """BOM ids repeat between tests, so the process-wide cache must start empty."""
    cache = get_explosion_cache()
    cache.clear()
    yield cache
    cache.clear()


@pytest.fixture(autouse=True)
def reset_factory_sequences():
    from tests.factories import reset_sequences

    reset_sequences()


@pytest.fixture
def db_session():
    """Create a fresh database session for each test"""
    create_tables(engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        drop_tables(engine)


@pytest.fixture
def client(db_session, monkeypatch):
    """
    Create a test client with database override.

    Background MRP runs open their own session through
    ``mfgplan.services.mrp.SessionLocal``; point it at the test session.
    """
    from mfgplan.main import app
    import mfgplan.services.mrp as mrp_module

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    monkeypatch.setattr(mrp_module, "SessionLocal", lambda: db_session)
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
