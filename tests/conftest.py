"""
Pytest configuration and fixtures for testing.

This file provides reusable test fixtures for:
- Database setup/teardown
- FastAPI test client
- A controllable clock for the auth core
- Captured OTP emails instead of Celery queueing
"""

import os

# Settings are read at import time; these must be in place before app imports
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-unit-tests-only")
os.environ.setdefault("COOKIE_SECURE", "false")
os.environ.setdefault("JSON_LOGS", "false")

import pytest
from datetime import datetime, timedelta, timezone
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.core.database import Base, get_db
from app.core.deps import get_rate_limiter
from app.core.otp import OTPEngine
from app.core.sessions import SessionManager
from app.core.tokens import TokenService
from app.models import OTPCode, User, UserSession  # noqa: F401
from app.models.user import Role
from main import app


# Use in-memory SQLite for testing (fast, isolated)
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FrozenClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, now=None):
        self.now = now or datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class AllowAllRateLimiter:
    """Stands in for the Redis throttle; records keys, never refuses."""

    def __init__(self):
        self.keys = []

    def check_rate_limit(self, key, max_requests, window_seconds, error_message="Rate limit exceeded"):
        self.keys.append(key)


@pytest.fixture
def db_session():
    """
    Create a fresh database for each test and drop it afterwards.
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def make_settings():
    """Copy of the app settings with selected values overridden."""
    def _make(**overrides):
        return settings.model_copy(update=overrides)
    return _make


@pytest.fixture
def otp_engine(db_session, clock):
    return OTPEngine(db_session, config=settings, clock=clock)


@pytest.fixture
def token_service(clock):
    return TokenService.from_settings(settings, clock=clock)


@pytest.fixture
def session_manager(db_session, token_service, clock):
    return SessionManager(db_session, token_service=token_service, config=settings, clock=clock)


@pytest.fixture
def user_factory(db_session):
    """Create users directly in the test database."""
    def _create(email="student@example.com", role=Role.STUDENT, is_active=True, **kwargs):
        user = User(email=email, role=role, is_active=is_active, **kwargs)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user
    return _create


@pytest.fixture
def user(user_factory):
    return user_factory()


@pytest.fixture
def sent_emails(monkeypatch):
    """
    Capture queued emails instead of publishing them on Celery.

    Each entry holds the task name and the keyword arguments the endpoint
    passed for it.
    """
    sent = []

    def fake_queue_task_safely(task, *args, **kwargs):
        sent.append({"task": task.name, **kwargs})
        return True

    monkeypatch.setattr("app.api.endpoints.auth.queue_task_safely", fake_queue_task_safely)
    return sent


@pytest.fixture
def rate_limiter():
    return AllowAllRateLimiter()


@pytest.fixture
def client(db_session, sent_emails, rate_limiter):
    """
    FastAPI test client with overridden database and throttle dependencies.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter

    yield TestClient(app)

    app.dependency_overrides.clear()
