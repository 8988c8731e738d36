"""
Pytest configuration and fixtures

Every test runs against a fresh in-memory SQLite schema: tables are
created before the test and dropped after it, so nothing leaks between
tests. The environment is primed before any application module is
imported because settings are read at import time.
"""
import os
import sys
from datetime import datetime, timedelta, timezone
from uuid import uuid4

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["ENVIRONMENT"] = "testing"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_FORMAT"] = "text"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["NOTIFICATION_RETRY_DELAY_S"] = "0"

# Add the parent directory to the path so we can import the app modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from fastapi.testclient import TestClient

from core.account_security import clear_lockout
from core.database import Base, SessionLocal, engine
from core.security import create_user_token, get_password_hash
from main import app
from models import (
    Activity,
    ActivitySource,
    CoachAthlete,
    Profile,
    RelationStatus,
    User,
    UserRole,
)

DEFAULT_PASSWORD = "Password1"


@pytest.fixture(autouse=True)
def _fresh_schema():
    Base.metadata.create_all(bind=engine)
    clear_lockout()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_user(db_session):
    """Factory for users (with a profile)."""
    def _make(role=UserRole.ATHLETE, email=None, first_name="Test", last_name="User",
              password=DEFAULT_PASSWORD, is_active=True, **profile_fields):
        user = User(
            email=email or f"user_{uuid4().hex[:8]}@example.com",
            password_hash=get_password_hash(password),
            first_name=first_name,
            last_name=last_name,
            role=role,
            is_active=is_active,
        )
        user.profile = Profile(**profile_fields)
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def coach(make_user):
    return make_user(role=UserRole.COACH, first_name="Carla", last_name="Coach")


@pytest.fixture
def athlete(make_user):
    return make_user(role=UserRole.ATHLETE, first_name="Alex", last_name="Athlete")


@pytest.fixture
def link(db_session):
    """Factory for coach/athlete relations (ACTIVE by default)."""
    def _link(coach, athlete, status=RelationStatus.ACTIVE, created_at=None):
        relation = CoachAthlete(coach_id=coach.id, athlete_id=athlete.id, status=status)
        if created_at is not None:
            relation.created_at = created_at
        db_session.add(relation)
        db_session.commit()
        return relation

    return _link


@pytest.fixture
def make_activity(db_session):
    """Factory for activities; starts one hour ago unless told otherwise."""
    def _make(user, **fields):
        start = fields.pop("start_time", datetime.now(timezone.utc) - timedelta(hours=1))
        activity = Activity(
            user_id=user.id,
            name=fields.pop("name", "Morning run"),
            type=fields.pop("type", "RUNNING"),
            source=fields.pop("source", ActivitySource.MANUAL),
            start_time=start,
            **fields,
        )
        db_session.add(activity)
        db_session.commit()
        return activity

    return _make


def auth_headers(user):
    return {"Authorization": f"Bearer {create_user_token(user)}"}


@pytest.fixture
def headers():
    """Bearer headers for a user: ``headers(user)``."""
    return auth_headers
