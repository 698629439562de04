"""
Pytest configuration and fixtures for testing
"""
from datetime import timedelta

import pytest
from fastapi import Response
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from saas_starter import models  # noqa: F401  (register tables on Base)
from saas_starter.auth import hash_password
from saas_starter.database import Base, build_engine, get_db
from saas_starter.main import app
from saas_starter.models import PLAN_PRO, ROLE_SUPERADMIN, ROLE_USER, STATUS_ACTIVE, User, utcnow
from saas_starter.sessions import SESSION_COOKIE, create_session

DEFAULT_PASSWORD = "password123"

_CLEARED_ENV = (
    "APP_ENV",
    "EMAIL_ENABLED",
    "SMTP_HOST",
    "GOOGLE_OAUTH_ENABLED",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_OAUTH_CALLBACK_URL",
    "GOOGLE_OAUTH_ALLOW_SIGNUP",
    "GOOGLE_OAUTH_AUTO_VERIFY_EMAIL",
    "METABASE_SECRET_KEY",
    "METABASE_SITE_URL",
    "SUPERADMIN_EMAIL",
    "SUPERADMIN_PASSWORD",
    "SUPERADMIN_NAME",
    "SEED_DEMO_USERS",
    "TRIAL_DURATION_DAYS",
)


@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """
    Fast hashing and no outbound SMTP/Google unless a test opts in.
    """
    for name in _CLEARED_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")
    monkeypatch.setenv("APP_URL", "http://localhost:3000")


@pytest.fixture
def engine():
    """
    Fresh in-memory SQLite database per test, with foreign keys enforced.
    """
    eng = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def db(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    with_client = TestClient(app)
    try:
        yield with_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(
        email="user@example.com",
        password=DEFAULT_PASSWORD,
        *,
        name="Test User",
        role=ROLE_USER,
        status=STATUS_ACTIVE,
        plan=PLAN_PRO,
        plan_override=False,
        verified=True,
        trial_days=14,
        **extra,
    ):
        user = User(
            email=email.lower(),
            name=name,
            password_hash=hash_password(password) if password else None,
            role=role,
            status=status,
            plan=plan,
            plan_override=plan_override,
            email_verified=utcnow() if verified else None,
            trial_end_date=utcnow() + timedelta(days=trial_days),
            **extra,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def admin_user(make_user):
    return make_user("admin@example.com", role=ROLE_SUPERADMIN, plan_override=True, name="Admin")


@pytest.fixture
def login_as(client, db):
    """
    Sign a user in by creating a session directly and handing the cookie to the client.
    """

    def _login(user):
        token = create_session(db, Response(), user.id)
        # cookiejar files dotless hosts under ".local"; match what the server sets
        client.cookies.set(SESSION_COOKIE, token, domain="testserver.local")
        return token

    return _login
