"""
Tests for /api/auth: signup, login, logout, profile, verification, password reset
"""
from datetime import timedelta
from unittest.mock import patch

from sqlalchemy import select

from saas_starter.audit import AuditActions
from saas_starter.models import (
    PLAN_BASIC,
    PLAN_PRO,
    SOURCE_NORMAL,
    STATUS_DEACTIVATED,
    AuditLog,
    PasswordResetToken,
    Session,
    User,
    VerificationToken,
    utcnow,
)
from saas_starter.sessions import SESSION_COOKIE

from conftest import DEFAULT_PASSWORD


def _actions(db, user_id):
    return [log.action for log in db.scalars(select(AuditLog).where(AuditLog.user_id == user_id))]


# -------------------------------------------------------------------
# Signup
# -------------------------------------------------------------------
def test_signup_creates_user_and_session(client, db):
    with patch("saas_starter.emailer.send_email") as send:
        response = client.post(
            "/api/auth/signup",
            json={"email": "New@Example.com", "password": "secure_password", "name": "New User"},
        )

    assert response.status_code == 201
    data = response.json()
    assert data["user"]["email"] == "new@example.com"
    assert data["user"]["plan"] == PLAN_PRO
    assert data["user"]["email_verified"] is False
    assert response.headers["X-RateLimit-Remaining"] == "3"

    user = db.scalar(select(User).where(User.email == "new@example.com"))
    assert user.registration_source == SOURCE_NORMAL
    assert user.referrer_id is None
    days = (user.trial_end_date - utcnow()).days
    assert 13 <= days <= 14

    token = db.scalar(select(VerificationToken).where(VerificationToken.user_id == user.id))
    assert token is not None
    to_email, _subject, body = send.call_args.args
    assert to_email == "new@example.com"
    assert f"http://localhost:3000/auth/verify-email/{token.token}" in body

    assert SESSION_COOKIE in client.cookies
    assert client.get("/api/auth/me").json()["user"]["email"] == "new@example.com"

    actions = _actions(db, user.id)
    assert AuditActions.USER_SIGNUP in actions
    assert AuditActions.USER_EMAIL_VERIFICATION_SENT in actions


def test_signup_weak_password(client):
    response = client.post("/api/auth/signup", json={"email": "a@example.com", "password": "abc"})

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["fields"]["password"] == ["Password must be at least 6 characters"]


def test_signup_invalid_email(client):
    response = client.post("/api/auth/signup", json={"email": "not-an-email", "password": "secure_password"})

    assert response.status_code == 400
    assert "email" in response.json()["fields"]


def test_signup_existing_email_is_not_revealed(client, db, make_user):
    make_user("taken@example.com")

    response = client.post("/api/auth/signup", json={"email": "taken@example.com", "password": "secure_password"})

    assert response.status_code == 200
    assert "verification email" in response.json()["message"]
    assert db.scalar(select(Session)) is None


def test_signup_rate_limited(client):
    for i in range(3):
        client.post("/api/auth/signup", json={"email": f"u{i}@example.com", "password": "secure_password"})

    response = client.post("/api/auth/signup", json={"email": "u9@example.com", "password": "secure_password"})

    assert response.status_code == 429
    assert response.json()["code"] == "RATE_LIMIT_EXCEEDED"
    assert int(response.headers["Retry-After"]) > 0


# -------------------------------------------------------------------
# Login / logout
# -------------------------------------------------------------------
def test_login_success(client, db, make_user):
    user = make_user()

    response = client.post("/api/auth/login", json={"email": "USER@example.com", "password": DEFAULT_PASSWORD})

    assert response.status_code == 200
    assert response.json()["message"] == "Login successful"
    assert response.json()["user"]["id"] == user.id
    assert SESSION_COOKIE in client.cookies
    assert AuditActions.USER_LOGIN_SUCCESS in _actions(db, user.id)


def test_login_wrong_password(client, db, make_user):
    user = make_user()

    response = client.post("/api/auth/login", json={"email": "user@example.com", "password": "wrong_password"})

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid email or password", "code": "AUTHENTICATION_ERROR"}
    assert response.headers["X-RateLimit-Remaining"] == "4"
    assert AuditActions.USER_LOGIN_FAILURE in _actions(db, user.id)


def test_login_unknown_email_same_answer(client):
    response = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "whatever"})

    assert response.status_code == 401
    assert response.json()["error"] == "Invalid email or password"


def test_login_oauth_only_account_cannot_use_password(client, make_user):
    make_user(password=None)

    response = client.post("/api/auth/login", json={"email": "user@example.com", "password": DEFAULT_PASSWORD})
    assert response.status_code == 401


def test_login_deactivated(client, make_user):
    make_user(status=STATUS_DEACTIVATED)

    response = client.post("/api/auth/login", json={"email": "user@example.com", "password": DEFAULT_PASSWORD})

    assert response.status_code == 403
    assert "deactivated" in response.json()["error"]


def test_login_rate_limited(client, make_user):
    make_user()
    for _ in range(5):
        client.post("/api/auth/login", json={"email": "user@example.com", "password": "wrong_password"})

    # Even the right password is refused while blocked
    response = client.post("/api/auth/login", json={"email": "user@example.com", "password": DEFAULT_PASSWORD})

    assert response.status_code == 429
    assert "Retry-After" in response.headers


def test_logout(client, db, make_user, login_as):
    user = make_user()
    token = login_as(user)

    response = client.post("/api/auth/logout")

    assert response.status_code == 200
    assert db.scalar(select(Session).where(Session.token == token)) is None
    assert client.get("/api/auth/me").json() == {"user": None}
    assert AuditActions.USER_LOGOUT in _actions(db, user.id)


def test_logout_anonymous(client):
    assert client.post("/api/auth/logout").status_code == 200


# -------------------------------------------------------------------
# /me
# -------------------------------------------------------------------
def test_me_anonymous(client):
    assert client.get("/api/auth/me").json() == {"user": None}


def test_me_returns_profile_and_trial(client, make_user, login_as):
    login_as(make_user(trial_days=3))

    data = client.get("/api/auth/me").json()

    assert data["user"]["email"] == "user@example.com"
    assert data["user"]["has_password"] is True
    assert "password_hash" not in data["user"]
    assert data["trial"]["is_on_trial"] is True
    assert data["trial"]["days_remaining"] == 3
    assert set(data["trial"]) == {"is_on_trial", "is_expired", "days_remaining", "end_date"}


def test_me_downgrades_expired_trial(client, db, make_user, login_as):
    user = make_user(trial_days=-1)
    login_as(user)

    data = client.get("/api/auth/me").json()

    assert data["user"]["plan"] == PLAN_BASIC
    assert data["trial"]["is_expired"] is True
    assert AuditActions.USER_PLAN_AUTO_DOWNGRADED in _actions(db, user.id)


def test_update_profile(client, db, make_user, login_as):
    user = make_user()
    login_as(user)

    response = client.patch("/api/auth/me", json={"name": "Renamed", "timezone": "Europe/Oslo"})

    assert response.status_code == 200
    assert response.json()["user"]["name"] == "Renamed"
    assert response.json()["user"]["timezone"] == "Europe/Oslo"

    log = db.scalar(select(AuditLog).where(AuditLog.action == AuditActions.USER_PROFILE_UPDATED))
    assert log.details == {"name": "Renamed", "timezone": "Europe/Oslo"}


def test_update_profile_requires_login(client):
    response = client.patch("/api/auth/me", json={"name": "x"})
    assert response.status_code == 401


def test_auth_config(client, monkeypatch):
    assert client.get("/api/auth/config").json() == {"google_oauth_enabled": False}

    monkeypatch.setenv("GOOGLE_OAUTH_ENABLED", "true")
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "id")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "secret")
    assert client.get("/api/auth/config").json() == {"google_oauth_enabled": True}


# -------------------------------------------------------------------
# Email verification
# -------------------------------------------------------------------
def _verification_token(db, user, hours=24):
    row = VerificationToken(user_id=user.id, token=f"verify-{user.id}", expires_at=utcnow() + timedelta(hours=hours))
    db.add(row)
    db.commit()
    return row.token


def test_verify_email(client, db, make_user):
    user = make_user(verified=False)
    token = _verification_token(db, user)

    response = client.post("/api/auth/verify-email", json={"token": token})

    assert response.status_code == 200
    assert response.json()["message"] == "Email verified successfully"
    db.refresh(user)
    assert user.email_verified is not None
    assert db.scalar(select(VerificationToken)) is None
    assert AuditActions.USER_EMAIL_VERIFIED in _actions(db, user.id)


def test_verify_email_unknown_token(client):
    response = client.post("/api/auth/verify-email", json={"token": "nope"})
    assert response.status_code == 404


def test_verify_email_expired_token(client, db, make_user):
    user = make_user(verified=False)
    token = _verification_token(db, user, hours=-1)

    response = client.post("/api/auth/verify-email", json={"token": token})

    assert response.status_code == 400
    assert "expired" in response.json()["error"]
    assert db.scalar(select(VerificationToken)) is None


def test_verify_email_already_verified(client, db, make_user):
    user = make_user(verified=True)
    token = _verification_token(db, user)

    response = client.post("/api/auth/verify-email", json={"token": token})
    assert response.json()["message"] == "Email is already verified"


def test_resend_verification(client, db, make_user, login_as):
    user = make_user(verified=False)
    old = _verification_token(db, user)
    login_as(user)

    with patch("saas_starter.emailer.send_email") as send:
        response = client.post("/api/auth/resend-verification")

    assert response.status_code == 200
    assert send.called
    tokens = list(db.scalars(select(VerificationToken).where(VerificationToken.user_id == user.id)))
    assert len(tokens) == 1
    assert tokens[0].token != old


def test_resend_verification_rate_limited(client, make_user, login_as):
    login_as(make_user(verified=False))
    for _ in range(5):
        assert client.post("/api/auth/resend-verification").status_code == 200

    assert client.post("/api/auth/resend-verification").status_code == 429


def test_resend_verification_requires_login(client):
    assert client.post("/api/auth/resend-verification").status_code == 401


# -------------------------------------------------------------------
# Password reset
# -------------------------------------------------------------------
def test_forgot_password_unknown_email(client, db):
    response = client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})

    assert response.status_code == 200
    assert response.json()["message"].startswith("If an account exists")
    assert db.scalar(select(PasswordResetToken)) is None


def test_forgot_password_sends_link(client, db, make_user):
    user = make_user()

    with patch("saas_starter.emailer.send_email") as send:
        response = client.post("/api/auth/forgot-password", json={"email": "user@example.com"})

    assert response.status_code == 200
    row = db.scalar(select(PasswordResetToken).where(PasswordResetToken.user_id == user.id))
    assert f"/auth/reset-password/{row.token}" in send.call_args.args[2]
    assert AuditActions.USER_PASSWORD_RESET_REQUESTED in _actions(db, user.id)


def test_forgot_password_rate_limited_per_email(client, make_user):
    make_user()
    for _ in range(3):
        client.post("/api/auth/forgot-password", json={"email": "user@example.com"})

    assert client.post("/api/auth/forgot-password", json={"email": "USER@example.com"}).status_code == 429
    assert client.post("/api/auth/forgot-password", json={"email": "other@example.com"}).status_code == 200


def _reset_token(db, user, hours=1):
    row = PasswordResetToken(user_id=user.id, token=f"reset-{user.id}", expires_at=utcnow() + timedelta(hours=hours))
    db.add(row)
    db.commit()
    return row.token


def test_check_reset_token(client, db, make_user):
    user = make_user()
    token = _reset_token(db, user)

    assert client.get("/api/auth/reset-password").status_code == 400
    assert client.get("/api/auth/reset-password", params={"token": "nope"}).status_code == 404
    assert client.get("/api/auth/reset-password", params={"token": token}).json() == {"valid": True}


def test_check_reset_token_expired(client, db, make_user):
    token = _reset_token(db, make_user(), hours=-1)

    response = client.get("/api/auth/reset-password", params={"token": token})
    assert response.status_code == 410
    assert response.json()["valid"] is False


def test_reset_password(client, db, make_user, login_as):
    user = make_user()
    old_session = login_as(user)
    token = _reset_token(db, user)

    response = client.post("/api/auth/reset-password", json={"token": token, "password": "brand_new_pw"})

    assert response.status_code == 200
    assert db.scalar(select(PasswordResetToken)) is None
    assert db.scalar(select(Session).where(Session.token == old_session)) is None
    assert AuditActions.USER_PASSWORD_RESET_COMPLETED in _actions(db, user.id)

    login = client.post("/api/auth/login", json={"email": "user@example.com", "password": "brand_new_pw"})
    assert login.status_code == 200


def test_reset_password_expired(client, db, make_user):
    token = _reset_token(db, make_user(), hours=-1)

    response = client.post("/api/auth/reset-password", json={"token": token, "password": "brand_new_pw"})
    assert response.status_code == 400
    assert "expired" in response.json()["error"]


def test_reset_password_weak(client, db, make_user):
    token = _reset_token(db, make_user())

    response = client.post("/api/auth/reset-password", json={"token": token, "password": "abc"})
    assert response.status_code == 400
    assert "password" in response.json()["fields"]
