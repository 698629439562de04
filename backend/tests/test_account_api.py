"""
Tests for account management: password change/set, email change, deletion
"""
from datetime import timedelta
from unittest.mock import patch

from sqlalchemy import select

from saas_starter.audit import AuditActions
from saas_starter.auth import verify_password
from saas_starter.models import AuditLog, EmailChangeToken, Session, User, utcnow

from conftest import DEFAULT_PASSWORD


# -------------------------------------------------------------------
# Change / set password
# -------------------------------------------------------------------
def test_change_password(client, db, make_user, login_as):
    user = make_user()
    old_token = login_as(user)
    other_device = login_as(user)

    response = client.post(
        "/api/auth/change-password",
        json={"current_password": DEFAULT_PASSWORD, "new_password": "another_password"},
    )

    assert response.status_code == 200
    assert response.json()["message"] == "Password changed successfully"

    db.refresh(user)
    assert verify_password("another_password", user.password_hash)

    # Old sessions gone, a fresh one issued to this client
    tokens = [s.token for s in db.scalars(select(Session).where(Session.user_id == user.id))]
    assert len(tokens) == 1
    assert old_token not in tokens and other_device not in tokens
    assert client.get("/api/auth/me").json()["user"]["id"] == user.id

    log = db.scalar(select(AuditLog).where(AuditLog.action == AuditActions.USER_PASSWORD_CHANGED))
    assert log.user_id == user.id


def test_change_password_wrong_current(client, make_user, login_as):
    login_as(make_user())

    response = client.post(
        "/api/auth/change-password",
        json={"current_password": "not_it", "new_password": "another_password"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Current password is incorrect"
    assert "current_password" in response.json()["fields"]


def test_change_password_weak_new(client, make_user, login_as):
    login_as(make_user())

    response = client.post(
        "/api/auth/change-password",
        json={"current_password": DEFAULT_PASSWORD, "new_password": "abc"},
    )

    assert response.status_code == 400
    assert response.json()["fields"]["new_password"] == ["Password must be at least 6 characters"]


def test_change_password_without_password_points_to_set(client, make_user, login_as):
    login_as(make_user(password=None))

    response = client.post(
        "/api/auth/change-password",
        json={"current_password": "anything", "new_password": "another_password"},
    )

    assert response.status_code == 400
    assert "Set Password" in response.json()["error"]


def test_set_password_for_oauth_user(client, db, make_user, login_as):
    user = make_user(password=None)
    login_as(user)

    response = client.post("/api/auth/set-password", json={"new_password": "first_password"})

    assert response.status_code == 200
    db.refresh(user)
    assert verify_password("first_password", user.password_hash)
    assert client.get("/api/auth/me").json()["user"]["has_password"] is True

    log = db.scalar(select(AuditLog).where(AuditLog.action == AuditActions.USER_PASSWORD_CHANGED))
    assert log.details == {"method": "set_password_oauth_user"}


def test_set_password_when_one_exists(client, make_user, login_as):
    login_as(make_user())

    response = client.post("/api/auth/set-password", json={"new_password": "first_password"})

    assert response.status_code == 400
    assert "Change Password" in response.json()["error"]


def test_password_endpoints_require_login(client):
    assert client.post("/api/auth/set-password", json={"new_password": "first_password"}).status_code == 401
    assert (
        client.post(
            "/api/auth/change-password",
            json={"current_password": "a", "new_password": "first_password"},
        ).status_code
        == 401
    )


# -------------------------------------------------------------------
# Email change
# -------------------------------------------------------------------
def test_change_email_sends_confirmation_to_new_address(client, db, make_user, login_as):
    user = make_user()
    login_as(user)

    with patch("saas_starter.emailer.send_email") as send:
        response = client.post("/api/auth/change-email", json={"new_email": "Fresh@Example.com"})

    assert response.status_code == 200
    row = db.scalar(select(EmailChangeToken).where(EmailChangeToken.user_id == user.id))
    assert row.new_email == "fresh@example.com"

    to_email, _subject, body = send.call_args.args
    assert to_email == "fresh@example.com"
    assert f"/auth/confirm-email-change/{row.token}" in body

    # Address only changes after confirmation
    db.refresh(user)
    assert user.email == "user@example.com"


def test_change_email_requires_verified_email(client, make_user, login_as):
    login_as(make_user(verified=False))

    response = client.post("/api/auth/change-email", json={"new_email": "fresh@example.com"})

    assert response.status_code == 400
    assert "verify your current email" in response.json()["error"]


def test_change_email_same_address(client, make_user, login_as):
    login_as(make_user())

    response = client.post("/api/auth/change-email", json={"new_email": "USER@example.com"})

    assert response.status_code == 400
    assert response.json()["error"] == "New email must be different from current email"


def test_change_email_taken(client, make_user, login_as):
    make_user("taken@example.com")
    login_as(make_user())

    response = client.post("/api/auth/change-email", json={"new_email": "taken@example.com"})

    assert response.status_code == 400
    assert response.json()["error"] == "This email is already in use"


def _email_change_token(db, user, new_email="fresh@example.com", hours=24):
    row = EmailChangeToken(
        user_id=user.id,
        new_email=new_email,
        token=f"change-{user.id}",
        expires_at=utcnow() + timedelta(hours=hours),
    )
    db.add(row)
    db.commit()
    return row.token


def test_confirm_email_change(client, db, make_user):
    user = make_user()
    token = _email_change_token(db, user)

    response = client.post("/api/auth/confirm-email-change", json={"token": token})

    assert response.status_code == 200
    assert response.json()["message"] == "Email changed successfully"
    db.refresh(user)
    assert user.email == "fresh@example.com"
    assert user.email_verified is not None
    assert db.scalar(select(EmailChangeToken)) is None

    log = db.scalar(select(AuditLog).where(AuditLog.action == AuditActions.USER_EMAIL_CHANGED))
    assert log.details == {"oldEmail": "user@example.com", "newEmail": "fresh@example.com"}


def test_confirm_email_change_expired(client, db, make_user):
    token = _email_change_token(db, make_user(), hours=-1)

    response = client.post("/api/auth/confirm-email-change", json={"token": token})

    assert response.status_code == 400
    assert "expired" in response.json()["error"]


def test_confirm_email_change_address_taken_meanwhile(client, db, make_user):
    user = make_user()
    token = _email_change_token(db, user)
    make_user("fresh@example.com")

    response = client.post("/api/auth/confirm-email-change", json={"token": token})

    assert response.status_code == 400
    assert response.json()["error"] == "This email is no longer available"


def test_confirm_email_change_unknown_token(client):
    assert client.post("/api/auth/confirm-email-change", json={"token": "nope"}).status_code == 404


# -------------------------------------------------------------------
# Deletion
# -------------------------------------------------------------------
def test_delete_account(client, db, make_user, login_as):
    user = make_user()
    user_id = user.id
    login_as(user)

    response = client.delete("/api/auth/delete-account")

    assert response.status_code == 200
    assert response.json()["message"] == "Account deleted successfully"
    assert db.get(User, user_id) is None
    assert db.scalar(select(Session)) is None
    assert client.get("/api/auth/me").json() == {"user": None}

    log = db.scalar(select(AuditLog).where(AuditLog.action == AuditActions.USER_DELETED))
    assert log.user_id is None
    assert log.details["deletedUserId"] == user_id


def test_delete_account_requires_login(client):
    assert client.delete("/api/auth/delete-account").status_code == 401
