# saas_starter/routers/account.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from saas_starter import auth, email_templates, emailer, rate_limit, schemas, sessions
from saas_starter.audit import AuditActions, create_audit_log
from saas_starter.config import app_url
from saas_starter.database import get_db
from saas_starter.errors import NotFoundError, RateLimitError, ValidationError
from saas_starter.models import EmailChangeToken, User, utcnow
from saas_starter.tokens import generate_email_change_token, get_token_expiry, is_token_expired

router = APIRouter(prefix="/api/auth", tags=["account"])

EMAIL_CHANGE_EXPIRY_HOURS = 24


def _check_new_password(password: str, message: str = "Password does not meet requirements") -> None:
    check = auth.validate_password_strength(password)
    if not check.valid:
        raise ValidationError(message, {"new_password": check.errors})


# -------------------------------------------------------------------
# Password
# -------------------------------------------------------------------
@router.post("/change-password", response_model=schemas.MessageOut)
def change_password(
    payload: schemas.ChangePasswordIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    user: User = Depends(auth.requires_auth),
):
    meta = auth.get_request_metadata(request)
    _check_new_password(payload.new_password, "New password does not meet requirements")

    if not user.password_hash:
        raise ValidationError(
            'You don\'t have a password yet. Use "Set Password" instead.',
            {"current_password": ["No password is set on this account"]},
        )

    if not auth.verify_password(payload.current_password, user.password_hash):
        raise ValidationError(
            "Current password is incorrect",
            {"current_password": ["Current password is incorrect"]},
        )

    user.password_hash = auth.hash_password(payload.new_password)
    db.commit()

    # Sign out everywhere, then keep this device signed in
    sessions.destroy_all_user_sessions(db, user.id)
    sessions.create_session(db, response, user.id, meta.ip_address, meta.user_agent)

    create_audit_log(
        db,
        action=AuditActions.USER_PASSWORD_CHANGED,
        user_id=user.id,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
    )
    return {"message": "Password changed successfully"}


@router.post("/set-password", response_model=schemas.MessageOut)
def set_password(
    payload: schemas.SetPasswordIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    user: User = Depends(auth.requires_auth),
):
    """For accounts created through Google that have no password yet."""
    meta = auth.get_request_metadata(request)
    _check_new_password(payload.new_password)

    if user.password_hash:
        raise ValidationError(
            'You already have a password set. Use "Change Password" instead.',
            {"new_password": ["Password already set"]},
        )

    user.password_hash = auth.hash_password(payload.new_password)
    db.commit()

    sessions.destroy_all_user_sessions(db, user.id)
    sessions.create_session(db, response, user.id, meta.ip_address, meta.user_agent)

    create_audit_log(
        db,
        action=AuditActions.USER_PASSWORD_CHANGED,
        user_id=user.id,
        metadata={"method": "set_password_oauth_user"},
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
    )
    return {"message": "Password set successfully"}


# -------------------------------------------------------------------
# Email change
# -------------------------------------------------------------------
@router.post("/change-email", response_model=schemas.MessageOut)
def change_email(
    payload: schemas.ChangeEmailIn,
    db: Session = Depends(get_db),
    user: User = Depends(auth.requires_auth),
):
    if not user.email_verified:
        raise ValidationError("Please verify your current email before changing it")

    new_email = payload.new_email.lower()
    if new_email == user.email:
        raise ValidationError("New email must be different from current email")

    identifier = str(user.id)
    limit = rate_limit.check_rate_limit(db, identifier, rate_limit.ACTION_EMAIL_VERIFICATION)
    if not limit.allowed:
        raise RateLimitError("Too many email change requests. Please try again later.", limit.reset_at)

    if db.scalar(select(User).where(User.email == new_email)):
        raise ValidationError("This email is already in use")

    db.execute(delete(EmailChangeToken).where(EmailChangeToken.user_id == user.id))
    token = generate_email_change_token()
    db.add(
        EmailChangeToken(
            user_id=user.id,
            new_email=new_email,
            token=token,
            expires_at=get_token_expiry(EMAIL_CHANGE_EXPIRY_HOURS),
        )
    )
    db.commit()

    # Confirmation goes to the new address
    parts = email_templates.email_change(user.name, new_email, f"{app_url()}/auth/confirm-email-change/{token}")
    emailer.send_email(new_email, parts.subject, parts.body)

    create_audit_log(
        db,
        action=AuditActions.USER_EMAIL_CHANGE_REQUESTED,
        user_id=user.id,
        metadata={"newEmail": new_email},
    )
    rate_limit.increment_rate_limit(db, identifier, rate_limit.ACTION_EMAIL_VERIFICATION)

    return {"message": "Confirmation email sent to your new email address"}


@router.post("/confirm-email-change", response_model=schemas.MessageOut)
def confirm_email_change(payload: schemas.TokenIn, request: Request, db: Session = Depends(get_db)):
    meta = auth.get_request_metadata(request)

    row = db.scalar(select(EmailChangeToken).where(EmailChangeToken.token == payload.token))
    if not row:
        raise NotFoundError("Invalid or expired token")

    if is_token_expired(row.expires_at):
        db.delete(row)
        db.commit()
        raise ValidationError("Token has expired. Please request a new email change.")

    new_email = row.new_email
    if db.scalar(select(User).where(User.email == new_email)):
        db.delete(row)
        db.commit()
        raise ValidationError("This email is no longer available")

    user = row.user
    old_email = user.email
    user.email = new_email
    user.email_verified = utcnow()
    db.execute(delete(EmailChangeToken).where(EmailChangeToken.user_id == user.id))
    db.commit()

    create_audit_log(
        db,
        action=AuditActions.USER_EMAIL_CHANGED,
        user_id=user.id,
        metadata={"oldEmail": old_email, "newEmail": new_email},
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
    )
    return {"message": "Email changed successfully"}


# -------------------------------------------------------------------
# Deletion
# -------------------------------------------------------------------
@router.delete("/delete-account", response_model=schemas.MessageOut)
def delete_account(
    response: Response,
    db: Session = Depends(get_db),
    user: User = Depends(auth.requires_auth),
):
    user_id = user.id
    # Written before the delete; user_id is nulled by the FK afterwards
    create_audit_log(
        db,
        action=AuditActions.USER_DELETED,
        user_id=user_id,
        metadata={"reason": "User requested account deletion", "deletedUserId": user_id},
    )

    db.delete(user)
    db.commit()

    sessions.clear_session_cookie(response)
    return {"message": "Account deleted successfully"}
