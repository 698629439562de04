# saas_starter/routers/auth.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from saas_starter import auth, email_templates, emailer, plans, rate_limit, referrals, schemas, sessions
from saas_starter.audit import AuditActions, create_audit_log
from saas_starter.config import app_url, email_verification_expiry_hours, password_reset_expiry_hours
from saas_starter.database import get_db
from saas_starter.errors import NotFoundError, RateLimitError, ValidationError
from saas_starter.google_oauth import is_google_oauth_enabled
from saas_starter.models import PasswordResetToken, STATUS_DEACTIVATED, User, VerificationToken, utcnow
from saas_starter.tokens import (
    generate_password_reset_token,
    generate_verification_token,
    get_token_expiry,
    is_token_expired,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------
def _auth_user(user: User) -> dict:
    return schemas.AuthUserOut(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        plan=user.plan,
        email_verified=user.email_verified is not None,
    ).model_dump()


def me_payload(user: User) -> dict:
    out = schemas.MeOut.model_validate(user).model_copy(update={"has_password": bool(user.password_hash)})
    return {
        "user": out.model_dump(),
        "trial": schemas.TrialOut.model_validate(plans.trial_status_for(user)).model_dump(),
    }


def send_verification_email(db: Session, user: User) -> None:
    """Replace any pending verification token with a fresh one and mail it."""
    db.execute(delete(VerificationToken).where(VerificationToken.user_id == user.id))

    token = generate_verification_token()
    db.add(
        VerificationToken(
            user_id=user.id,
            token=token,
            expires_at=get_token_expiry(email_verification_expiry_hours()),
        )
    )
    db.commit()

    parts = email_templates.verify_email(
        user.name,
        f"{app_url()}/auth/verify-email/{token}",
        expiry_hours=email_verification_expiry_hours(),
    )
    emailer.send_email(user.email, parts.subject, parts.body)


def _password_errors(password: str) -> None:
    check = auth.validate_password_strength(password)
    if not check.valid:
        raise ValidationError("Password does not meet requirements", {"password": check.errors})


# -------------------------------------------------------------------
# Signup / login / logout
# -------------------------------------------------------------------
@router.post("/signup", status_code=201)
def signup(
    payload: schemas.SignupIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    meta = auth.get_request_metadata(request)
    identifier = meta.ip_address or "unknown"

    limit = rate_limit.check_rate_limit(db, identifier, rate_limit.ACTION_SIGNUP)
    if not limit.allowed:
        raise RateLimitError("Too many signup attempts. Please try again later.", limit.reset_at)

    _password_errors(payload.password)

    email = payload.email.lower()
    if db.scalar(select(User).where(User.email == email)):
        # Same answer as a fresh signup would get, minus the account
        rate_limit.increment_rate_limit(db, identifier, rate_limit.ACTION_SIGNUP)
        return JSONResponse(
            status_code=200,
            content={"message": "If this email is not registered, you will receive a verification email."},
        )

    link = referrals.resolve_referral_cookie(db, request.cookies.get(referrals.REFERRAL_COOKIE))
    terms = referrals.trial_terms(link)

    user = User(
        email=email,
        password_hash=auth.hash_password(payload.password),
        name=(payload.name or "").strip() or None,
        trial_end_date=terms.trial_end_date,
        referrer_id=terms.referrer_id,
        registration_source=terms.registration_source,
        trial_days_granted=terms.trial_days_granted,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    send_verification_email(db, user)
    sessions.create_session(db, response, user.id, meta.ip_address, meta.user_agent)

    create_audit_log(
        db,
        action=AuditActions.USER_SIGNUP,
        user_id=user.id,
        metadata={"referralLinkId": link.id, "trialDays": link.trial_days} if link else None,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
    )
    create_audit_log(db, action=AuditActions.USER_EMAIL_VERIFICATION_SENT, user_id=user.id)

    rate_limit.increment_rate_limit(db, identifier, rate_limit.ACTION_SIGNUP)
    if link:
        response.delete_cookie(referrals.REFERRAL_COOKIE, path="/")

    response.headers.update(rate_limit.rate_limit_headers(limit))
    return {
        "message": "Account created! Please check your email to verify your account.",
        "user": _auth_user(user),
    }


@router.post("/login")
def login(
    payload: schemas.LoginIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    meta = auth.get_request_metadata(request)
    identifier = meta.ip_address or "unknown"

    limit = rate_limit.check_rate_limit(db, identifier, rate_limit.ACTION_LOGIN)
    if not limit.allowed:
        raise RateLimitError("Too many login attempts. Please try again later.", limit.reset_at)

    user = db.scalar(select(User).where(User.email == payload.email.lower()))

    if user and user.password_hash:
        valid = auth.verify_password(payload.password, user.password_hash)
    else:
        auth.dummy_verify()
        valid = False

    if not user or not valid:
        rate_limit.increment_rate_limit(db, identifier, rate_limit.ACTION_LOGIN)
        if user:
            create_audit_log(
                db,
                action=AuditActions.USER_LOGIN_FAILURE,
                user_id=user.id,
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
            )
        return JSONResponse(
            status_code=401,
            content={"error": "Invalid email or password", "code": "AUTHENTICATION_ERROR"},
            headers=rate_limit.rate_limit_headers(
                rate_limit.check_rate_limit(db, identifier, rate_limit.ACTION_LOGIN)
            ),
        )

    if user.status == STATUS_DEACTIVATED:
        return JSONResponse(
            status_code=403,
            content={
                "error": "This account has been deactivated. Please contact support.",
                "code": "AUTHORIZATION_ERROR",
            },
        )

    sessions.create_session(db, response, user.id, meta.ip_address, meta.user_agent)
    create_audit_log(
        db,
        action=AuditActions.USER_LOGIN_SUCCESS,
        user_id=user.id,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
    )

    response.headers.update(rate_limit.rate_limit_headers(limit))
    return {"message": "Login successful", "user": _auth_user(user)}


@router.post("/logout", response_model=schemas.MessageOut)
def logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(auth.get_current_user),
):
    if user:
        create_audit_log(db, action=AuditActions.USER_LOGOUT, user_id=user.id)

    sessions.destroy_current_session(db, request, response)
    return {"message": "Logged out successfully"}


# -------------------------------------------------------------------
# Current user
# -------------------------------------------------------------------
@router.get("/me")
def get_me(user: Optional[User] = Depends(auth.get_current_user)):
    if not user:
        return {"user": None}
    return me_payload(user)


@router.patch("/me")
def update_me(
    payload: schemas.ProfileUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(auth.requires_auth),
):
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)

    if "name" in changes:
        user.name = changes["name"].strip() or None
    if "timezone" in changes:
        user.timezone = changes["timezone"]

    db.commit()
    db.refresh(user)

    create_audit_log(db, action=AuditActions.USER_PROFILE_UPDATED, user_id=user.id, metadata=changes)
    return me_payload(user)


@router.get("/config")
def auth_config():
    return {"google_oauth_enabled": is_google_oauth_enabled()}


# -------------------------------------------------------------------
# Email verification
# -------------------------------------------------------------------
@router.post("/verify-email", response_model=schemas.MessageOut)
def verify_email(payload: schemas.TokenIn, request: Request, db: Session = Depends(get_db)):
    meta = auth.get_request_metadata(request)

    row = db.scalar(select(VerificationToken).where(VerificationToken.token == payload.token))
    if not row:
        raise NotFoundError("Invalid or expired verification token")

    if is_token_expired(row.expires_at):
        db.delete(row)
        db.commit()
        raise ValidationError("Verification token has expired. Please request a new one.")

    user = row.user
    if user.email_verified:
        db.delete(row)
        db.commit()
        return {"message": "Email is already verified"}

    user.email_verified = utcnow()
    db.execute(delete(VerificationToken).where(VerificationToken.user_id == user.id))
    db.commit()

    create_audit_log(
        db,
        action=AuditActions.USER_EMAIL_VERIFIED,
        user_id=user.id,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
    )
    return {"message": "Email verified successfully"}


@router.post("/resend-verification", response_model=schemas.MessageOut)
def resend_verification(db: Session = Depends(get_db), user: User = Depends(auth.requires_auth)):
    if user.email_verified:
        return {"message": "Email is already verified"}

    identifier = str(user.id)
    limit = rate_limit.check_rate_limit(db, identifier, rate_limit.ACTION_EMAIL_VERIFICATION)
    if not limit.allowed:
        raise RateLimitError(
            "Too many verification emails requested. Please wait before trying again.",
            limit.reset_at,
        )

    send_verification_email(db, user)
    create_audit_log(db, action=AuditActions.USER_EMAIL_VERIFICATION_SENT, user_id=user.id)
    rate_limit.increment_rate_limit(db, identifier, rate_limit.ACTION_EMAIL_VERIFICATION)

    return {"message": "Verification email sent"}


# -------------------------------------------------------------------
# Password reset
# -------------------------------------------------------------------
@router.post("/forgot-password", response_model=schemas.MessageOut)
def forgot_password(
    payload: schemas.ForgotPasswordIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    meta = auth.get_request_metadata(request)
    email = payload.email.lower()

    limit = rate_limit.check_rate_limit(db, email, rate_limit.ACTION_PASSWORD_RESET)
    if not limit.allowed:
        raise RateLimitError("Too many password reset requests. Please try again later.", limit.reset_at)

    response.headers.update(rate_limit.rate_limit_headers(limit))
    ok = {"message": "If an account exists with this email, you will receive a password reset link."}

    user = db.scalar(select(User).where(User.email == email))
    if not user:
        rate_limit.increment_rate_limit(db, email, rate_limit.ACTION_PASSWORD_RESET)
        return ok

    db.execute(delete(PasswordResetToken).where(PasswordResetToken.user_id == user.id))
    token = generate_password_reset_token()
    db.add(
        PasswordResetToken(
            user_id=user.id,
            token=token,
            expires_at=get_token_expiry(password_reset_expiry_hours()),
        )
    )
    db.commit()

    parts = email_templates.password_reset(
        user.name,
        f"{app_url()}/auth/reset-password/{token}",
        expiry_hours=password_reset_expiry_hours(),
    )
    emailer.send_email(user.email, parts.subject, parts.body)

    create_audit_log(
        db,
        action=AuditActions.USER_PASSWORD_RESET_REQUESTED,
        user_id=user.id,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
    )
    rate_limit.increment_rate_limit(db, email, rate_limit.ACTION_PASSWORD_RESET)
    return ok


@router.get("/reset-password")
def check_reset_token(token: Optional[str] = Query(default=None), db: Session = Depends(get_db)):
    if not token:
        return JSONResponse(status_code=400, content={"valid": False, "message": "Token is required"})

    row = db.scalar(select(PasswordResetToken).where(PasswordResetToken.token == token))
    if not row:
        return JSONResponse(status_code=404, content={"valid": False, "message": "Invalid token"})

    if is_token_expired(row.expires_at):
        db.delete(row)
        db.commit()
        return JSONResponse(status_code=410, content={"valid": False, "message": "Token has expired"})

    return {"valid": True}


@router.post("/reset-password", response_model=schemas.MessageOut)
def reset_password(payload: schemas.ResetPasswordIn, request: Request, db: Session = Depends(get_db)):
    meta = auth.get_request_metadata(request)
    _password_errors(payload.password)

    row = db.scalar(select(PasswordResetToken).where(PasswordResetToken.token == payload.token))
    if not row:
        raise NotFoundError("Invalid or expired reset token")

    if is_token_expired(row.expires_at):
        db.delete(row)
        db.commit()
        raise ValidationError("Reset token has expired. Please request a new one.")

    user_id = row.user_id
    row.user.password_hash = auth.hash_password(payload.password)
    db.execute(delete(PasswordResetToken).where(PasswordResetToken.user_id == user_id))
    db.commit()

    # Anyone holding an old session is signed out
    sessions.destroy_all_user_sessions(db, user_id)

    create_audit_log(
        db,
        action=AuditActions.USER_PASSWORD_RESET_COMPLETED,
        user_id=user_id,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
    )
    return {"message": "Password reset successfully. Please login with your new password."}
