# saas_starter/routers/google_auth.py
from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from saas_starter import auth, google_oauth, rate_limit, referrals, sessions
from saas_starter.audit import AuditActions, create_audit_log
from saas_starter.config import app_url, trial_duration_days
from saas_starter.database import get_db
from saas_starter.errors import RateLimitError
from saas_starter.models import PROVIDER_GOOGLE, STATUS_DEACTIVATED, User, UserAuthProvider, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

OAUTH_REFERRAL_MAX_AGE = google_oauth.OAUTH_STATE_EXPIRY_MINUTES * 60
DEACTIVATED_MESSAGE = "This account has been deactivated. Please contact support."


class OAuthRejected(Exception):
    """Account resolution refused the login; the message is shown on the login page."""
    pass


def _not_enabled() -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": "Google OAuth is not enabled"})


def _login_error(message: str) -> RedirectResponse:
    resp = RedirectResponse(url=f"{app_url()}/auth/login?{urlencode({'error': message})}", status_code=302)
    google_oauth.clear_oauth_state_cookie(resp)
    resp.delete_cookie(referrals.OAUTH_REFERRAL_COOKIE, path="/")
    return resp


# -------------------------------------------------------------------
# Start
# -------------------------------------------------------------------
@router.get("/google")
def google_start(request: Request, db: Session = Depends(get_db)):
    if not google_oauth.is_google_oauth_enabled():
        return _not_enabled()

    meta = auth.get_request_metadata(request)
    identifier = meta.ip_address or "unknown"

    limit = rate_limit.check_rate_limit(db, identifier, rate_limit.ACTION_GOOGLE_OAUTH)
    if not limit.allowed:
        raise RateLimitError("Too many authentication attempts. Please try again later.", limit.reset_at)
    rate_limit.increment_rate_limit(db, identifier, rate_limit.ACTION_GOOGLE_OAUTH)

    state = google_oauth.generate_oauth_state()
    resp = RedirectResponse(url=google_oauth.build_google_auth_url(state), status_code=302)
    google_oauth.set_oauth_state_cookie(resp, state)

    # ap_ref does not survive the trip to Google reliably; carry it over
    link = referrals.resolve_referral_cookie(db, request.cookies.get(referrals.REFERRAL_COOKIE))
    if link:
        referrals.set_referral_cookie(
            resp, link, cookie_name=referrals.OAUTH_REFERRAL_COOKIE, max_age=OAUTH_REFERRAL_MAX_AGE
        )
    return resp


# -------------------------------------------------------------------
# Callback
# -------------------------------------------------------------------
def _link_existing(
    db: Session,
    user: User,
    profile: google_oauth.GoogleUserProfile,
    meta: auth.RequestMetadata,
) -> None:
    db.add(UserAuthProvider(user_id=user.id, provider=PROVIDER_GOOGLE, provider_user_id=profile.sub))

    verify = google_oauth.should_auto_verify_google_email() and profile.email_verified and not user.email_verified
    if verify:
        user.email_verified = utcnow()
    if not user.avatar and profile.picture:
        user.avatar = profile.picture
    db.commit()

    if verify:
        create_audit_log(
            db,
            action=AuditActions.USER_EMAIL_VERIFIED,
            user_id=user.id,
            metadata={"method": "google_oauth"},
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
    create_audit_log(
        db,
        action=AuditActions.USER_OAUTH_LINKED,
        user_id=user.id,
        metadata={"provider": "google"},
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
    )


def _signup(
    db: Session,
    request: Request,
    email: str,
    profile: google_oauth.GoogleUserProfile,
    meta: auth.RequestMetadata,
) -> User:
    cookie = request.cookies.get(referrals.OAUTH_REFERRAL_COOKIE) or request.cookies.get(referrals.REFERRAL_COOKIE)
    link = referrals.resolve_referral_cookie(db, cookie)
    terms = referrals.trial_terms(link)

    verified = google_oauth.should_auto_verify_google_email() and profile.email_verified
    user = User(
        email=email,
        name=profile.name or None,
        avatar=profile.picture or None,
        password_hash=None,
        email_verified=utcnow() if verified else None,
        trial_end_date=terms.trial_end_date,
        referrer_id=terms.referrer_id,
        registration_source=terms.registration_source,
        trial_days_granted=terms.trial_days_granted,
    )
    db.add(user)
    db.flush()
    db.add(UserAuthProvider(user_id=user.id, provider=PROVIDER_GOOGLE, provider_user_id=profile.sub))
    db.commit()
    db.refresh(user)

    create_audit_log(
        db,
        action=AuditActions.USER_OAUTH_SIGNUP,
        user_id=user.id,
        metadata={
            "provider": "google",
            "hasReferral": link is not None,
            "trialDays": terms.trial_days_granted or trial_duration_days(),
        },
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
    )
    return user


def resolve_google_user(
    db: Session,
    request: Request,
    profile: google_oauth.GoogleUserProfile,
    meta: auth.RequestMetadata,
) -> tuple[User, str]:
    """
    1. provider already linked → login
    2. same email exists       → link provider, then login
    3. signup allowed          → create the account
    4. otherwise               → OAuthRejected
    """
    email = (profile.email or "").lower()

    provider = db.scalar(
        select(UserAuthProvider).where(
            UserAuthProvider.provider == PROVIDER_GOOGLE,
            UserAuthProvider.provider_user_id == profile.sub,
        )
    )
    if provider:
        if provider.user.status == STATUS_DEACTIVATED:
            raise OAuthRejected(DEACTIVATED_MESSAGE)
        return provider.user, "login"

    existing = db.scalar(select(User).where(User.email == email))
    if existing:
        if existing.status == STATUS_DEACTIVATED:
            raise OAuthRejected(DEACTIVATED_MESSAGE)
        _link_existing(db, existing, profile, meta)
        return existing, "linked"

    if not google_oauth.is_google_signup_allowed():
        create_audit_log(
            db,
            action=AuditActions.USER_OAUTH_LOGIN_BLOCKED,
            metadata={"email": email, "reason": "signup_disabled"},
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        raise OAuthRejected("No account found with this email. Please sign up first.")

    return _signup(db, request, email, profile, meta), "signup"


@router.get("/google/callback")
def google_callback(
    request: Request,
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    if not google_oauth.is_google_oauth_enabled():
        return _not_enabled()

    meta = auth.get_request_metadata(request)

    if error:
        logger.warning("Google OAuth error", extra={"error": error})
        return _login_error("Authentication was cancelled or failed")

    if not code or not state:
        logger.warning("Missing OAuth parameters", extra={"has_code": bool(code), "has_state": bool(state)})
        return _login_error("Invalid OAuth callback")

    if not google_oauth.validate_oauth_state(request, state):
        logger.warning("Invalid OAuth state", extra={"ip_address": meta.ip_address})
        return _login_error("Invalid authentication state. Please try again.")

    try:
        tokens = google_oauth.exchange_code_for_tokens(code)
        profile = google_oauth.verify_google_id_token(tokens.id_token)

        if not profile.email:
            logger.error("Google user has no email", extra={"sub": profile.sub})
            return _login_error("Could not retrieve email from Google")

        user, outcome = resolve_google_user(db, request, profile, meta)
    except OAuthRejected as e:
        return _login_error(str(e))
    except (google_oauth.GoogleOAuthError, SQLAlchemyError, ValueError) as e:
        db.rollback()
        logger.error("Google OAuth callback error", extra={"error": str(e), "ip_address": meta.ip_address})
        return _login_error("An error occurred during authentication. Please try again.")

    resp = RedirectResponse(url=f"{app_url()}/dashboard", status_code=302)
    sessions.create_session(db, resp, user.id, meta.ip_address, meta.user_agent)

    if outcome == "login":
        create_audit_log(
            db,
            action=AuditActions.USER_OAUTH_LOGIN,
            user_id=user.id,
            metadata={"provider": "google"},
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )

    google_oauth.clear_oauth_state_cookie(resp)
    referrals.clear_referral_cookies(resp)
    return resp
