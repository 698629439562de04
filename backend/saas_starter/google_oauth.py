# saas_starter/google_oauth.py
"""
Google OAuth 2.0 (authorization code flow) helpers.

Configuration is read from the environment on every call:
  GOOGLE_OAUTH_ENABLED=true
  GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET / GOOGLE_OAUTH_CALLBACK_URL
  GOOGLE_OAUTH_ALLOW_SIGNUP      (anything but "false" allows new accounts)
  GOOGLE_OAUTH_AUTO_VERIFY_EMAIL (anything but "false" trusts Google's email_verified)
"""
from __future__ import annotations

import logging
import os
import secrets
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx
from fastapi import Request, Response

from .config import is_production
from .tokens import generate_session_token

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
GOOGLE_ISSUERS = ("https://accounts.google.com", "accounts.google.com")

OAUTH_STATE_COOKIE = "oauth_state"
OAUTH_STATE_EXPIRY_MINUTES = 10

HTTP_TIMEOUT = 10.0


class GoogleOAuthError(Exception):
    """Raised for misconfiguration and for any failed step of the Google flow"""
    pass


@dataclass(frozen=True)
class GoogleOAuthConfig:
    client_id: str
    client_secret: str
    callback_url: str


@dataclass(frozen=True)
class GoogleTokens:
    access_token: str
    id_token: str
    expires_in: Optional[int] = None
    token_type: Optional[str] = None


@dataclass(frozen=True)
class GoogleUserProfile:
    sub: str
    email: Optional[str]
    email_verified: bool
    name: Optional[str] = None
    picture: Optional[str] = None


# -------------------------------------------------------------------
# Config
# -------------------------------------------------------------------
def is_google_oauth_enabled() -> bool:
    return (os.getenv("GOOGLE_OAUTH_ENABLED") or "").strip() == "true"


def is_google_signup_allowed() -> bool:
    return (os.getenv("GOOGLE_OAUTH_ALLOW_SIGNUP") or "").strip() != "false"


def should_auto_verify_google_email() -> bool:
    return (os.getenv("GOOGLE_OAUTH_AUTO_VERIFY_EMAIL") or "").strip() != "false"


def get_google_oauth_config() -> GoogleOAuthConfig:
    if not is_google_oauth_enabled():
        raise GoogleOAuthError("Google OAuth is not enabled")

    client_id = (os.getenv("GOOGLE_CLIENT_ID") or "").strip()
    client_secret = (os.getenv("GOOGLE_CLIENT_SECRET") or "").strip()
    callback_url = (os.getenv("GOOGLE_OAUTH_CALLBACK_URL") or "").strip()

    if not client_id or not client_secret or not callback_url:
        raise GoogleOAuthError(
            "Google OAuth is enabled but missing required configuration. "
            "Ensure GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, and GOOGLE_OAUTH_CALLBACK_URL are set."
        )
    return GoogleOAuthConfig(client_id=client_id, client_secret=client_secret, callback_url=callback_url)


# -------------------------------------------------------------------
# CSRF state
# -------------------------------------------------------------------
def generate_oauth_state() -> str:
    return generate_session_token()


def set_oauth_state_cookie(response: Response, state: str) -> None:
    response.set_cookie(
        key=OAUTH_STATE_COOKIE,
        value=state,
        max_age=OAUTH_STATE_EXPIRY_MINUTES * 60,
        httponly=True,
        secure=is_production(),
        samesite="lax",
        path="/",
    )


def clear_oauth_state_cookie(response: Response) -> None:
    response.delete_cookie(OAUTH_STATE_COOKIE, path="/")


def validate_oauth_state(request: Request, state: Optional[str]) -> bool:
    """
    Constant-time compare of the callback `state` with the cookie.
    Callers clear the cookie on whatever response they return.
    """
    stored = request.cookies.get(OAUTH_STATE_COOKIE)

    if not stored or not state:
        return False
    return secrets.compare_digest(stored, state)


# -------------------------------------------------------------------
# Google endpoints
# -------------------------------------------------------------------
def build_google_auth_url(state: str) -> str:
    config = get_google_oauth_config()
    params = {
        "client_id": config.client_id,
        "redirect_uri": config.callback_url,
        "response_type": "code",
        "scope": "openid email profile",
        "state": state,
        "access_type": "online",
        "prompt": "select_account",  # always show the account chooser
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def exchange_code_for_tokens(code: str) -> GoogleTokens:
    config = get_google_oauth_config()
    try:
        resp = httpx.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "redirect_uri": config.callback_url,
                "grant_type": "authorization_code",
                "code": code,
            },
            timeout=HTTP_TIMEOUT,
        )
    except httpx.HTTPError as e:
        raise GoogleOAuthError(f"Token exchange failed: {e}") from e

    if resp.status_code != 200:
        try:
            description = resp.json().get("error_description")
        except ValueError:
            description = None
        raise GoogleOAuthError(f"Token exchange failed: {description or resp.reason_phrase}")

    data = resp.json()
    if not data.get("id_token"):
        raise GoogleOAuthError("Token exchange returned no id_token")

    return GoogleTokens(
        access_token=data.get("access_token", ""),
        id_token=data["id_token"],
        expires_in=data.get("expires_in"),
        token_type=data.get("token_type"),
    )


def verify_google_id_token(id_token: str) -> GoogleUserProfile:
    """
    Validate an ID token through Google's tokeninfo endpoint and
    check audience, issuer and expiry ourselves.
    """
    config = get_google_oauth_config()
    try:
        resp = httpx.get(GOOGLE_TOKENINFO_URL, params={"id_token": id_token}, timeout=HTTP_TIMEOUT)
    except httpx.HTTPError as e:
        raise GoogleOAuthError(f"ID token verification failed: {e}") from e

    if resp.status_code != 200:
        raise GoogleOAuthError("Invalid ID token")

    data = resp.json()

    if data.get("aud") != config.client_id:
        raise GoogleOAuthError("ID token audience mismatch")
    if data.get("iss") not in GOOGLE_ISSUERS:
        raise GoogleOAuthError("ID token issuer invalid")

    exp = data.get("exp")
    if exp is not None and int(exp) < int(time.time()):
        raise GoogleOAuthError("ID token expired")

    if not data.get("sub"):
        raise GoogleOAuthError("ID token has no subject")

    email_verified = data.get("email_verified")
    return GoogleUserProfile(
        sub=str(data["sub"]),
        email=data.get("email"),
        email_verified=email_verified is True or email_verified == "true",
        name=data.get("name"),
        picture=data.get("picture"),
    )
