# saas_starter/auth.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Request
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from . import plans
from .config import bcrypt_rounds
from .database import get_db
from .errors import AuthenticationError, AuthorizationError
from .models import ROLE_SUPERADMIN, STATUS_DEACTIVATED, User
from .sessions import SESSION_COOKIE, get_session

logger = logging.getLogger(__name__)

PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_LENGTH = 128


# -------------------------------------------------------------------
# Password hashing
# -------------------------------------------------------------------
@lru_cache(maxsize=4)
def _pwd_context(rounds: int) -> CryptContext:
    return CryptContext(
        schemes=["bcrypt_sha256", "bcrypt"],
        deprecated="auto",
        bcrypt_sha256__rounds=rounds,
        bcrypt__rounds=rounds,
    )


def pwd_context() -> CryptContext:
    return _pwd_context(bcrypt_rounds())


def hash_password(password: str) -> str:
    return pwd_context().hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    try:
        return pwd_context().verify(plain_password, hashed_password)
    except ValueError:
        logger.warning("Stored password hash could not be identified")
        return False


def dummy_verify() -> None:
    """
    Burn the same time a real verify would, for logins against unknown emails.
    """
    pwd_context().dummy_verify()


@dataclass(frozen=True)
class PasswordCheck:
    valid: bool
    errors: list[str] = field(default_factory=list)


def validate_password_strength(password: str) -> PasswordCheck:
    errors: list[str] = []
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(password) > PASSWORD_MAX_LENGTH:
        errors.append(f"Password must be less than {PASSWORD_MAX_LENGTH} characters")
    return PasswordCheck(valid=not errors, errors=errors)


# -------------------------------------------------------------------
# Request helpers
# -------------------------------------------------------------------
@dataclass(frozen=True)
class RequestMetadata:
    ip_address: Optional[str]
    user_agent: Optional[str]


def get_request_metadata(request: Request) -> RequestMetadata:
    """
    Client IP: first hop of X-Forwarded-For, then X-Real-IP.
    Falls back to the socket peer (useful behind no proxy at all).
    """
    forwarded = (request.headers.get("x-forwarded-for") or "").strip()
    ip = forwarded.split(",")[0].strip() if forwarded else None
    if not ip:
        ip = (request.headers.get("x-real-ip") or "").strip() or None
    if not ip and request.client:
        ip = request.client.host

    return RequestMetadata(ip_address=ip, user_agent=request.headers.get("user-agent"))


# -------------------------------------------------------------------
# Dependencies
# -------------------------------------------------------------------
def get_current_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    """
    Cookie session → User, or None when anonymous.
    Users whose trial lapsed are downgraded here, on first sight.
    """
    sess = get_session(db, request.cookies.get(SESSION_COOKIE))
    if not sess:
        return None

    user = sess.user
    plans.downgrade_if_trial_expired(db, user)
    return user


def requires_auth(user: Optional[User] = Depends(get_current_user)) -> User:
    if not user:
        raise AuthenticationError()
    if user.status == STATUS_DEACTIVATED:
        raise AuthenticationError("Account has been deactivated")
    return user


def requires_verified_email(user: User = Depends(requires_auth)) -> User:
    if not user.email_verified:
        raise AuthorizationError("Email verification required")
    return user


def requires_superadmin(user: User = Depends(requires_verified_email)) -> User:
    if user.role != ROLE_SUPERADMIN:
        raise AuthorizationError("Admin access required")
    return user
