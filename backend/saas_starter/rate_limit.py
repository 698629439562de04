# saas_starter/rate_limit.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from .config import env_int
from .models import RateLimitEntry, utcnow

logger = logging.getLogger(__name__)

ACTION_LOGIN = "login"
ACTION_SIGNUP = "signup"
ACTION_PASSWORD_RESET = "password_reset"
ACTION_EMAIL_VERIFICATION = "email_verification"
ACTION_GOOGLE_OAUTH = "google_oauth"

# action -> (env prefix, default max attempts, default window minutes)
_LIMITS: dict[str, tuple[str, int, int]] = {
    ACTION_LOGIN: ("RATE_LIMIT_LOGIN", 5, 15),
    ACTION_SIGNUP: ("RATE_LIMIT_SIGNUP", 3, 60),
    ACTION_PASSWORD_RESET: ("RATE_LIMIT_PASSWORD_RESET", 3, 60),
    ACTION_EMAIL_VERIFICATION: ("RATE_LIMIT_EMAIL_VERIFICATION", 5, 60),
}


@dataclass(frozen=True)
class RateLimitConfig:
    max_attempts: int
    window_minutes: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime


def get_rate_limit_config(action: str) -> Optional[RateLimitConfig]:
    limits = _LIMITS.get(action)
    if not limits:
        return None
    prefix, max_default, window_default = limits
    return RateLimitConfig(
        max_attempts=env_int(f"{prefix}_MAX", max_default),
        window_minutes=env_int(f"{prefix}_WINDOW_MINUTES", window_default),
    )


def _get_entry(db: Session, identifier: str, action: str) -> Optional[RateLimitEntry]:
    return db.scalar(
        select(RateLimitEntry).where(
            RateLimitEntry.identifier == identifier,
            RateLimitEntry.action == action,
        )
    )


def check_rate_limit(db: Session, identifier: str, action: str) -> RateLimitResult:
    """
    Read-only check. Unconfigured actions are always allowed.
    A missing entry or an elapsed window means the full quota is available.
    """
    config = get_rate_limit_config(action)
    now = utcnow()

    if not config:
        return RateLimitResult(allowed=True, remaining=999, reset_at=now)

    window_end = now + timedelta(minutes=config.window_minutes)
    entry = _get_entry(db, identifier, action)

    if not entry or entry.expires_at < now:
        return RateLimitResult(allowed=True, remaining=config.max_attempts, reset_at=window_end)

    remaining = max(0, config.max_attempts - entry.count)
    return RateLimitResult(allowed=remaining > 0, remaining=remaining, reset_at=entry.expires_at)


def increment_rate_limit(db: Session, identifier: str, action: str) -> None:
    config = get_rate_limit_config(action)
    if not config:
        return

    now = utcnow()
    window_end = now + timedelta(minutes=config.window_minutes)
    entry = _get_entry(db, identifier, action)

    if not entry:
        db.add(
            RateLimitEntry(
                identifier=identifier,
                action=action,
                count=1,
                window_start=now,
                expires_at=window_end,
            )
        )
    elif entry.expires_at < now:
        entry.count = 1
        entry.window_start = now
        entry.expires_at = window_end
    else:
        entry.count += 1

    db.commit()


def reset_rate_limit(db: Session, identifier: str, action: str) -> None:
    db.execute(
        delete(RateLimitEntry).where(
            RateLimitEntry.identifier == identifier,
            RateLimitEntry.action == action,
        )
    )
    db.commit()


def cleanup_expired_rate_limits(db: Session) -> int:
    result = db.execute(delete(RateLimitEntry).where(RateLimitEntry.expires_at < utcnow()))
    db.commit()
    count = result.rowcount or 0
    if count:
        logger.info("Removed %s expired rate limit entries", count)
    return count


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    return {
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": result.reset_at.isoformat() + "Z",
    }
