# saas_starter/tokens.py
from __future__ import annotations

import secrets
from datetime import datetime, timedelta

from .models import utcnow

SESSION_TOKEN_LENGTH = 64
SHORT_TOKEN_LENGTH = 32


def _random_token(length: int) -> str:
    # token_urlsafe yields ~1.3 chars per byte, so slicing gives an exact length
    return secrets.token_urlsafe(length)[:length]


def generate_session_token() -> str:
    return _random_token(SESSION_TOKEN_LENGTH)


def generate_verification_token() -> str:
    return _random_token(SHORT_TOKEN_LENGTH)


def generate_password_reset_token() -> str:
    return _random_token(SHORT_TOKEN_LENGTH)


def generate_email_change_token() -> str:
    return _random_token(SHORT_TOKEN_LENGTH)


def get_token_expiry(hours: int) -> datetime:
    return utcnow() + timedelta(hours=hours)


def is_token_expired(expires_at: datetime) -> bool:
    return utcnow() > expires_at
