# saas_starter/config.py
from __future__ import annotations

import os

from dotenv import find_dotenv, load_dotenv

_TRUTHY = ("1", "true", "yes", "on")

DEFAULT_APP_URL = "http://localhost:3000"


def load_env() -> str:
    """
    Load .env ONCE (call at the top of main, before any getenv use).
    Real environment variables win over the file.
    """
    path = find_dotenv(usecwd=True)
    load_dotenv(path, override=False)
    return path


# -------------------------------------------------------------------
# Raw readers (always read at call time so tests can monkeypatch env)
# -------------------------------------------------------------------
def env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_flag(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in _TRUTHY


# -------------------------------------------------------------------
# Named settings
# -------------------------------------------------------------------
def is_production() -> bool:
    return env_str("APP_ENV", "development").lower() == "production"


def app_url() -> str:
    """
    Base URL used in emailed links, referral URLs and OAuth redirects.
    In production set APP_URL, e.g. https://yourdomain.com
    """
    return env_str("APP_URL").rstrip("/") or DEFAULT_APP_URL


def database_url() -> str:
    return env_str("DATABASE_URL", "sqlite:///./saas_starter.db")


def bcrypt_rounds() -> int:
    return env_int("BCRYPT_ROUNDS", 12)


def session_expiry_hours() -> int:
    return env_int("SESSION_EXPIRY_HOURS", 24)


def email_verification_expiry_hours() -> int:
    return env_int("EMAIL_VERIFICATION_TOKEN_EXPIRY_HOURS", 24)


def password_reset_expiry_hours() -> int:
    return env_int("PASSWORD_RESET_TOKEN_EXPIRY_HOURS", 1)


def trial_duration_days() -> int:
    return env_int("TRIAL_DURATION_DAYS", 14)
