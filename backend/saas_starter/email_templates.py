# saas_starter/email_templates.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

APP_NAME = "SaaS Starter"


@dataclass(frozen=True)
class EmailParts:
    subject: str
    body: str


def _clean(s: Optional[str]) -> str:
    return (s or "").strip()


def _greeting(name: Optional[str]) -> str:
    return f"Hi {_clean(name) or 'there'},\n\n"


def _footer() -> str:
    return (
        "\n\n"
        "Regards,\n"
        f"The {APP_NAME} team\n"
    )


def verify_email(name: Optional[str], verification_url: str, expiry_hours: int = 24) -> EmailParts:
    body = (
        _greeting(name)
        + "Thanks for signing up! Please verify your email address by visiting the link below:\n\n"
        f"{verification_url}\n\n"
        f"This link will expire in {expiry_hours} hours.\n"
        "If you didn't create an account, you can safely ignore this email."
        + _footer()
    )
    return EmailParts(subject="Verify your email address", body=body)


def password_reset(name: Optional[str], reset_url: str, expiry_hours: int = 1) -> EmailParts:
    unit = "hour" if expiry_hours == 1 else "hours"
    body = (
        _greeting(name)
        + "We received a request to reset your password. Visit the link below to choose a new one:\n\n"
        f"{reset_url}\n\n"
        f"This link will expire in {expiry_hours} {unit}.\n"
        "If you didn't request a password reset, you can safely ignore this email. "
        "Your password will not change."
        + _footer()
    )
    return EmailParts(subject="Reset your password", body=body)


def email_change(name: Optional[str], new_email: str, confirm_url: str) -> EmailParts:
    body = (
        _greeting(name)
        + f"You asked to change the email address on your {APP_NAME} account to {new_email}.\n"
        "Confirm the change by visiting the link below:\n\n"
        f"{confirm_url}\n\n"
        "This link will expire in 24 hours.\n"
        "If you didn't request this change, ignore this email and your address will stay the same."
        + _footer()
    )
    return EmailParts(subject="Confirm your new email address", body=body)
