# saas_starter/referrals.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fastapi import Response
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .config import app_url, is_production
from .models import SOURCE_NORMAL, SOURCE_REFERRAL, ReferralLink, User
from .plans import calculate_trial_end_date

REFERRAL_COOKIE = "ap_ref"
# Copy of ap_ref that survives the round trip to Google
OAUTH_REFERRAL_COOKIE = "oauth_ref"
REFERRAL_COOKIE_MAX_AGE = 30 * 24 * 60 * 60


@dataclass(frozen=True)
class TrialTerms:
    trial_end_date: datetime
    referrer_id: Optional[int]
    registration_source: str
    trial_days_granted: Optional[int]


def normalize_slug(slug: str) -> str:
    return (slug or "").strip().lower()


def referral_url(link: ReferralLink) -> str:
    return f"{app_url()}/{link.slug}"


def get_link_by_slug(db: Session, slug: str) -> Optional[ReferralLink]:
    return db.scalar(select(ReferralLink).where(ReferralLink.slug == normalize_slug(slug)))


def resolve_referral_cookie(db: Session, value: Optional[str]) -> Optional[ReferralLink]:
    """
    Cookie value is the referral link id. Unknown, malformed or disabled → None.
    """
    if not value:
        return None
    try:
        link_id = int(value)
    except ValueError:
        return None

    link = db.get(ReferralLink, link_id)
    if not link or not link.is_active:
        return None
    return link


def trial_terms(link: Optional[ReferralLink]) -> TrialTerms:
    if link:
        return TrialTerms(
            trial_end_date=calculate_trial_end_date(link.trial_days),
            referrer_id=link.id,
            registration_source=SOURCE_REFERRAL,
            trial_days_granted=link.trial_days,
        )
    return TrialTerms(
        trial_end_date=calculate_trial_end_date(),
        referrer_id=None,
        registration_source=SOURCE_NORMAL,
        trial_days_granted=None,
    )


def set_referral_cookie(
    response: Response,
    link: ReferralLink,
    cookie_name: str = REFERRAL_COOKIE,
    max_age: int = REFERRAL_COOKIE_MAX_AGE,
) -> None:
    response.set_cookie(
        key=cookie_name,
        value=str(link.id),
        max_age=max_age,
        httponly=True,
        secure=is_production(),
        samesite="lax",
        path="/",
    )


def clear_referral_cookies(response: Response) -> None:
    response.delete_cookie(REFERRAL_COOKIE, path="/")
    response.delete_cookie(OAUTH_REFERRAL_COOKIE, path="/")


# -------------------------------------------------------------------
# Admin listing helpers
# -------------------------------------------------------------------
def signup_stats(db: Session, link_id: int) -> tuple[int, Optional[datetime]]:
    count, last = db.execute(
        select(func.count(User.id), func.max(User.created_at)).where(User.referrer_id == link_id)
    ).one()
    return int(count or 0), last


def link_out(db: Session, link: ReferralLink) -> dict:
    count, last = signup_stats(db, link.id)
    creator = link.created_by
    return {
        "id": link.id,
        "slug": link.slug,
        "display_name": link.display_name,
        "trial_days": link.trial_days,
        "is_active": link.is_active,
        "created_at": link.created_at,
        "updated_at": link.updated_at,
        "created_by": (
            {"id": creator.id, "name": creator.name, "email": creator.email} if creator else None
        ),
        "signup_count": count,
        "last_signup_at": last,
        "url": referral_url(link),
    }
