# saas_starter/routers/referral.py
"""
Public referral entry point: APP_URL/<slug>.

Registered LAST in main.py; the catch-all path would otherwise shadow
other single-segment routes.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from saas_starter import referrals
from saas_starter.database import get_db

router = APIRouter(tags=["referral"])


@router.get("/{slug}", include_in_schema=False)
def follow_referral_link(slug: str, db: Session = Depends(get_db)):
    resp = RedirectResponse(url="/", status_code=302)

    link = referrals.get_link_by_slug(db, slug)
    # Unknown or disabled links still land on the home page, just without the cookie
    if link and link.is_active:
        referrals.set_referral_cookie(resp, link)
    return resp
