# saas_starter/routers/analytics.py
from __future__ import annotations

import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from jose import jwt

from saas_starter import auth
from saas_starter.config import env_int, env_str
from saas_starter.models import PLAN_PRO, User

router = APIRouter(prefix="/api/metabase", tags=["analytics"])

ALGORITHM = "HS256"
EMBED_EXPIRY_SECONDS = 10 * 60
EMBED_FRAGMENT = "#background=false&bordered=false&titled=false"


def dashboard_for_plan(plan: str) -> int:
    if plan == PLAN_PRO:
        return env_int("METABASE_PRO_DASHBOARD_ID", 2)
    return env_int("METABASE_BASIC_DASHBOARD_ID", 3)


def sign_embed_token(dashboard_id: int, secret: str) -> str:
    payload = {
        "resource": {"dashboard": dashboard_id},
        "params": {},
        "exp": int(time.time()) + EMBED_EXPIRY_SECONDS,
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


@router.get("/embed")
def metabase_embed(user: User = Depends(auth.requires_auth)):
    secret = env_str("METABASE_SECRET_KEY")
    if not secret:
        return JSONResponse(status_code=500, content={"error": "Metabase secret key not configured"})

    site_url = env_str("METABASE_SITE_URL", "http://localhost:3001").rstrip("/")
    token = sign_embed_token(dashboard_for_plan(user.plan), secret)

    return {
        "iframe_url": f"{site_url}/embed/dashboard/{token}{EMBED_FRAGMENT}",
        "plan": user.plan,
    }
