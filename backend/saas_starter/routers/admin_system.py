# saas_starter/routers/admin_system.py
from __future__ import annotations

import logging
import os
import sys
import time
from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from saas_starter import auth, schemas
from saas_starter.database import get_db
from saas_starter.models import PLAN_BASIC, PLAN_PRO, STATUS_ACTIVE, Session as UserSession, User, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(auth.requires_superadmin)],
)

STARTED_AT = time.monotonic()

DEGRADED_DB_LATENCY_MS = 500
DEGRADED_MEMORY_PERCENT = 90


def _count(db: Session, *filters) -> int:
    return db.scalar(select(func.count(User.id)).where(*filters)) or 0


@router.get("/stats", response_model=schemas.StatsOut)
def stats(db: Session = Depends(get_db)):
    now = utcnow()
    return {
        "total_users": _count(db),
        "active_users": _count(db, User.status == STATUS_ACTIVE),
        "pro_users": _count(db, User.plan == PLAN_PRO),
        "basic_users": _count(db, User.plan == PLAN_BASIC),
        "users_on_trial": _count(
            db,
            User.plan == PLAN_PRO,
            User.plan_override.is_(False),
            User.trial_end_date > now,
        ),
        "recent_signups": _count(db, User.created_at >= now - timedelta(days=7)),
    }


def memory_usage() -> dict:
    """
    Peak resident set size of this process against physical memory.
    ru_maxrss is KiB on Linux and bytes on macOS. Windows has neither
    getrusage nor sysconf, so usage is reported as zero there.
    """
    if sys.platform == "win32":
        return {"used": 0, "total": 0, "percentage": 0.0}

    import resource

    rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    used = rss if sys.platform == "darwin" else rss * 1024
    total = os.sysconf("SC_PAGE_SIZE") * os.sysconf("SC_PHYS_PAGES")
    return {
        "used": used,
        "total": total,
        "percentage": round(used / total * 100, 2) if total else 0.0,
    }


@router.get("/health")
def health(db: Session = Depends(get_db)):
    started = time.perf_counter()
    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
        latency_ms = round((time.perf_counter() - started) * 1000, 2)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Health check database query failed", extra={"error": str(e)})
        db_status = "disconnected"
        latency_ms = None

    sessions = {"active": 0, "expired": 0}
    if db_status == "connected":
        now = utcnow()
        sessions["active"] = db.scalar(select(func.count(UserSession.id)).where(UserSession.expires_at > now)) or 0
        sessions["expired"] = db.scalar(select(func.count(UserSession.id)).where(UserSession.expires_at <= now)) or 0

    memory = memory_usage()

    status = "healthy"
    if db_status == "disconnected":
        status = "unhealthy"
    elif latency_ms > DEGRADED_DB_LATENCY_MS or memory["percentage"] > DEGRADED_MEMORY_PERCENT:
        status = "degraded"

    return {
        "status": status,
        "database": {"status": db_status, "latency_ms": latency_ms},
        "sessions": sessions,
        "memory": memory,
        "uptime_seconds": round(time.monotonic() - STARTED_AT, 1),
    }
