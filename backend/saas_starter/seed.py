# saas_starter/seed.py
"""
Idempotent startup seed.

  SUPERADMIN_EMAIL / SUPERADMIN_PASSWORD [/ SUPERADMIN_NAME]
      → one SUPERADMIN account, verified, PRO with an admin override
  SEED_DEMO_USERS=true (never in production)
      → user@example.com (PRO trial) and basic@example.com (BASIC), password "password123"

Run by hand with:  python -m saas_starter.seed
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .auth import hash_password
from .config import env_flag, env_str, is_production, load_env
from .database import SessionLocal, create_tables
from .logging_config import configure_logging
from .models import PLAN_BASIC, PLAN_PRO, ROLE_SUPERADMIN, ROLE_USER, STATUS_ACTIVE, User, utcnow
from .rate_limit import cleanup_expired_rate_limits
from .sessions import cleanup_expired_sessions

logger = logging.getLogger(__name__)

SUPERADMIN_TRIAL_DAYS = 365
DEMO_PASSWORD = "password123"

DEMO_USERS = (
    {"email": "user@example.com", "name": "Demo User", "plan": PLAN_PRO, "plan_override": False, "trial_days": 14},
    {"email": "basic@example.com", "name": "Basic User", "plan": PLAN_BASIC, "plan_override": True, "trial_days": -30},
)


def seed_superadmin(db: Session) -> Optional[User]:
    email = env_str("SUPERADMIN_EMAIL").lower()
    password = env_str("SUPERADMIN_PASSWORD")
    if not email or not password:
        logger.info("SUPERADMIN_EMAIL and SUPERADMIN_PASSWORD not set, skipping superadmin creation")
        return None

    existing = db.scalar(select(User).where(User.email == email))
    if existing:
        logger.info("Superadmin already exists", extra={"email": email})
        return existing

    now = utcnow()
    admin = User(
        email=email,
        name=env_str("SUPERADMIN_NAME", "Super Admin"),
        password_hash=hash_password(password),
        role=ROLE_SUPERADMIN,
        status=STATUS_ACTIVE,
        plan=PLAN_PRO,
        plan_override=True,
        trial_end_date=now + timedelta(days=SUPERADMIN_TRIAL_DAYS),
        email_verified=now,
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)

    logger.info("Superadmin created", extra={"email": email})
    return admin


def seed_demo_users(db: Session) -> list[User]:
    if is_production() or not env_flag("SEED_DEMO_USERS"):
        return []

    created: list[User] = []
    now = utcnow()
    for demo in DEMO_USERS:
        if db.scalar(select(User).where(User.email == demo["email"])):
            continue
        user = User(
            email=demo["email"],
            name=demo["name"],
            password_hash=hash_password(DEMO_PASSWORD),
            role=ROLE_USER,
            status=STATUS_ACTIVE,
            plan=demo["plan"],
            plan_override=demo["plan_override"],
            trial_end_date=now + timedelta(days=demo["trial_days"]),
            email_verified=now,
        )
        db.add(user)
        created.append(user)

    db.commit()
    for user in created:
        logger.info("Demo user created", extra={"email": user.email})
    return created


def run_seed(db: Session) -> None:
    seed_superadmin(db)
    seed_demo_users(db)
    cleanup_expired_sessions(db)
    cleanup_expired_rate_limits(db)


def main() -> None:
    load_env()
    configure_logging()
    create_tables()
    db = SessionLocal()
    try:
        run_seed(db)
    finally:
        db.close()
    logger.info("Database seed completed")


if __name__ == "__main__":
    main()
