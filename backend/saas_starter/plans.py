# saas_starter/plans.py
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from .audit import AuditActions, create_audit_log
from .config import trial_duration_days
from .models import PLAN_BASIC, PLAN_PRO, User, utcnow

logger = logging.getLogger(__name__)

DEFAULT_RESET_TRIAL_DAYS = 14


# -------------------------------------------------------------------
# Trial
# -------------------------------------------------------------------
@dataclass(frozen=True)
class TrialStatus:
    is_on_trial: bool
    is_expired: bool
    days_remaining: int
    end_date: datetime


def calculate_trial_end_date(days: Optional[int] = None, start: Optional[datetime] = None) -> datetime:
    return (start or utcnow()) + timedelta(days=days if days is not None else trial_duration_days())


def is_trial_expired(trial_end_date: datetime) -> bool:
    return utcnow() > trial_end_date


def is_on_trial(plan: str, trial_end_date: datetime, plan_override: bool) -> bool:
    """
    A user is on trial while PRO was granted by the trial itself:
    no admin override, plan PRO, end date still ahead.
    """
    if plan_override:
        return False
    return plan == PLAN_PRO and not is_trial_expired(trial_end_date)


def get_trial_days_remaining(plan: str, trial_end_date: datetime, plan_override: bool) -> int:
    if not is_on_trial(plan, trial_end_date, plan_override):
        return 0
    remaining = (trial_end_date - utcnow()).total_seconds()
    return max(0, math.ceil(remaining / 86400))


def get_trial_status(plan: str, trial_end_date: datetime, plan_override: bool) -> TrialStatus:
    return TrialStatus(
        is_on_trial=is_on_trial(plan, trial_end_date, plan_override),
        is_expired=is_trial_expired(trial_end_date),
        days_remaining=get_trial_days_remaining(plan, trial_end_date, plan_override),
        end_date=trial_end_date,
    )


def trial_status_for(user: User) -> TrialStatus:
    return get_trial_status(user.plan, user.trial_end_date, user.plan_override)


# -------------------------------------------------------------------
# Downgrade
# -------------------------------------------------------------------
def should_downgrade_user(user: User) -> bool:
    return user.plan == PLAN_PRO and not user.plan_override and is_trial_expired(user.trial_end_date)


def downgrade_user(
    db: Session,
    user: User,
    actor_id: Optional[int] = None,
    reason: str = "trial_expired",
) -> User:
    previous_plan = user.plan
    user.plan = PLAN_BASIC
    user.plan_changed_at = utcnow()
    db.commit()
    db.refresh(user)

    create_audit_log(
        db,
        action=AuditActions.USER_PLAN_AUTO_DOWNGRADED,
        user_id=user.id,
        actor_id=actor_id,
        metadata={"previousPlan": previous_plan, "newPlan": PLAN_BASIC, "reason": reason},
    )
    logger.info("Downgraded user to BASIC", extra={"user_id": user.id, "reason": reason})
    return user


def downgrade_if_trial_expired(db: Session, user: User) -> bool:
    """
    Lazy trial expiry: called whenever a user is loaded for a request.
    Returns True when a downgrade happened.
    """
    if not should_downgrade_user(user):
        return False
    downgrade_user(db, user)
    return True


# -------------------------------------------------------------------
# Upgrade / admin plan changes
# -------------------------------------------------------------------
def upgrade_plan(
    db: Session,
    user: User,
    new_plan: str,
    actor_id: Optional[int] = None,
    override: bool = True,
) -> User:
    old_plan = user.plan
    user.plan = new_plan
    user.plan_override = override
    user.plan_changed_at = utcnow()
    db.commit()
    db.refresh(user)

    create_audit_log(
        db,
        action=AuditActions.USER_PLAN_CHANGED,
        user_id=user.id,
        actor_id=actor_id,
        metadata={"oldPlan": old_plan, "newPlan": new_plan, "override": override},
    )
    return user


def extend_trial(db: Session, user: User, days: int, actor_id: Optional[int] = None) -> User:
    """
    Push the trial end out by `days`, counted from today when it already lapsed.
    The user goes back to PRO and loses any override so expiry applies again.
    """
    old_end = user.trial_end_date
    new_end = max(old_end, utcnow()) + timedelta(days=days)

    user.trial_end_date = new_end
    user.plan = PLAN_PRO
    user.plan_override = False
    user.plan_changed_at = utcnow()
    db.commit()
    db.refresh(user)

    create_audit_log(
        db,
        action=AuditActions.USER_TRIAL_EXTENDED,
        user_id=user.id,
        actor_id=actor_id,
        metadata={
            "oldTrialEnd": old_end.isoformat(),
            "newTrialEnd": new_end.isoformat(),
            "daysAdded": days,
        },
    )
    return user


def reset_trial(
    db: Session,
    user: User,
    actor_id: Optional[int] = None,
    days: int = DEFAULT_RESET_TRIAL_DAYS,
) -> User:
    old_end = user.trial_end_date
    now = utcnow()

    user.trial_start_date = now
    user.trial_end_date = calculate_trial_end_date(days, start=now)
    user.plan = PLAN_PRO
    user.plan_override = False
    user.plan_changed_at = now
    db.commit()
    db.refresh(user)

    create_audit_log(
        db,
        action=AuditActions.USER_TRIAL_RESET,
        user_id=user.id,
        actor_id=actor_id,
        metadata={
            "oldTrialEnd": old_end.isoformat(),
            "newTrialEnd": user.trial_end_date.isoformat(),
            "daysAdded": days,
        },
    )
    return user
