# saas_starter/audit.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import AuditLog

logger = logging.getLogger(__name__)


class AuditActions:
    # Authentication
    USER_SIGNUP = "user.signup"
    USER_LOGIN_SUCCESS = "user.login.success"
    USER_LOGIN_FAILURE = "user.login.failure"
    USER_LOGOUT = "user.logout"

    # Email / password
    USER_EMAIL_VERIFIED = "user.email.verified"
    USER_EMAIL_VERIFICATION_SENT = "user.email.verification_sent"
    USER_PASSWORD_RESET_REQUESTED = "user.password.reset_requested"
    USER_PASSWORD_RESET_COMPLETED = "user.password.reset_completed"
    USER_PASSWORD_CHANGED = "user.password.changed"
    USER_EMAIL_CHANGE_REQUESTED = "user.email.change_requested"
    USER_EMAIL_CHANGED = "user.email.changed"

    # Profile / admin
    USER_PROFILE_UPDATED = "user.profile.updated"
    USER_ROLE_CHANGED = "user.role.changed"
    USER_STATUS_CHANGED = "user.status.changed"
    USER_PLAN_CHANGED = "user.plan.changed"
    USER_TRIAL_EXTENDED = "user.trial.extended"
    USER_TRIAL_RESET = "user.trial.reset"
    USER_DELETED = "user.deleted"
    USER_PLAN_AUTO_DOWNGRADED = "user.plan.auto_downgraded"

    # Referral links
    REFERRAL_LINK_CREATED = "referral_link.created"
    REFERRAL_LINK_UPDATED = "referral_link.updated"
    REFERRAL_LINK_ENABLED = "referral_link.enabled"
    REFERRAL_LINK_DISABLED = "referral_link.disabled"

    # OAuth
    USER_OAUTH_LOGIN = "user.oauth.login"
    USER_OAUTH_SIGNUP = "user.oauth.signup"
    USER_OAUTH_LINKED = "user.oauth.linked"
    USER_OAUTH_LOGIN_BLOCKED = "user.oauth.login_blocked"


def create_audit_log(
    db: Session,
    *,
    action: str,
    user_id: Optional[int] = None,
    actor_id: Optional[int] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[Any] = None,
    metadata: Optional[dict] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Optional[AuditLog]:
    """
    Append an audit record.
    NEVER raises: a failed write is logged and the caller carries on.
    """
    entry = AuditLog(
        user_id=user_id,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        details=metadata,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    try:
        db.add(entry)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to create audit log", extra={"action": action, "user_id": user_id, "error": str(e)})
        return None

    logger.info("Audit: %s", action, extra={"user_id": user_id, "actor_id": actor_id})
    return entry


def get_user_audit_logs(db: Session, user_id: int, limit: int = 50, offset: int = 0) -> list[AuditLog]:
    stmt = (
        select(AuditLog)
        .where(AuditLog.user_id == user_id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(db.scalars(stmt).all())


def _filtered(
    stmt,
    user_id: Optional[int] = None,
    action: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
):
    if user_id is not None:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLog.action.contains(action))
    if start_date:
        stmt = stmt.where(AuditLog.created_at >= start_date)
    if end_date:
        stmt = stmt.where(AuditLog.created_at <= end_date)
    return stmt


def get_audit_logs(
    db: Session,
    user_id: Optional[int] = None,
    action: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[AuditLog]:
    stmt = _filtered(select(AuditLog), user_id, action, start_date, end_date)
    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(offset).limit(limit)
    return list(db.scalars(stmt).all())


def count_audit_logs(
    db: Session,
    user_id: Optional[int] = None,
    action: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> int:
    stmt = _filtered(select(func.count(AuditLog.id)), user_id, action, start_date, end_date)
    return db.scalar(stmt) or 0
