# saas_starter/routers/admin_users.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from saas_starter import audit, auth, plans, schemas, sessions
from saas_starter.audit import AuditActions, create_audit_log
from saas_starter.database import get_db
from saas_starter.errors import NotFoundError, ValidationError
from saas_starter.models import AuditLog, ROLE_SUPERADMIN, STATUS_DEACTIVATED, User

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(auth.requires_superadmin)],
)

DEFAULT_EXTEND_DAYS = 14


def _get_user_or_404(db: Session, user_id: int) -> User:
    u = db.get(User, user_id)
    if not u:
        raise NotFoundError("User not found")
    return u


def audit_log_out(log: AuditLog, include_user: bool = False) -> dict:
    out = schemas.AuditLogOut(
        id=log.id,
        user_id=log.user_id,
        actor_id=log.actor_id,
        action=log.action,
        entity_type=log.entity_type,
        entity_id=log.entity_id,
        metadata=log.details,
        ip_address=log.ip_address,
        user_agent=log.user_agent,
        created_at=log.created_at,
    ).model_dump()
    if include_user:
        out["user"] = {"id": log.user.id, "email": log.user.email, "name": log.user.name} if log.user else None
    return out


# -------------------------------------------------------------------
# Users
# -------------------------------------------------------------------
@router.get("/users")
def list_users(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    search: str = "",
    role: Optional[schemas.Role] = None,
    status: Optional[schemas.Status] = None,
    plan: Optional[schemas.Plan] = None,
    db: Session = Depends(get_db),
):
    filters = []
    if search.strip():
        term = f"%{search.strip()}%"
        filters.append(or_(User.email.ilike(term), User.name.ilike(term)))
    if role:
        filters.append(User.role == role)
    if status:
        filters.append(User.status == status)
    if plan:
        filters.append(User.plan == plan)

    stmt = (
        select(User)
        .where(*filters)
        .order_by(User.created_at.desc(), User.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    users = db.scalars(stmt).all()
    total = db.scalar(select(func.count(User.id)).where(*filters)) or 0

    return {
        "users": [schemas.UserSummaryOut.model_validate(u).model_dump() for u in users],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/users/{user_id}")
def get_user(user_id: int, db: Session = Depends(get_db)):
    u = _get_user_or_404(db, user_id)
    return {
        "user": schemas.UserDetailOut.model_validate(u).model_dump(),
        "trial": schemas.TrialOut.model_validate(plans.trial_status_for(u)).model_dump(),
    }


@router.patch("/users/{user_id}", response_model=schemas.MessageOut)
def update_user(
    user_id: int,
    payload: schemas.AdminUserActionIn,
    db: Session = Depends(get_db),
    admin: User = Depends(auth.requires_superadmin),
):
    target = _get_user_or_404(db, user_id)

    if payload.action == "changeRole":
        if not payload.role:
            raise ValidationError("Role is required", {"role": ["Role is required"]})
        if target.id == admin.id and payload.role != ROLE_SUPERADMIN:
            raise ValidationError("You cannot remove your own admin role")

        old_role = target.role
        target.role = payload.role
        db.commit()
        create_audit_log(
            db,
            action=AuditActions.USER_ROLE_CHANGED,
            user_id=target.id,
            actor_id=admin.id,
            metadata={"oldRole": old_role, "newRole": payload.role, "adminId": admin.id},
        )

    elif payload.action == "changeStatus":
        if not payload.status:
            raise ValidationError("Status is required", {"status": ["Status is required"]})
        if target.id == admin.id and payload.status == STATUS_DEACTIVATED:
            raise ValidationError("You cannot deactivate your own account")

        old_status = target.status
        target.status = payload.status
        db.commit()
        if payload.status == STATUS_DEACTIVATED:
            sessions.destroy_all_user_sessions(db, target.id)
        create_audit_log(
            db,
            action=AuditActions.USER_STATUS_CHANGED,
            user_id=target.id,
            actor_id=admin.id,
            metadata={"oldStatus": old_status, "newStatus": payload.status, "adminId": admin.id},
        )

    elif payload.action == "changePlan":
        if not payload.plan:
            raise ValidationError("Plan is required", {"plan": ["Plan is required"]})
        plans.upgrade_plan(db, target, payload.plan, actor_id=admin.id, override=True)

    else:
        plans.extend_trial(db, target, payload.days or DEFAULT_EXTEND_DAYS, actor_id=admin.id)

    return {"message": "Action completed successfully"}


@router.get("/users/{user_id}/audit-logs")
def get_user_audit_logs(user_id: int, db: Session = Depends(get_db)):
    _get_user_or_404(db, user_id)
    logs = audit.get_user_audit_logs(db, user_id, limit=50)
    return {"logs": [audit_log_out(log) for log in logs]}


# -------------------------------------------------------------------
# Audit log
# -------------------------------------------------------------------
@router.get("/audit-logs")
def list_audit_logs(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    action: Optional[str] = None,
    user_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    logs = audit.get_audit_logs(db, user_id=user_id, action=action, limit=limit, offset=(page - 1) * limit)
    total = audit.count_audit_logs(db, user_id=user_id, action=action)

    return {
        "logs": [audit_log_out(log, include_user=True) for log in logs],
        "total": total,
        "page": page,
        "limit": limit,
    }
