# saas_starter/routers/admin_referrals.py
from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from saas_starter import auth, referrals, schemas
from saas_starter.audit import AuditActions, create_audit_log
from saas_starter.database import get_db
from saas_starter.errors import NotFoundError, ValidationError
from saas_starter.models import ReferralLink, User

router = APIRouter(
    prefix="/api/admin/referral-links",
    tags=["admin"],
    dependencies=[Depends(auth.requires_superadmin)],
)

ENTITY_TYPE = "referral_link"

_SORT_COLUMNS = {
    "created_at": ReferralLink.created_at,
    "slug": ReferralLink.slug,
    "trial_days": ReferralLink.trial_days,
}


def _snapshot(link: ReferralLink) -> dict:
    return {
        "slug": link.slug,
        "displayName": link.display_name,
        "trialDays": link.trial_days,
        "isActive": link.is_active,
    }


def _get_link_or_404(db: Session, link_id: int) -> ReferralLink:
    link = db.get(ReferralLink, link_id)
    if not link:
        raise NotFoundError("Referral link not found")
    return link


def _slug_taken(db: Session, slug: str) -> None:
    if referrals.get_link_by_slug(db, slug):
        raise ValidationError(
            "A referral link with this slug already exists",
            {"slug": ["This slug is already in use"]},
        )


@router.get("")
def list_referral_links(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    search: str = "",
    status: Optional[Literal["active", "inactive"]] = None,
    sort_by: str = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    db: Session = Depends(get_db),
):
    filters = []
    if search.strip():
        term = f"%{search.strip()}%"
        filters.append(or_(ReferralLink.slug.ilike(term), ReferralLink.display_name.ilike(term)))
    if status == "active":
        filters.append(ReferralLink.is_active.is_(True))
    elif status == "inactive":
        filters.append(ReferralLink.is_active.is_(False))

    # Unknown sort keys fall back to newest first
    column = _SORT_COLUMNS.get(sort_by, ReferralLink.created_at)
    order = column.asc() if sort_order == "asc" else column.desc()

    stmt = (
        select(ReferralLink)
        .where(*filters)
        .order_by(order, ReferralLink.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    links = db.scalars(stmt).all()
    total = db.scalar(select(func.count(ReferralLink.id)).where(*filters)) or 0

    return {
        "referral_links": [schemas.ReferralLinkOut(**referrals.link_out(db, link)).model_dump() for link in links],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.post("", status_code=201)
def create_referral_link(
    payload: schemas.ReferralLinkCreateIn,
    db: Session = Depends(get_db),
    admin: User = Depends(auth.requires_superadmin),
):
    slug = referrals.normalize_slug(payload.slug)
    _slug_taken(db, slug)

    link = ReferralLink(
        slug=slug,
        display_name=(payload.display_name or "").strip() or None,
        trial_days=payload.trial_days,
        is_active=payload.is_active,
        created_by_user_id=admin.id,
    )
    db.add(link)
    db.commit()
    db.refresh(link)

    create_audit_log(
        db,
        action=AuditActions.REFERRAL_LINK_CREATED,
        actor_id=admin.id,
        entity_type=ENTITY_TYPE,
        entity_id=link.id,
        metadata=_snapshot(link),
    )

    return {
        "message": "Referral link created successfully",
        "referral_link": schemas.ReferralLinkOut(**referrals.link_out(db, link)).model_dump(),
    }


@router.get("/{link_id}")
def get_referral_link(link_id: int, db: Session = Depends(get_db)):
    link = _get_link_or_404(db, link_id)
    return {"referral_link": schemas.ReferralLinkOut(**referrals.link_out(db, link)).model_dump()}


@router.patch("/{link_id}")
def update_referral_link(
    link_id: int,
    payload: schemas.ReferralLinkUpdateIn,
    db: Session = Depends(get_db),
    admin: User = Depends(auth.requires_superadmin),
):
    link = _get_link_or_404(db, link_id)
    before = _snapshot(link)

    if payload.slug is not None:
        slug = referrals.normalize_slug(payload.slug)
        if slug != link.slug:
            _slug_taken(db, slug)
            link.slug = slug

    # display_name may be cleared with an explicit null
    if "display_name" in payload.model_fields_set:
        link.display_name = (payload.display_name or "").strip() or None
    if payload.trial_days is not None:
        link.trial_days = payload.trial_days

    action = AuditActions.REFERRAL_LINK_UPDATED
    if payload.is_active is not None and payload.is_active != link.is_active:
        action = AuditActions.REFERRAL_LINK_ENABLED if payload.is_active else AuditActions.REFERRAL_LINK_DISABLED
        link.is_active = payload.is_active

    db.commit()
    db.refresh(link)

    create_audit_log(
        db,
        action=action,
        actor_id=admin.id,
        entity_type=ENTITY_TYPE,
        entity_id=link.id,
        metadata={"before": before, "after": _snapshot(link)},
    )

    return {
        "message": "Referral link updated successfully",
        "referral_link": schemas.ReferralLinkOut(**referrals.link_out(db, link)).model_dump(),
    }
