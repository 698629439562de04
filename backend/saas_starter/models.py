# saas_starter/models.py
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base

ROLE_USER = "USER"
ROLE_SUPERADMIN = "SUPERADMIN"
VALID_ROLES = (ROLE_USER, ROLE_SUPERADMIN)

STATUS_ACTIVE = "ACTIVE"
STATUS_DEACTIVATED = "DEACTIVATED"
VALID_STATUSES = (STATUS_ACTIVE, STATUS_DEACTIVATED)

PLAN_BASIC = "BASIC"
PLAN_PRO = "PRO"
VALID_PLANS = (PLAN_BASIC, PLAN_PRO)

SOURCE_NORMAL = "NORMAL"
SOURCE_REFERRAL = "REFERRAL"

PROVIDER_GOOGLE = "GOOGLE"


def utcnow() -> datetime:
    """Naive UTC, the storage convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    # Always stored lowercase
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    avatar: Mapped[str | None] = mapped_column(String(500), nullable=True)
    timezone: Mapped[str] = mapped_column(String(50), nullable=False, default="UTC")

    # Values: "USER" | "SUPERADMIN"
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=ROLE_USER)
    # Values: "ACTIVE" | "DEACTIVATED"
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=STATUS_ACTIVE)

    email_verified: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # NULL for OAuth-only accounts
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # New accounts start on PRO for the length of their trial
    plan: Mapped[str] = mapped_column(String(20), nullable=False, default=PLAN_PRO)
    trial_start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    trial_end_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    plan_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    plan_changed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    referrer_id: Mapped[int | None] = mapped_column(
        ForeignKey("referral_links.id", ondelete="SET NULL"), nullable=True, index=True
    )
    registration_source: Mapped[str] = mapped_column(String(20), nullable=False, default=SOURCE_NORMAL)
    trial_days_granted: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    sessions = relationship("Session", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    auth_providers = relationship(
        "UserAuthProvider", back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )
    referrer = relationship("ReferralLink", back_populates="referred_users", foreign_keys=[referrer_id])


class Session(Base):
    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    user = relationship("User", back_populates="sessions")


class VerificationToken(Base):
    __tablename__ = "verification_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    user = relationship("User")


class PasswordResetToken(Base):
    __tablename__ = "password_reset_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    user = relationship("User")


class EmailChangeToken(Base):
    __tablename__ = "email_change_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    new_email: Mapped[str] = mapped_column(String(255), nullable=False)
    token: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    user = relationship("User")


class UserAuthProvider(Base):
    __tablename__ = "user_auth_providers"
    __table_args__ = (UniqueConstraint("provider", "provider_user_id", name="uq_provider_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(20), nullable=False, default=PROVIDER_GOOGLE)
    provider_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    user = relationship("User", back_populates="auth_providers")


class RateLimitEntry(Base):
    __tablename__ = "rate_limit_entries"
    __table_args__ = (UniqueConstraint("identifier", "action", name="uq_rate_limit_identifier_action"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    identifier: Mapped[str] = mapped_column(String(255), nullable=False)  # IP, email or user id
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    window_start: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    # Subject of the action (SET NULL keeps history after account deletion)
    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    # Who performed it, when different from the subject (admins)
    actor_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    action: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    details: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    user = relationship("User", foreign_keys=[user_id])
    actor = relationship("User", foreign_keys=[actor_id])


class ReferralLink(Base):
    __tablename__ = "referral_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    # Visited as APP_URL/<slug>; stored lowercase
    slug: Mapped[str] = mapped_column(String(100), unique=True, index=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    trial_days: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_by_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL", use_alter=True, name="fk_referral_links_created_by"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    created_by = relationship("User", foreign_keys=[created_by_user_id])
    referred_users = relationship("User", back_populates="referrer", foreign_keys="User.referrer_id")
