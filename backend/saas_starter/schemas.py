# saas_starter/schemas.py
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["USER", "SUPERADMIN"]
Status = Literal["ACTIVE", "DEACTIVATED"]
Plan = Literal["BASIC", "PRO"]

SLUG_PATTERN = r"^[a-zA-Z0-9_-]+$"


# -----------------------------
# AUTH
# -----------------------------
class SignupIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)
    name: Optional[str] = Field(default=None, max_length=100)


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class TokenIn(BaseModel):
    token: str = Field(min_length=1)


class ForgotPasswordIn(BaseModel):
    email: EmailStr


class ResetPasswordIn(BaseModel):
    token: str = Field(min_length=1)
    password: str = Field(min_length=1)


class ChangePasswordIn(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=1)


class SetPasswordIn(BaseModel):
    new_password: str = Field(min_length=1)


class ChangeEmailIn(BaseModel):
    new_email: EmailStr


class ProfileUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    timezone: Optional[str] = Field(default=None, max_length=50)


class MessageOut(BaseModel):
    message: str


# -----------------------------
# USERS
# -----------------------------
class UserSummaryOut(BaseModel):
    id: int
    email: str
    name: Optional[str] = None
    role: Role
    status: Status
    plan: Plan
    email_verified: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class UserDetailOut(UserSummaryOut):
    plan_override: bool
    trial_end_date: datetime
    registration_source: str
    trial_days_granted: Optional[int] = None


class MeOut(UserDetailOut):
    avatar: Optional[str] = None
    timezone: str
    has_password: bool = False


class TrialOut(BaseModel):
    is_on_trial: bool
    is_expired: bool
    days_remaining: int
    end_date: datetime

    class Config:
        from_attributes = True


class AuthUserOut(BaseModel):
    id: int
    email: str
    name: Optional[str] = None
    role: Role
    plan: Plan
    email_verified: bool

    class Config:
        from_attributes = True


# -----------------------------
# ADMIN
# -----------------------------
class AdminUserActionIn(BaseModel):
    action: Literal["changeRole", "changeStatus", "changePlan", "extendTrial"]
    role: Optional[Role] = None
    status: Optional[Status] = None
    plan: Optional[Plan] = None
    days: Optional[int] = Field(default=None, ge=1, le=365)


class AuditLogOut(BaseModel):
    id: int
    user_id: Optional[int] = None
    actor_id: Optional[int] = None
    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    metadata: Optional[dict] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime


class StatsOut(BaseModel):
    total_users: int
    active_users: int
    pro_users: int
    basic_users: int
    users_on_trial: int
    recent_signups: int


# -----------------------------
# REFERRAL LINKS
# -----------------------------
class ReferralLinkCreateIn(BaseModel):
    slug: str = Field(min_length=1, max_length=100, pattern=SLUG_PATTERN)
    display_name: Optional[str] = Field(default=None, max_length=200)
    trial_days: int = Field(ge=1, le=365)
    is_active: bool = True


class ReferralLinkUpdateIn(BaseModel):
    slug: Optional[str] = Field(default=None, min_length=1, max_length=100, pattern=SLUG_PATTERN)
    display_name: Optional[str] = Field(default=None, max_length=200)
    trial_days: Optional[int] = Field(default=None, ge=1, le=365)
    is_active: Optional[bool] = None


class CreatorOut(BaseModel):
    id: int
    name: Optional[str] = None
    email: str

    class Config:
        from_attributes = True


class ReferralLinkOut(BaseModel):
    id: int
    slug: str
    display_name: Optional[str] = None
    trial_days: int
    is_active: bool
    created_at: datetime
    updated_at: Optional[datetime] = None
    created_by: Optional[CreatorOut] = None
    signup_count: int = 0
    last_signup_at: Optional[datetime] = None
    url: str
