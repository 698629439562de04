# saas_starter/entitlements.py
"""
Central place to define what each plan unlocks.

Numeric entries are limits (math.inf = unlimited), booleans are on/off features.
"""
from __future__ import annotations

import math
from typing import Union

from fastapi import Depends

from .auth import requires_auth
from .errors import PlanUpgradeRequiredError
from .models import PLAN_BASIC, PLAN_PRO, User

FEATURE_MAX_PROJECTS = "max_projects"
FEATURE_MAX_TEAM_MEMBERS = "max_team_members"
FEATURE_ADVANCED_ANALYTICS = "can_access_advanced_analytics"
FEATURE_PRIORITY_SUPPORT = "can_access_priority_support"
FEATURE_EXPORT_DATA = "can_export_data"
FEATURE_API_ACCESS = "can_use_api_access"
FEATURE_CUSTOM_BRANDING = "can_customize_branding"
FEATURE_STORAGE_GB = "storage_gb"

Entitlement = Union[bool, int, float]

PLAN_FEATURES: dict[str, dict[str, Entitlement]] = {
    PLAN_BASIC: {
        FEATURE_MAX_PROJECTS: 3,
        FEATURE_MAX_TEAM_MEMBERS: 1,
        FEATURE_ADVANCED_ANALYTICS: False,
        FEATURE_PRIORITY_SUPPORT: False,
        FEATURE_EXPORT_DATA: False,
        FEATURE_API_ACCESS: False,
        FEATURE_CUSTOM_BRANDING: False,
        FEATURE_STORAGE_GB: 1,
    },
    PLAN_PRO: {
        FEATURE_MAX_PROJECTS: math.inf,
        FEATURE_MAX_TEAM_MEMBERS: 10,
        FEATURE_ADVANCED_ANALYTICS: True,
        FEATURE_PRIORITY_SUPPORT: True,
        FEATURE_EXPORT_DATA: True,
        FEATURE_API_ACCESS: True,
        FEATURE_CUSTOM_BRANDING: True,
        FEATURE_STORAGE_GB: 100,
    },
}


def normalize_plan(value) -> str:
    plan = (value or PLAN_BASIC).strip().upper()
    return PLAN_PRO if plan == PLAN_PRO else PLAN_BASIC


def get_plan_entitlements(plan: str) -> dict[str, Entitlement]:
    return dict(PLAN_FEATURES[normalize_plan(plan)])


def can_access_feature(plan: str, feature: str) -> bool:
    value = PLAN_FEATURES[normalize_plan(plan)].get(feature)
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value > 0
    return False


def get_feature_limit(plan: str, feature: str) -> Union[int, float]:
    value = PLAN_FEATURES[normalize_plan(plan)].get(feature)
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float)):
        return value
    return 0


def has_reached_limit(plan: str, feature: str, current_count: int) -> bool:
    return current_count >= get_feature_limit(plan, feature)


def get_plan_display_name(plan: str) -> str:
    return "Pro" if normalize_plan(plan) == PLAN_PRO else "Basic"


def get_plan_comparison() -> list[dict]:
    return [
        {"feature": "Projects", "basic": "3", "pro": "Unlimited"},
        {"feature": "Team Members", "basic": "1", "pro": "Up to 10"},
        {"feature": "Storage", "basic": "1 GB", "pro": "100 GB"},
        {"feature": "Advanced Analytics", "basic": False, "pro": True},
        {"feature": "Priority Support", "basic": False, "pro": True},
        {"feature": "Data Export", "basic": False, "pro": True},
        {"feature": "API Access", "basic": False, "pro": True},
        {"feature": "Custom Branding", "basic": False, "pro": True},
    ]


def require_feature(feature: str):
    """
    Dependency factory:
        @router.get("/export", dependencies=[Depends(require_feature(FEATURE_EXPORT_DATA))])
    """

    def _guard(user: User = Depends(requires_auth)) -> User:
        if not can_access_feature(user.plan, feature):
            raise PlanUpgradeRequiredError(
                f"Your {get_plan_display_name(user.plan)} plan does not include this feature.",
                feature,
            )
        return user

    return _guard
