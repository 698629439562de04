# saas_starter/routers/plans.py
from __future__ import annotations

import math
from typing import Optional

from fastapi import APIRouter, Depends

from saas_starter import auth, entitlements, plans, schemas
from saas_starter.models import VALID_PLANS, User

router = APIRouter(prefix="/api/plans", tags=["plans"])


def _jsonable(values: dict) -> dict:
    # JSON has no infinity; None reads as "unlimited"
    return {k: (None if isinstance(v, float) and math.isinf(v) else v) for k, v in values.items()}


@router.get("")
def list_plans(user: Optional[User] = Depends(auth.get_current_user)):
    out = {
        "plans": [
            {
                "plan": plan,
                "name": entitlements.get_plan_display_name(plan),
                "entitlements": _jsonable(entitlements.get_plan_entitlements(plan)),
            }
            for plan in VALID_PLANS
        ],
        "comparison": entitlements.get_plan_comparison(),
        "current": None,
    }
    if user:
        out["current"] = {
            "plan": user.plan,
            "entitlements": _jsonable(entitlements.get_plan_entitlements(user.plan)),
            "trial": schemas.TrialOut.model_validate(plans.trial_status_for(user)).model_dump(),
        }
    return out
